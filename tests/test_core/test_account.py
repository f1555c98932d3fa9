"""
Tests for device owner account decoding and lookup.
"""

import plistlib

from correlator.account import (
    AccountLocator,
    best_item,
    parse_android_account,
    parse_ios_account,
)
from correlator.variants import AndroidVariant, IOSVariant
from tests.fixtures.databases import file_item
from tests.fixtures.fakes import FakeSearchIndex, SqliteDecoder

PREFS_XML = b"""<?xml version='1.0' encoding='utf-8' standalone='yes' ?>
<map>
    <string name="registration_jid">5561999999999@s.whatsapp.net</string>
    <string name="push_name">Owner</string>
    <string name="my_current_status">Available</string>
    <boolean name="ask_import" value="true" />
</map>
"""


class TestParseAndroidAccount:
    """Tests for the shared-preferences XML."""

    def test_full_account(self):
        account = parse_android_account(PREFS_XML)

        assert account.id == "5561999999999"
        assert account.name == "Owner"
        assert account.status == "Available"
        assert account.phone == "+5561999999999"
        assert account.full_id == "5561999999999@s.whatsapp.net"

    def test_country_code_and_phone(self):
        xml = b'<map><string name="cc">55</string><string name="ph">61888</string></map>'
        assert parse_android_account(xml).id == "5561888"

    def test_no_id(self):
        assert parse_android_account(b'<map><string name="push_name">x</string></map>') is None

    def test_corrupt(self):
        assert parse_android_account(b"<map><string") is None


class TestParseIOSAccount:
    """Tests for the shared plist."""

    def test_binary_plist(self):
        data = plistlib.dumps(
            {"OwnJabberID": "5561777@s.whatsapp.net", "FullUserName": "iOwner"},
            fmt=plistlib.FMT_BINARY,
        )
        account = parse_ios_account(data)

        assert account.id == "5561777"
        assert account.name == "iOwner"

    def test_missing_id(self):
        assert parse_ios_account(plistlib.dumps({"FullUserName": "x"})) is None

    def test_corrupt(self):
        assert parse_ios_account(b"bplist00garbage") is None


class TestAccountLocator:
    """Tests for locating the account closest to a database."""

    def test_best_item_prefers_closest_directory(self):
        near = file_item("com.whatsapp_preferences.xml", b"", path="/phone/data/com.whatsapp/shared_prefs/x.xml")
        far = file_item("com.whatsapp_preferences.xml", b"", path="/other/x.xml")

        assert best_item([far, near], "/phone/data/com.whatsapp/databases/msgstore.db") is near

    def test_best_item_falls_back_to_case_root(self):
        item = file_item("com.whatsapp_preferences.xml", b"", path="/other/x.xml")
        assert best_item([item], "/phone/databases/msgstore.db") is item

    def test_best_item_empty(self):
        assert best_item([], "/phone/databases/msgstore.db") is None

    def test_locates_and_memoizes(self):
        prefs = file_item(
            "com.whatsapp_preferences.xml",
            PREFS_XML,
            path="/phone/data/com.whatsapp/shared_prefs/com.whatsapp_preferences.xml",
        )
        index = FakeSearchIndex([prefs])
        locator = AccountLocator(index)
        variant = AndroidVariant(SqliteDecoder())

        first = locator.get_account("/phone/data/com.whatsapp/databases/msgstore.db", variant)
        second = locator.get_account("/phone/data/com.whatsapp/databases/wa.db", variant)

        assert first.id == "5561999999999"
        assert first is second
        assert len(index.queries) == 1

    def test_unknown_account_placeholder(self):
        locator = AccountLocator(FakeSearchIndex())
        account = locator.get_account("/phone/ChatStorage.sqlite", IOSVariant(SqliteDecoder()))

        assert account.unknown is True

    def test_without_index(self):
        assert AccountLocator(None).get_account("/x/msgstore.db", AndroidVariant(SqliteDecoder())).unknown
