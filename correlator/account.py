#!/usr/bin/env python3
"""
Device owner account lookup

Locates the account-configuration artifact closest to a message database
and decodes it: the shared-preferences XML on Android, the shared plist on
iOS. When none is found every chat is attributed to a placeholder account.
"""

import logging
import plistlib
import threading
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Tuple

from common.utils import international_phone, parent_path
from correlator.base import SearchIndex, SourceVariant
from correlator.models import Account, Item, bare_id

logger = logging.getLogger(__name__)

UNKNOWN_ACCOUNT_ID = "unknownAccount"

# Keys of the Android shared preferences file
ANDROID_JID_KEYS = ("registration_jid", "self_lid")
ANDROID_NAME_KEY = "push_name"
ANDROID_STATUS_KEY = "my_current_status"
ANDROID_CC_KEY = "cc"
ANDROID_PHONE_KEY = "ph"

# Keys of the iOS shared plist
IOS_JID_KEY = "OwnJabberID"
IOS_NAME_KEY = "FullUserName"
IOS_STATUS_KEY = "CurrentStatusText"


def unknown_account() -> Account:
    return Account(UNKNOWN_ACCOUNT_ID, unknown=True)


def parse_android_account(data: bytes) -> Optional[Account]:
    """Decode the Android shared-preferences XML.

    Args:
        data: Raw content of com.whatsapp_preferences.xml

    Returns:
        Account, or None if the file is corrupt or holds no account id

    Example:
        >>> xml = b'<map><string name="registration_jid">5561999</string></map>'
        >>> parse_android_account(xml).id
        '5561999'
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        logger.debug(f"Invalid account XML: {e}")
        return None

    values: Dict[str, str] = {}
    for element in root:
        name = element.get("name")
        if name is None:
            continue
        values[name] = element.text if element.text is not None else element.get("value", "")

    account_id = next((values[k] for k in ANDROID_JID_KEYS if values.get(k)), None)
    if not account_id and values.get(ANDROID_CC_KEY) and values.get(ANDROID_PHONE_KEY):
        account_id = values[ANDROID_CC_KEY] + values[ANDROID_PHONE_KEY]
    if not account_id:
        return None

    account_id = bare_id(account_id)
    return Account(
        id=account_id,
        name=values.get(ANDROID_NAME_KEY) or None,
        phone=international_phone(account_id),
        status=values.get(ANDROID_STATUS_KEY) or None,
    )


def parse_ios_account(data: bytes) -> Optional[Account]:
    """Decode the iOS shared plist (binary or XML).

    Returns:
        Account, or None if the file is corrupt or holds no account id
    """
    try:
        values = plistlib.loads(data)
    except (plistlib.InvalidFileException, ValueError) as e:
        logger.debug(f"Invalid account plist: {e}")
        return None

    if not isinstance(values, dict) or not values.get(IOS_JID_KEY):
        return None

    account_id = bare_id(str(values[IOS_JID_KEY]))
    return Account(
        id=account_id,
        name=values.get(IOS_NAME_KEY) or None,
        phone=international_phone(account_id),
        status=values.get(IOS_STATUS_KEY) or None,
    )


def best_item(items: List[Item], path: Optional[str]) -> Optional[Item]:
    """Pick the item sharing the closest ancestor directory with path

    Walks up the ancestors of path and returns the first item located under
    the current ancestor.
    """
    if not items:
        return None
    current = path or ""
    while current:
        current = parent_path(current) if ("/" in current or "\\" in current) else ""
        for item in items:
            if item.path.startswith(current):
                return item
    return None


class AccountLocator:
    """Memoized account lookup for the databases of one case."""

    def __init__(self, index: Optional[SearchIndex]):
        self.index = index
        self._cache: Dict[Tuple[str, str], Account] = {}
        self._lock = threading.Lock()

    def get_account(self, db_path: Optional[str], variant: SourceVariant) -> Account:
        """Return the account owning the database at db_path

        Args:
            db_path: Evidence path of the message or contacts database
            variant: Source variant of the database

        Returns:
            Decoded account, or the placeholder unknown account
        """
        key = (parent_path(db_path), variant.get_name())
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        account = self._lookup(db_path, variant)
        with self._lock:
            return self._cache.setdefault(key, account)

    def _lookup(self, db_path: Optional[str], variant: SourceVariant) -> Account:
        if self.index is None or not variant.account_file_name:
            return unknown_account()

        query = f'name:"{self.index.escape(variant.account_file_name)}"'
        item = best_item(self.index.search(query), db_path)
        if item is not None:
            try:
                account = variant.parse_account(item.read_bytes())
                if account is not None:
                    logger.debug(f"Account {account.id} found at {item.path}")
                    return account
            except OSError as e:
                logger.warning(f"Cannot read account file {item.path}: {e}")
        return unknown_account()
