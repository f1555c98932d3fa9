#!/usr/bin/env python3
"""
Android source variant

Owns the msgstore.db family (message stores and their dated or encrypted
backups) and the wa.db contacts database.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from correlator import content_types
from correlator.account import parse_android_account
from correlator.base import SourceVariant
from correlator.models import Account


class AndroidVariant(SourceVariant):
    """WhatsApp for Android databases"""

    message_content_types = (content_types.MSG_STORE, content_types.MSG_STORE_TERMINAL)
    contacts_content_type = content_types.CONTACTS_ANDROID
    account_content_type = content_types.ACCOUNT_ANDROID
    account_file_name = content_types.ANDROID_ACCOUNT_FILE
    is_android = True

    @staticmethod
    def get_name() -> str:
        return "WhatsApp Android"

    def get_connection(self, db_file: Path) -> sqlite3.Connection:
        return sqlite3.connect(Path(db_file).resolve().as_uri() + "?mode=ro", uri=True)

    def parse_account(self, data: bytes) -> Optional[Account]:
        return parse_android_account(data)
