#!/usr/bin/env python3
"""
iOS source variant

Owns ChatStorage.sqlite and the ContactsV2.sqlite contacts database. iOS
chat storage is never registered for backup merging.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from correlator import content_types
from correlator.account import parse_ios_account
from correlator.base import SourceVariant
from correlator.models import Account


class IOSVariant(SourceVariant):
    """WhatsApp for iOS databases"""

    message_content_types = (content_types.CHAT_STORAGE,)
    contacts_content_type = content_types.CONTACTS_IOS
    account_content_type = content_types.ACCOUNT_IOS
    account_file_name = content_types.IOS_ACCOUNT_FILE
    is_android = False

    @staticmethod
    def get_name() -> str:
        return "WhatsApp iOS"

    def get_connection(self, db_file: Path) -> sqlite3.Connection:
        return sqlite3.connect(Path(db_file).resolve().as_uri() + "?mode=ro", uri=True)

    def parse_account(self, data: bytes) -> Optional[Account]:
        return parse_ios_account(data)
