#!/usr/bin/env python3
"""
Collaborator contracts of the correlation core

Provides the abstract interfaces the core requires from the surrounding
pipeline (search index, report sink, renderer, fallback viewer), from the
per-platform decoders and link extractor, and the source-variant capability
that ties a decoder to the database files of one platform.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from correlator.errors import DecodeError
from correlator.media_crypto import MediaLink
from correlator.models import Account, Chat, Contact, ContactsDirectory, Item, ReportUnit


class SearchIndex(ABC):
    """Case-wide query service over every recovered item"""

    @abstractmethod
    def search(self, query: str) -> List[Item]:
        """Run a query and return the matching items

        Query grammar: field:"value" terms, parenthesised groups and AND/OR.
        Fields used by the core are sha-256, hash, name, length, path and
        contenttype.

        Args:
            query: Query string

        Returns:
            Matching items, in index order
        """
        pass

    def escape(self, value: str) -> str:
        """Escape a value so it can be embedded in a quoted term"""
        return value.replace("\\", "\\\\").replace('"', '\\"')


class ReportSink(ABC):
    """Write-only destination of rendered units"""

    @abstractmethod
    def report(self, unit: ReportUnit) -> None:
        pass


class FallbackViewer(ABC):
    """Generic structured-database viewer used when decoding fails"""

    @abstractmethod
    def view(self, item: Item) -> None:
        pass


class LinkExtractor(ABC):
    """Reads download links of media declared by a message database"""

    @abstractmethod
    def extract_links(
        self,
        db_file: Path,
        hashes: Iterable[str],
        connect_timeout: int,
        read_timeout: int,
    ) -> List[MediaLink]:
        """Extract the links of the given media hashes

        Args:
            db_file: Materialized database file
            hashes: Declared media hashes still missing from the case
            connect_timeout: Connect timeout (ms) for any probing request
            read_timeout: Read timeout (ms) for any probing request

        Returns:
            Link descriptors, empty when no link was found

        Raises:
            LinkExtractionError: If the database links cannot be read
        """
        pass


class Decoder(ABC):
    """Extracts rows of one platform schema from an open database connection"""

    @abstractmethod
    def decode_chats(
        self,
        conn: sqlite3.Connection,
        contacts: ContactsDirectory,
        account: Account,
    ) -> List[Chat]:
        pass

    @abstractmethod
    def decode_contacts(self, conn: sqlite3.Connection) -> ContactsDirectory:
        pass


class ChatRenderer(ABC):
    """Turns decoded entities into report bytes"""

    @abstractmethod
    def render_chat(
        self, chat: Chat, contacts: ContactsDirectory, account: Account
    ) -> List[Tuple[bytes, int]]:
        """Render a chat, possibly split in several fragments

        Returns:
            List of (bytes, end_index) pairs where end_index is the exclusive
            index of the last message contained in the fragment
        """
        pass

    @abstractmethod
    def render_account(self, account: Account) -> bytes:
        pass

    @abstractmethod
    def render_contact(self, contact: Contact) -> bytes:
        pass


class JsonChatRenderer(ChatRenderer):
    """Minimal renderer producing JSON documents

    Large chats are split into fragments of at most `max_messages` messages.
    """

    def __init__(self, max_messages: int = 5000):
        self.max_messages = max_messages

    def render_chat(self, chat, contacts, account):
        if not chat.messages:
            return [(self._dump({"chat": chat.get_title(), "messages": []}), 0)]

        fragments = []
        for start in range(0, len(chat.messages), self.max_messages):
            end = min(start + self.max_messages, len(chat.messages))
            messages = [
                {
                    "id": m.id,
                    "timestamp": m.timestamp.isoformat() if m.timestamp else None,
                    "from_me": m.from_me,
                    "type": str(m.message_type),
                    "data": m.data,
                    "media_name": m.media_name,
                }
                for m in chat.messages[start:end]
            ]
            fragments.append((self._dump({"chat": chat.get_title(), "messages": messages}), end))
        return fragments

    def render_account(self, account):
        return self._dump({"id": account.id, "name": account.name, "status": account.status})

    def render_contact(self, contact):
        return self._dump({"id": contact.id, "name": contact.name, "status": contact.status})

    @staticmethod
    def _dump(document) -> bytes:
        return json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")


class ChatListExtractor:
    """Decodes the chat list of one database file with a variant's decoder"""

    def __init__(
        self,
        variant: "SourceVariant",
        db_file: Path,
        contacts: ContactsDirectory,
        account: Account,
    ):
        self.variant = variant
        self.db_file = db_file
        self.contacts = contacts
        self.account = account

    def get_chat_list(self) -> List[Chat]:
        """Decode every chat of the database

        Raises:
            DecodeError: If the database cannot be opened or decoded
        """
        try:
            with closing(self.variant.get_connection(self.db_file)) as conn:
                return self.variant.decoder.decode_chats(conn, self.contacts, self.account)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"Cannot decode chats of {self.db_file}: {e}") from e


class ContactsExtractor:
    """Decodes the contacts directory of one database file"""

    def __init__(self, variant: "SourceVariant", db_file: Path):
        self.variant = variant
        self.db_file = db_file

    def get_contacts(self) -> ContactsDirectory:
        try:
            with closing(self.variant.get_connection(self.db_file)) as conn:
                return self.variant.decoder.decode_contacts(conn)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"Cannot decode contacts of {self.db_file}: {e}") from e


class SourceVariant(ABC):
    """One platform family of message databases

    Concrete variants declare the content types they own and how a database
    file is opened; decoding itself is delegated to the supplied Decoder.
    """

    message_content_types: Tuple[str, ...] = ()
    contacts_content_type: Optional[str] = None
    account_content_type: Optional[str] = None
    account_file_name: Optional[str] = None
    is_android: bool = False

    def __init__(self, decoder: Decoder):
        self.decoder = decoder

    @staticmethod
    @abstractmethod
    def get_name() -> str:
        """Return human-readable variant name (e.g., "WhatsApp Android")"""
        pass

    @abstractmethod
    def get_connection(self, db_file: Path) -> sqlite3.Connection:
        """Open a read-only connection to a materialized database file"""
        pass

    @abstractmethod
    def parse_account(self, data: bytes) -> Optional[Account]:
        """Decode the account-configuration artifact of this platform"""
        pass

    def create_message_extractor(
        self, db_file: Path, contacts: ContactsDirectory, account: Account
    ) -> ChatListExtractor:
        return ChatListExtractor(self, db_file, contacts, account)

    def create_contacts_extractor(self, db_file: Path) -> ContactsExtractor:
        return ContactsExtractor(self, db_file)

    def handles(self, content_type: Optional[str]) -> bool:
        """Check if an artifact of this content type belongs to the variant"""
        return content_type is not None and (
            content_type in self.message_content_types
            or content_type == self.contacts_content_type
            or content_type == self.account_content_type
        )
