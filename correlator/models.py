#!/usr/bin/env python3
"""
Conversation Model

Passive data entities shared by every stage of the core: the device owner
account, remote contacts and their directory, chats, messages, case index
items and the report units handed to the reporting collaborator.
"""

import io
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, List, Optional

WA_USER_SUFFIX = "@s.whatsapp.net"


def full_jid(account_id: Optional[str]) -> Optional[str]:
    """Append the user domain to bare ids; ids that already carry one are kept"""
    if not account_id or "@" in account_id:
        return account_id
    return account_id + WA_USER_SUFFIX


def bare_id(account_id: Optional[str]) -> Optional[str]:
    """Strip the domain part of a full id"""
    if account_id and "@" in account_id:
        return account_id[: account_id.index("@")]
    return account_id


# ============================================================================
# Accounts and contacts
# ============================================================================


@dataclass
class Account:
    """The device owner, decoded from the account-configuration artifact."""

    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None
    avatar: Optional[bytes] = None
    unknown: bool = False

    @property
    def full_id(self) -> str:
        return full_jid(self.id)

    @property
    def title(self) -> str:
        return f"WhatsApp Account: {self.name or self.id}"


@dataclass
class Contact:
    """A remote party. Only the avatar is ever mutated after decoding."""

    id: str
    name: Optional[str] = None
    status: Optional[str] = None
    avatar: Optional[bytes] = None
    avatar_path: Optional[str] = None

    @property
    def full_id(self) -> str:
        return full_jid(self.id)

    @property
    def title(self) -> str:
        return f"WhatsApp Contact: {self.name or self.id}"


class ContactsDirectory:
    """Mapping contact id -> Contact for one source path."""

    def __init__(self, contacts: Optional[Iterable[Contact]] = None):
        self._contacts: Dict[str, Contact] = {}
        self._lock = threading.Lock()
        for contact in contacts or []:
            self.put(contact)

    def put(self, contact: Contact) -> None:
        with self._lock:
            self._contacts[bare_id(contact.id)] = contact

    def put_all(self, other: "ContactsDirectory") -> None:
        for contact in other.contacts():
            self.put(contact)

    def get_contact(self, contact_id: Optional[str]) -> Optional[Contact]:
        """Look up a contact by bare or full id."""
        if not contact_id:
            return None
        return self._contacts.get(bare_id(contact_id))

    def contacts(self) -> List[Contact]:
        with self._lock:
            return list(self._contacts.values())

    def __len__(self) -> int:
        return len(self._contacts)

    def __contains__(self, contact_id: str) -> bool:
        return bare_id(contact_id) in self._contacts


# ============================================================================
# Case index items
# ============================================================================


@dataclass
class Item:
    """An entry of the case-wide index. Source databases are items too.

    Attributes:
        id: Case-unique identity of the item
        name: File name
        path: Evidence path inside the case
        length: Size in bytes
        content_type: Content-type tag assigned by the scan
        local_file: Local copy of the content, when materialized
        attributes: Extra indexed attributes ("sha-256", "hash", "global_id")
    """

    id: int
    name: str
    path: str
    length: Optional[int] = None
    content_type: Optional[str] = None
    local_file: Optional[Path] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    content: Optional[bytes] = field(default=None, repr=False)

    def open(self) -> BinaryIO:
        """Open the item content as a seekable binary stream."""
        if self.content is not None:
            return io.BytesIO(self.content)
        if self.local_file is None:
            raise FileNotFoundError(f"No content available for {self.path}")
        return open(self.local_file, "rb")

    def read_bytes(self) -> bytes:
        with self.open() as f:
            return f.read()

    @property
    def sha256(self) -> Optional[str]:
        return self.attributes.get("sha-256")

    @property
    def hash(self) -> Optional[str]:
        return self.attributes.get("hash") or self.sha256

    @property
    def global_id(self) -> str:
        return str(self.attributes.get("global_id", self.id))


# ============================================================================
# Chats and messages
# ============================================================================


class MessageType(Enum):
    TEXT = "TEXT_MESSAGE"
    IMAGE = "IMAGE_MESSAGE"
    AUDIO = "AUDIO_MESSAGE"
    VIDEO = "VIDEO_MESSAGE"
    CONTACT = "CONTACT_MESSAGE"
    LOCATION = "LOCATION_MESSAGE"
    SHARE_LOCATION = "SHARE_LOCATION_MESSAGE"
    DOCUMENT = "DOC_MESSAGE"
    GIF = "GIF_MESSAGE"
    STICKER = "STICKER_MESSAGE"
    DELETED = "DELETED_MESSAGE"
    VOICE_CALL = "VOICE_CALL"
    VIDEO_CALL = "VIDEO_CALL"
    SYSTEM = "SYSTEM_MESSAGE"
    UNKNOWN = "UNKNOWN_MESSAGE"

    def __str__(self) -> str:
        return self.value


CALL_TYPES = frozenset({MessageType.VOICE_CALL, MessageType.VIDEO_CALL})
LOCATION_TYPES = frozenset({MessageType.LOCATION, MessageType.SHARE_LOCATION})


class MessageStatus(Enum):
    MESSAGE_UNSENT = "MESSAGE_UNSENT"
    MESSAGE_SENT = "MESSAGE_SENT"
    MESSAGE_DELIVERED = "MESSAGE_DELIVERED"
    MESSAGE_VIEWED = "MESSAGE_VIEWED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"

    def __str__(self) -> str:
        return self.value


@dataclass
class Message:
    """One chat entry.

    The media fields describe the attachment as declared by the source
    database; `media_item` and `media_query` are filled in by media
    resolution. Once `media_item` is set it is never overwritten.
    """

    id: int
    timestamp: Optional[datetime]
    from_me: bool = False
    remote_resource: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    data: Optional[str] = None
    media_hash: Optional[str] = None
    media_name: Optional[str] = None
    media_mime: Optional[str] = None
    media_size: int = 0
    media_caption: Optional[str] = None
    media_duration: int = 0
    latitude: float = 0.0
    longitude: float = 0.0
    status: Optional[MessageStatus] = None
    url: Optional[str] = None
    vcards: List[str] = field(default_factory=list)
    media_item: Optional[Item] = field(default=None, repr=False, compare=False)
    media_query: Optional[str] = field(default=None, compare=False)

    @property
    def is_call(self) -> bool:
        return self.message_type in CALL_TYPES

    @property
    def is_location(self) -> bool:
        return self.message_type in LOCATION_TYPES

    @property
    def is_system_message(self) -> bool:
        return self.message_type == MessageType.SYSTEM

    @property
    def has_media_reference(self) -> bool:
        return bool(self.media_hash) or bool(self.media_name)

    def bind_media(self, item: Item, query: str, save_item_ref: bool = True) -> bool:
        """Bind the message to a resolved item, first match wins.

        Args:
            item: The case item holding the attachment
            query: Exact index query that produced the match
            save_item_ref: Keep the (possibly heavy) item reference

        Returns:
            True if the binding was applied, False if already resolved
        """
        if self.media_item is not None:
            return False
        self.media_query = query
        if save_item_ref:
            self.media_item = item
        return True


@dataclass
class Chat:
    """A conversation decoded from one database."""

    id: int
    remote: Optional[Contact]
    title: Optional[str] = None
    group_chat: bool = False
    group_members: List[Contact] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)

    @property
    def remote_key(self) -> str:
        """Identity of the remote party, stable across copies of a database."""
        if self.remote is not None and self.remote.id:
            return bare_id(self.remote.id)
        return self.title or f"chat-{self.id}"

    def get_title(self) -> str:
        if self.title:
            return self.title
        if self.remote is not None:
            return self.remote.name or self.remote.id
        return f"chat-{self.id}"


# ============================================================================
# Reporting
# ============================================================================


@dataclass
class ReportUnit:
    """A rendered unit embedded into the case output."""

    data: bytes
    attributes: Dict[str, Any] = field(default_factory=dict)

    def add(self, key: str, value: Any) -> None:
        """Append a value to a multi-valued attribute."""
        if value is None:
            return
        self.attributes.setdefault(key, []).append(value)
