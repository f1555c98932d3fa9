#!/usr/bin/env python3
"""
Contacts Directory Cache

Memoizes the contacts directory of every source directory of a case, so
each contacts database is decoded at most once no matter how many message
databases share its directory. Also resolves contact avatars from the case
index.
"""

import logging
import re
import threading
import time
from collections import defaultdict
from typing import Dict, List, Optional

from common.utils import basename, parent_path
from correlator import content_types
from correlator.base import SearchIndex, SourceVariant
from correlator.errors import DecodeError
from correlator.models import Contact, ContactsDirectory, Item

logger = logging.getLogger(__name__)

# WhatsApp initial release, 2009-01-01
AVATAR_MIN_TIME = 1230768000


class ContactsDirectoryCache:
    """Contacts directories keyed by source directory.

    A directory is built at most once per key: concurrent callers asking
    for the same key wait on a per-key lock while the first one decodes.
    """

    def __init__(self, index: Optional[SearchIndex], materializer=None):
        """
        Args:
            index: Case search index, None when the pipeline offers none
            materializer: Callable(item) -> context manager yielding a local
                file path for the item content
        """
        self.index = index
        self.materializer = materializer
        self._directories: Dict[str, ContactsDirectory] = {}
        self._key_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._lock = threading.Lock()

    @staticmethod
    def key_for(path: Optional[str]) -> str:
        return parent_path(path)

    def get_for_path(self, path: Optional[str], variants: List[SourceVariant]) -> ContactsDirectory:
        """Return the contacts directory shared by the databases under path's directory

        Args:
            path: Evidence path of a message or contacts database
            variants: Variants able to decode the contacts databases found

        Returns:
            Contacts directory, empty when no contacts database was found
        """
        key = self.key_for(path)
        with self._lock:
            directory = self._directories.get(key)
            if directory is not None:
                return directory
            key_lock = self._key_locks[key]

        with key_lock:
            with self._lock:
                directory = self._directories.get(key)
            if directory is None:
                directory = self._build(key, variants)
                with self._lock:
                    directory = self._directories.setdefault(key, directory)
        return directory

    def store(self, path: Optional[str], directory: ContactsDirectory) -> ContactsDirectory:
        """Merge a directory decoded from a contacts artifact into the cache"""
        key = self.key_for(path)
        with self._lock:
            cached = self._directories.setdefault(key, ContactsDirectory())
        cached.put_all(directory)
        return cached

    def __len__(self) -> int:
        with self._lock:
            return len(self._directories)

    def _build(self, key: str, variants: List[SourceVariant]) -> ContactsDirectory:
        if self.index is None:
            return ContactsDirectory()

        query = (
            f'path:"{self.index.escape(key)}" AND '
            f'(contenttype:"{content_types.CONTACTS_ANDROID}" OR '
            f'contenttype:"{content_types.CONTACTS_IOS}")'
        )
        items = self.index.search(query)
        if not items:
            return ContactsDirectory()

        item = items[0]
        variant = next((v for v in variants if v.contacts_content_type == item.content_type), None)
        if variant is None or self.materializer is None:
            return ContactsDirectory()

        try:
            with self.materializer(item) as db_file:
                directory = variant.create_contacts_extractor(db_file).get_contacts()
        except DecodeError as e:
            logger.warning(f"Cannot decode contacts database {item.path}: {e}")
            return ContactsDirectory()

        logger.debug(f"Loaded {len(directory)} contacts from {item.path}")
        return directory


def filter_avatars(items: List[Item], contact_id: str, now: Optional[float] = None) -> List[Item]:
    """Keep only the avatar files of one contact

    Accepts "<id>.jpg", "<id>.thumb" and "<id>-<unix time>.<ext>" with a
    plausible time; group avatars and unrelated images are dropped.
    """
    end_time = now if now is not None else time.time()
    pattern = re.compile(re.escape(contact_id) + r"-(\d+)\.")
    result = []
    for item in items:
        name = item.name
        if not name.startswith(contact_id) or len(name.split("-")) >= 3:
            continue
        rest = name[len(contact_id):]
        if rest in (".jpg", ".thumb"):
            result.append(item)
            continue
        match = pattern.match(name)
        if match and AVATAR_MIN_TIME < int(match.group(1)) < end_time:
            result.append(item)
    return result


class AvatarResolver:
    """Attaches avatar pictures found in the case index to contacts"""

    def __init__(self, index: Optional[SearchIndex]):
        self.index = index

    def find_avatar(self, contact: Contact) -> Optional[Item]:
        if self.index is None:
            return None
        escape = self.index.escape

        result = self.index.search(f'name:"{escape(contact.full_id)}.j"')
        if not result and contact.avatar_path:
            avatar_base = escape(basename(contact.avatar_path))
            result = self.index.search(f'name:"{avatar_base}.jpg"')
            if not result:
                result = self.index.search(f'name:"{avatar_base}.thumb"')
        if not result and contact.id:
            result = self.index.search(f"name:({escape(contact.id)} AND (jpg OR thumb))")
            result = filter_avatars(result, contact.id)
            # newest avatar first
            result.sort(key=lambda item: item.name, reverse=True)
        return result[0] if result else None

    def attach_avatar(self, contact: Contact) -> Optional[bytes]:
        """Load the contact avatar unless it is already set

        Returns:
            Avatar bytes, or None if no avatar was found
        """
        if contact.avatar is not None:
            return contact.avatar
        item = self.find_avatar(contact)
        if item is None:
            return None
        try:
            contact.avatar = item.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read avatar {item.path}: {e}")
        return contact.avatar
