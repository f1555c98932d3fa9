#!/usr/bin/env python3
"""
Database Registry

Case-wide table of the message databases discovered so far, keyed by item
identity. Each entry carries the database classification (main copy or
backup), its lazily decoded chat list and, once confirmed, a reference to
the main database it is a backup of.

The registry is an explicit service object owned by one case run. Inserts
are atomic insert-if-absent; every per-database state transition is guarded
by a lock scoped to that database only.
"""

import logging
import re
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from correlator.base import SearchIndex
from correlator.models import Chat, Item

logger = logging.getLogger(__name__)

BACKUP_NAME_PATTERN = re.compile(r"msgstore-\d{4}-\d{2}-\d{2}")
ENCRYPTED_BACKUP_MARKER = "msgstore.db.crypt"


class Classification(Enum):
    UNKNOWN = "unknown"
    MAIN = "main"
    BACKUP = "backup"


def classify(item: Item) -> Classification:
    """Classify a database from its name and path

    Dated copies (msgstore-YYYY-MM-DD...) and databases recovered from an
    encrypted backup container are backups; everything else is a main copy.
    """
    if BACKUP_NAME_PATTERN.search(item.name or "") or ENCRYPTED_BACKUP_MARKER in (item.path or ""):
        return Classification.BACKUP
    return Classification.MAIN


class DatabaseContext:
    """One discovered message database"""

    def __init__(self, item: Item):
        self.item = item
        self.classification = classify(item)
        self.main_item: Optional[Item] = None
        self.merge_lock = threading.RLock()
        self.merging_closed = False
        self.merged = False
        self._chats: Optional[List[Chat]] = None
        self._decoded = False
        self._lock = threading.Lock()

    @property
    def id(self) -> int:
        return self.item.id

    @property
    def name(self) -> str:
        return self.item.name

    @property
    def path(self) -> str:
        return self.item.path

    @property
    def is_main(self) -> bool:
        return self.classification == Classification.MAIN

    @property
    def is_backup(self) -> bool:
        return self.classification == Classification.BACKUP

    @property
    def is_confirmed_backup(self) -> bool:
        return self.is_backup and self.main_item is not None

    @property
    def chats(self) -> Optional[List[Chat]]:
        return self._chats

    @property
    def decoded(self) -> bool:
        return self._decoded

    def ensure_chats(self, loader: Callable[[Item], List[Chat]]) -> List[Chat]:
        """Decode the chat list exactly once

        Concurrent callers on the same context block until the first one
        finishes; a failed decode is not cached and propagates to the caller.

        Args:
            loader: Callable decoding the chats of the context item

        Returns:
            The decoded chat list
        """
        if self._decoded:
            return self._chats
        with self._lock:
            if not self._decoded:
                self._chats = loader(self.item)
                self._decoded = True
            return self._chats

    def set_chats(self, chats: List[Chat]) -> None:
        """Install a chat list decoded by the caller, unless one already exists"""
        with self._lock:
            if not self._decoded:
                self._chats = chats
                self._decoded = True

    def mark_backup_of(self, main_item: Item) -> None:
        with self._lock:
            self.classification = Classification.BACKUP
            self.main_item = main_item

    def mark_merged(self) -> None:
        """Record that a main database has absorbed this backup"""
        with self._lock:
            self.merged = True

    def close_merging(self) -> None:
        """Stop accepting backups; call with merge_lock held"""
        self.merging_closed = True

    def mark_standalone(self) -> None:
        """Demote to UNKNOWN: reported on its own, never merged"""
        with self._lock:
            self.classification = Classification.UNKNOWN
            self.main_item = None

    def release_chats(self) -> None:
        """Free the decoded payload; the context stays decoded"""
        with self._lock:
            if self._chats:
                self._chats.clear()

    def __repr__(self) -> str:
        return f"DatabaseContext({self.path!r}, {self.classification.value})"


class DatabaseRegistry:
    """Case-wide mapping item identity -> DatabaseContext"""

    def __init__(self):
        self._contexts: Dict[int, DatabaseContext] = {}
        self._counter_lock = threading.Lock()
        self._backfill_lock = threading.Lock()
        self._backfill_done = False
        self.backups_merged = 0
        self.backfilled = 0

    def register(self, item: Item) -> Tuple[DatabaseContext, bool]:
        """Register a database, first registration for an identity wins

        Args:
            item: The database item

        Returns:
            Tuple of (context, is_new) where is_new is False when the item
            had already been registered
        """
        candidate = DatabaseContext(item)
        context = self._contexts.setdefault(item.id, candidate)
        is_new = context is candidate
        if is_new:
            logger.debug(f"Registered {context.classification.value} database {item.path}")
        return context, is_new

    def get(self, item_id: int) -> Optional[DatabaseContext]:
        return self._contexts.get(item_id)

    def remove(self, item_id: int) -> Optional[DatabaseContext]:
        return self._contexts.pop(item_id, None)

    def contexts(self) -> List[DatabaseContext]:
        return list(self._contexts.values())

    def sorted_by_name_desc(self) -> List[DatabaseContext]:
        """Contexts ordered by descending name: newest dated backup first"""
        return sorted(self.contexts(), key=lambda c: c.name, reverse=True)

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, item_id: int) -> bool:
        return item_id in self._contexts

    def backfill_from_index(self, index: Optional[SearchIndex], content_types: Iterable[str]) -> int:
        """Register the databases found by a prior indexing pass

        Runs at most once per registry; later calls return 0 immediately.

        Args:
            index: Case search index
            content_types: Content types of the message databases

        Returns:
            Number of contexts newly added by the scan
        """
        with self._backfill_lock:
            if self._backfill_done:
                return 0
            self._backfill_done = True
            if index is None:
                return 0

            query = " OR ".join(f'contenttype:"{ct}"' for ct in content_types)
            added = 0
            for item in index.search(query):
                _, is_new = self.register(item)
                if is_new:
                    added += 1

        if added:
            logger.info(f"Found {added} other message databases in the case")
        with self._counter_lock:
            self.backfilled += added
        return added

    def increment_backups_merged(self) -> int:
        with self._counter_lock:
            self.backups_merged += 1
            return self.backups_merged

    def should_release_all(self) -> bool:
        """Every registered database is either merged or pre-scanned"""
        with self._counter_lock:
            return len(self._contexts) == self.backups_merged + self.backfilled

    def release_all(self) -> int:
        """Free the chat lists of backups already merged into their main

        Main databases and backups not yet merged keep their payload: their
        own terminal pass still needs it.

        Returns:
            Number of contexts released
        """
        logger.info("Clearing remaining decoded data from cache")
        released = 0
        for context in self.contexts():
            if context.is_confirmed_backup and context.merged:
                context.release_chats()
                released += 1
        return released
