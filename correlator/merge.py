#!/usr/bin/env python3
"""
Backup Merge Engine

Decides whether a chat list is an older snapshot of another one and merges
the messages only present in the snapshot into the main chat list.

Message identity is (direction, timestamp, body or media hash), hashed with
xxHash64. Chats are paired by the identity of their remote party.
"""

import bisect
import copy
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

import xxhash

from common.failure_tracker import FailureTracker
from common.progress import PHASE_MERGE, progress_bar
from correlator.models import Chat, Message

logger = logging.getLogger(__name__)

# Minimum share of the candidate messages (in chats present in both lists)
# that must also exist in the reference list
BACKUP_OVERLAP_THRESHOLD = 0.5


def message_fingerprint(message: Message) -> str:
    """Identity of a message across copies of a database

    Example:
        >>> a = Message(1, datetime(2020, 1, 1), from_me=True, data="hi")
        >>> b = Message(7, datetime(2020, 1, 1), from_me=True, data="hi")
        >>> message_fingerprint(a) == message_fingerprint(b)
        True
    """
    timestamp = message.timestamp.isoformat() if message.timestamp else ""
    content = message.media_hash or message.data or ""
    h = xxhash.xxh64()
    h.update(b"1" if message.from_me else b"0")
    h.update(b"\x00" + timestamp.encode("utf-8"))
    h.update(b"\x00" + content.encode("utf-8"))
    return h.hexdigest()


def chat_key(chat: Chat) -> str:
    return chat.remote_key


def _sort_key(message: Message):
    # undated messages sort first
    ts = message.timestamp
    if ts is None:
        return (0, 0.0)
    if ts.tzinfo is not None:
        return (1, ts.timestamp())
    return (1, (ts - datetime(1970, 1, 1)).total_seconds())


class ChatMerge:
    """Merge context for one main chat list"""

    def __init__(self, main_chats: List[Chat], backup_name: Optional[str] = None):
        self.main_chats = main_chats
        self.backup_name = backup_name
        self._by_key: Dict[str, Chat] = {}
        for chat in main_chats:
            self._by_key.setdefault(chat_key(chat), chat)

    def is_backup(self, candidate: Optional[List[Chat]]) -> bool:
        """Check if candidate is an older snapshot of the main chat list

        Every candidate chat must exist in the main list and more than
        BACKUP_OVERLAP_THRESHOLD of the candidate messages must be present
        in the main list too. Ambiguous cases resolve to False.
        """
        if not candidate:
            return False

        total = 0
        overlap = 0
        for chat in candidate:
            main_chat = self._by_key.get(chat_key(chat))
            if main_chat is None:
                logger.debug(f"Chat {chat.get_title()} of {self.backup_name} is absent from main")
                return False
            known = {message_fingerprint(m) for m in main_chat.messages}
            total += len(chat.messages)
            overlap += sum(1 for m in chat.messages if message_fingerprint(m) in known)

        if total == 0:
            # only empty chats, all of them known
            return True
        ratio = overlap / total
        logger.debug(f"Overlap of {self.backup_name}: {overlap}/{total} ({ratio:.2f})")
        return ratio > BACKUP_OVERLAP_THRESHOLD

    def merge_chat_list(self, backup: Optional[List[Chat]]) -> int:
        """Insert messages only present in backup into the main chats

        Existing main messages, titles and group members are never touched.

        Returns:
            Number of inserted messages
        """
        recovered = 0
        for chat in backup or []:
            main_chat = self._by_key.get(chat_key(chat))
            if main_chat is None:
                continue
            recovered += self._merge_chat(main_chat, chat)
        return recovered

    @staticmethod
    def _merge_chat(main_chat: Chat, backup_chat: Chat) -> int:
        known: Set[str] = {message_fingerprint(m) for m in main_chat.messages}
        keys = [_sort_key(m) for m in main_chat.messages]
        inserted = 0
        for message in backup_chat.messages:
            fingerprint = message_fingerprint(message)
            if fingerprint in known:
                continue
            key = _sort_key(message)
            pos = bisect.bisect_right(keys, key)
            main_chat.messages.insert(pos, copy.copy(message))
            keys.insert(pos, key)
            known.add(fingerprint)
            inserted += 1
        return inserted


def is_backup(candidate: Optional[List[Chat]], against: List[Chat]) -> bool:
    return ChatMerge(against).is_backup(candidate)


def merge(main: List[Chat], backup: List[Chat]) -> int:
    return ChatMerge(main).merge_chat_list(backup)


def merge_backups_into(main_ctx, candidates: Iterable, tracker: Optional[FailureTracker] = None) -> int:
    """Merge every candidate that is a backup of main_ctx into it

    Candidates are processed newest first (descending name), serialized on
    the main context merge lock.

    Args:
        main_ctx: DatabaseContext of the main database
        candidates: DatabaseContexts of the other, non-main databases
        tracker: Optional audit trail

    Returns:
        Total number of recovered messages
    """
    ordered = sorted(candidates, key=lambda c: c.name, reverse=True)
    total = 0
    with main_ctx.merge_lock:
        if main_ctx.chats is None:
            return 0
        for other in progress_bar(ordered, PHASE_MERGE, main_ctx.name):
            merger = ChatMerge(main_ctx.chats, other.name)
            if not merger.is_backup(other.chats):
                continue
            recovered = merger.merge_chat_list(other.chats)
            other.mark_merged()
            logger.info(f"Recovered {recovered} messages from {other.path}")
            if tracker is not None:
                tracker.add_backup_merge(main_ctx.path, other.path, recovered)
            total += recovered
    return total
