#!/usr/bin/env python3
"""
Media Resolver

Links the attachments declared by messages to files recovered in the case
index. Three tiers are tried in order, each one only over the messages still
unresolved:

1. Hash: one batched query over every declared hash.
2. Name + size: for messages without a hash, by basename and exact length.
3. Fallback (optional): for hash misses, by basename only, accepting files
   1 to 15 bytes longer than declared whose extra bytes are all zero.

The first match bound to a message wins.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from common.progress import PHASE_RESOLVE, batch_progress
from common.utils import basename
from correlator.base import SearchIndex
from correlator.models import Item, Message

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 512
MIN_PADDING = 1
MAX_PADDING = 15


@dataclass
class ResolutionResult:
    """Outcome of resolving the media of a list of messages.

    Attributes:
        resolved: Number of messages bound to an item
        missing_hashes: Declared hashes not found in the case, with the
            messages referencing them
        unresolved: Number of candidate messages left without a match
    """

    resolved: int = 0
    missing_hashes: Dict[str, List[Message]] = field(default_factory=dict)
    unresolved: int = 0

    def update(self, other: "ResolutionResult") -> None:
        self.resolved += other.resolved
        self.unresolved += other.unresolved
        for media_hash, messages in other.missing_hashes.items():
            self.missing_hashes.setdefault(media_hash, []).extend(messages)


def item_ends_with_zeros(item: Item, media_size: int) -> bool:
    """Check that every byte of item beyond media_size is zero

    Only the padding window is read: at most MAX_PADDING bytes.
    """
    try:
        with item.open() as f:
            f.seek(media_size)
            tail = f.read(MAX_PADDING + 1)
    except OSError as e:
        logger.debug(f"Cannot read {item.path}: {e}")
        return False
    return len(tail) > 0 and not any(tail)


def is_padded_copy(item: Item, media_size: int) -> bool:
    """Length within the padding window and trailing bytes all zero"""
    if item.length is None:
        return False
    if not (media_size + MIN_PADDING <= item.length <= media_size + MAX_PADDING):
        return False
    return item_ends_with_zeros(item, media_size)


class MediaResolver:
    """Three-tier attachment linking against the case index"""

    def __init__(
        self,
        index: Optional[SearchIndex],
        link_media_by_name_and_approx_size_fallback: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.index = index
        self.fallback_enabled = link_media_by_name_and_approx_size_fallback
        self.batch_size = batch_size

    def resolve(self, messages: List[Message], save_item_ref: bool = True) -> ResolutionResult:
        """Resolve the attachments of messages in place

        Args:
            messages: Messages of one chat (or one whole database)
            save_item_ref: Keep the item reference on bound messages; False
                when scanning a whole database, where only the query is kept

        Returns:
            ResolutionResult aggregated over every batch
        """
        result = ResolutionResult()
        if self.index is None:
            return result

        candidates = [m for m in messages if m.has_media_reference]
        if not candidates:
            return result

        for batch in batch_progress(candidates, self.batch_size, PHASE_RESOLVE, "media"):
            result.update(self._resolve_batch(batch, save_item_ref))
        return result

    def _resolve_batch(self, messages: List[Message], save_item_ref: bool) -> ResolutionResult:
        result = ResolutionResult()
        bound: Set[int] = set()

        def bind(item: Item, group: List[Message], query: str) -> None:
            for m in group:
                if id(m) in bound or m.media_item is not None:
                    continue
                if m.bind_media(item, query, save_item_ref):
                    bound.add(id(m))
                    result.resolved += 1
                    logger.debug(f"Message {m.id} linked with {query}")

        by_hash: Dict[str, List[Message]] = OrderedDict()
        by_name_size: Dict[Tuple[str, int], List[Message]] = OrderedDict()
        for m in messages:
            if m.media_item is not None:
                continue
            if m.media_hash:
                by_hash.setdefault(m.media_hash, []).append(m)
            elif m.media_name and m.media_size > 0:
                by_name_size.setdefault((basename(m.media_name), m.media_size), []).append(m)

        escape = self.index.escape

        # Tier 1: declared hash
        if by_hash:
            query = " OR ".join(f'sha-256:"{escape(h)}"' for h in by_hash)
            lowered = {h.lower(): h for h in by_hash}
            for item in self.index.search(query):
                item_hash = item.sha256
                if not item_hash:
                    continue
                key = item_hash if item_hash in by_hash else lowered.get(item_hash.lower())
                group = by_hash.pop(key, None) if key else None
                if group:
                    bind(item, group, f'sha-256:"{item_hash}"')

        # Tier 2: name and exact size
        if by_name_size:
            query = " OR ".join(
                f'(name:"{escape(name)}" AND length:{size})' for name, size in by_name_size
            )
            for item in self.index.search(query):
                if not item.name or not item.length:
                    continue
                name = basename(item.name)
                group = by_name_size.get((name, item.length))
                if group:
                    bind(item, group, f'name:"{escape(name)}" AND length:{item.length}')

        # Tier 3: name and approximate size, zero padded
        if self.fallback_enabled and by_hash:
            by_name: Dict[str, List[Message]] = OrderedDict()
            for group in by_hash.values():
                for m in group:
                    if m.media_name:
                        by_name.setdefault(basename(m.media_name), []).append(m)
            if by_name:
                query = " OR ".join(f'name:"{escape(name)}"' for name in by_name)
                for item in self.index.search(query):
                    if not item.name or not item.length:
                        continue
                    group = by_name.get(basename(item.name))
                    if not group:
                        continue
                    accepted = [m for m in group if is_padded_copy(item, m.media_size)]
                    if accepted:
                        bind(item, accepted, f'hash:"{item.hash}"')

        for media_hash, group in by_hash.items():
            missing = [m for m in group if id(m) not in bound]
            if missing:
                result.missing_hashes[media_hash] = missing
        result.unresolved = sum(1 for m in messages if m.media_item is None and id(m) not in bound)
        return result
