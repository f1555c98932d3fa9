#!/usr/bin/env python3
"""
Progress reporting for the long-running correlation phases.

Each bar is labelled "[<phase>] <subject>" where the subject is the database
being merged, searched or downloaded for. Bars are transient (cleared when
done) because many artifacts are processed concurrently, and can be switched
off entirely with DISABLE_PROGRESS for headless pipeline workers.
"""

import math
import os
from concurrent.futures import Future, as_completed
from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar

from tqdm import tqdm

from common.utils import parse_bool_env

PHASE_RESOLVE = "Resolve"
PHASE_DOWNLOAD = "Download"
PHASE_MERGE = "Merge"

T = TypeVar("T")


def progress_disabled() -> bool:
    return parse_bool_env(os.getenv("DISABLE_PROGRESS", ""))


def _bar(iterable: Iterable, phase: str, subject: str, total: Optional[int], unit: str) -> tqdm:
    return tqdm(
        iterable,
        desc=f"[{phase}] {subject}",
        total=total,
        unit=unit,
        leave=False,
        disable=progress_disabled(),
    )


def progress_bar(
    iterable: Iterable[T],
    phase: str,
    subject: str,
    total: Optional[int] = None,
    unit: str = "db",
) -> tqdm:
    """Wrap an iterable with a phase-labelled bar.

    Args:
        iterable: The iterable to wrap
        phase: One of the PHASE_* constants
        subject: Database name or short action shown after the phase
        total: Total count when the iterable has no len()
        unit: Unit name for display
    """
    return _bar(iterable, phase, subject, total, unit)


def batches(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Split items into consecutive lists of at most size elements"""
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def batch_progress(items: Sequence[T], size: int, phase: str, subject: str) -> Iterator[List[T]]:
    """Yield batches of items, advancing the bar once per batch"""
    total = math.ceil(len(items) / size) if items else 0
    yield from _bar(batches(items, size), phase, subject, total, "batch")


def completion_progress(futures: Sequence[Future], phase: str, subject: str) -> Iterator[Future]:
    """Yield futures as they complete, counting failed units in the bar postfix"""
    failed = 0
    with _bar(as_completed(futures), phase, subject, len(futures), "file") as bar:
        for future in bar:
            if future.exception() is not None:
                failed += 1
                bar.set_postfix(failed=failed)
            yield future
