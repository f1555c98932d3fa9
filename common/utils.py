#!/usr/bin/env python3
"""
Common utility functions for the correlation core
"""

import os
import re
from typing import Optional

# ============================================================================
# Path helpers
# ============================================================================


def basename(name: str) -> str:
    """Strip any path prefix from a declared media name or item name

    Both separators are handled because media names recorded by the Android
    and iOS databases use "/" while Windows evidence paths use "\\".

    Args:
        name: File name, possibly with a directory prefix

    Returns:
        The last path component

    Example:
        >>> basename("Media/WhatsApp Images/IMG-20200101-WA0001.jpg")
        'IMG-20200101-WA0001.jpg'
        >>> basename("IMG-20200101-WA0001.jpg")
        'IMG-20200101-WA0001.jpg'
    """
    for sep in ("/", "\\"):
        if sep in name:
            name = name[name.rindex(sep) + 1 :]
    return name


def parent_path(path: Optional[str]) -> str:
    """Return the parent directory of an evidence path, "" when there is none

    Example:
        >>> parent_path("/data/data/com.whatsapp/databases/msgstore.db")
        '/data/data/com.whatsapp/databases'
        >>> parent_path(None)
        ''
    """
    if not path:
        return ""
    if "/" in path:
        return path[: path.rindex("/")]
    if "\\" in path:
        return path[: path.rindex("\\")]
    return path


# ============================================================================
# Environment parsing
# ============================================================================


def parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable string.

    Args:
        value: String value from environment variable

    Returns:
        True if value is truthy ("true", "1", "yes", "on"), False otherwise

    Example:
        >>> parse_bool_env("true")
        True
        >>> parse_bool_env("0")
        False
    """
    return value.strip().lower() in ("true", "1", "yes", "on")


def should_cleanup_temp() -> bool:
    """Check if temporary directory cleanup should be performed.

    Returns:
        False if DISABLE_TEMP_CLEANUP is set to a truthy value, True otherwise.
    """
    return not parse_bool_env(os.getenv("DISABLE_TEMP_CLEANUP", ""))


# ============================================================================
# Formatting
# ============================================================================

_DIGITS = re.compile(r"[0-9]+")


def international_phone(account_id: Optional[str]) -> Optional[str]:
    """Format a numeric account id as an international phone number

    Example:
        >>> international_phone("5561999999999")
        '+5561999999999'
        >>> international_phone("123-456@g.us") is None
        True
    """
    if account_id and _DIGITS.fullmatch(account_id):
        return "+" + account_id
    return None


def format_mmss(seconds: int) -> str:
    """Format a duration in seconds as MM:SS

    Example:
        >>> format_mmss(75)
        '01:15'
    """
    seconds = max(0, int(seconds or 0))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"
