#!/usr/bin/env python3
"""
File utility functions

Provides content-based file type detection for media recovered from the
network, whose declared names and MIME types cannot be trusted.
"""

import logging
from pathlib import Path
from typing import Optional

import magic

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"


def get_mime_type(file_path: Path) -> Optional[str]:
    """
    Get the MIME type of a file using python-magic.

    Args:
        file_path: Path to the file to analyze

    Returns:
        MIME type string or None if detection fails

    Example:
        >>> mime = get_mime_type(Path("/tmp/photo.jpg"))
        >>> print(mime)  # "image/jpeg"
    """
    try:
        return magic.from_file(str(file_path), mime=True)
    except Exception as e:
        logger.debug(f"Failed to get MIME type for {file_path}: {e}")
        return None
