#!/usr/bin/env python3
"""
Processing utility functions

Provides scoped temporary resources for units of work that spill bytes to
disk (downloaded and decrypted media, copies of databases being decoded).
"""

import shutil
import tempfile
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Generator, Optional

from common.utils import should_cleanup_temp


@contextmanager
def temp_processing_directory(
    base_dir: Optional[str] = None, prefix: str = "temp"
) -> Generator[Path, None, None]:
    """
    Context manager for temporary processing directories with automatic cleanup.

    Creates a unique temporary directory and removes it when the context
    exits (unless cleanup is disabled via DISABLE_TEMP_CLEANUP).

    Args:
        base_dir: Base directory where the temp directory is created; the
                  system temp directory when None
        prefix: Prefix for the temp directory name (default: "temp")

    Yields:
        Path to the created temporary directory

    Example:
        >>> with temp_processing_directory(None, "download") as temp_dir:
        ...     encrypted = temp_dir / "encrypted.bin"
        ... # temp_dir is automatically cleaned up here
    """
    temp_base = Path(base_dir).resolve() if base_dir else Path(tempfile.gettempdir())
    temp_base.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    unique_id = str(uuid.uuid4())[:8]
    temp_dir = temp_base / f"{prefix}_{timestamp}_{unique_id}"
    temp_dir.mkdir(parents=True, exist_ok=True)

    try:
        yield temp_dir
    finally:
        if temp_dir.exists() and should_cleanup_temp():
            shutil.rmtree(temp_dir, ignore_errors=True)
