#!/usr/bin/env python3
"""
Centralized Logging Configuration

This module provides unified logging configuration for the correlation core.
It ensures consistent log formats, levels, and behavior across every stage
(registration, merging, media resolution, downloads).

Log Level Conventions:
    DEBUG   - Per-message matching details, per-item query results
    INFO    - Phase transitions, counts (recovered messages, downloaded files)
    WARNING - Recoverable issues (undecodable secondary database, failed link)
    ERROR   - Failures that stop processing of an artifact

Example:
    >>> from common.logging_config import setup_logging, get_logger
    >>> setup_logging(verbose=True, log_file="correlation.log")
    >>> logger = get_logger(__name__)
    >>> logger.info("Case processing started")
"""

import logging
from pathlib import Path
from typing import List, Optional

# =============================================================================
# Format Constants - Single source of truth for log formats
# =============================================================================

LOG_FORMAT_DETAILED = "%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(message)s"
"""Detailed format including timestamp, module and worker thread name."""

LOG_FORMAT_SIMPLE = "%(levelname)s: %(message)s"
"""Simple format for non-verbose console output."""

LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
"""Standard date format for all log timestamps."""

# =============================================================================
# Suppressed Loggers - Third-party libraries that are too noisy
# =============================================================================

SUPPRESSED_LOGGERS: List[str] = [
    "urllib3",
    "urllib3.connectionpool",
    "requests",
]
"""List of third-party logger names to suppress to WARNING level."""


def setup_logging(
    verbose: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """Configure logging for case processing.

    In info mode (verbose=False) the console only shows ERROR messages.
    In verbose mode the console shows INFO and the optional file captures
    DEBUG. Third-party HTTP loggers are always kept at WARNING.

    Args:
        verbose: If True, enable verbose console output
        log_file: Optional path to log file for persistent logging

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO if verbose else logging.ERROR)

    if verbose:
        formatter = logging.Formatter(LOG_FORMAT_DETAILED, datefmt=LOG_DATE_FORMAT)
    else:
        formatter = logging.Formatter(LOG_FORMAT_SIMPLE)

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(LOG_FORMAT_DETAILED, datefmt=LOG_DATE_FORMAT)
        )
        root_logger.addHandler(file_handler)

    for library in SUPPRESSED_LOGGERS:
        logging.getLogger(library).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
