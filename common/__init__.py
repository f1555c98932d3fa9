"""
Common modules shared across all correlation stages.

This package contains the ambient concerns (logging, configuration, progress
reporting, temporary resources and audit tracking) used by the core.
"""

from .config import CorrelatorConfig
from .failure_tracker import FailureTracker
from .logging_config import get_logger, setup_logging

__version__ = "0.1.0"
__all__ = [
    "CorrelatorConfig",
    "FailureTracker",
    "get_logger",
    "setup_logging",
]
