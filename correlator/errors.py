#!/usr/bin/env python3
"""
Exception hierarchy of the correlation core.

Only CorrelatorError (and its subclasses) crosses the artifact-processing
boundary, always chained to the original cause.
"""


class CorrelatorError(Exception):
    """Reportable failure while processing one artifact."""


class DecodeError(CorrelatorError):
    """Corrupt or unsupported source artifact."""


class LinkExtractionError(Exception):
    """Download links could not be read from a database."""


class DownloadFailure(Exception):
    """A single media download failed. Never aborts sibling downloads."""


class LinkNotFound(DownloadFailure):
    """The remote media is no longer available. Expected, not logged."""


class MediaDecryptionError(DownloadFailure):
    """Downloaded media failed the integrity or padding check."""
