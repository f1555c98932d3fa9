"""
WhatsApp evidence correlation core.

Registers the message databases of a case, merges backups into their main
copy, links attachments to recovered files and downloads missing media.
"""

from correlator.errors import CorrelatorError, DecodeError
from correlator.parser import CaseRun, WhatsAppCorrelator
from correlator.variant_registry import VariantRegistry, default_registry

__all__ = [
    "CaseRun",
    "CorrelatorError",
    "DecodeError",
    "VariantRegistry",
    "WhatsAppCorrelator",
    "default_registry",
]
