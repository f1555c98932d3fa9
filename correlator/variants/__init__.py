#!/usr/bin/env python3
"""
Source variants

One concrete SourceVariant per platform database family.
"""

from correlator.variants.android import AndroidVariant
from correlator.variants.ios import IOSVariant

__all__ = ["AndroidVariant", "IOSVariant"]
