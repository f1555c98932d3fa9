#!/usr/bin/env python3
"""
Variant Registry

Manages registration and lookup of source variants by the content type of
the artifacts handed in by the pipeline.
"""

import logging
from typing import List, Optional

from correlator.base import Decoder, SourceVariant
from correlator.variants import AndroidVariant, IOSVariant

logger = logging.getLogger(__name__)


class VariantRegistry:
    """Registry for all source variants"""

    def __init__(self):
        """Initialize empty variant registry"""
        self.variants: List[SourceVariant] = []

    def register(self, variant: SourceVariant) -> None:
        """Register a variant

        Args:
            variant: An instance of a SourceVariant subclass

        Raises:
            TypeError: If variant is a class or doesn't inherit from SourceVariant
        """
        # Variants carry their decoder, so instances are registered
        if isinstance(variant, type):
            raise TypeError(
                f"Variant must be an instance (not a class), got {variant.__name__}"
            )

        if not isinstance(variant, SourceVariant):
            raise TypeError(
                f"Variant must inherit from SourceVariant, got {type(variant).__name__}"
            )

        self.variants.append(variant)
        logger.debug(f"Registered variant {variant.get_name()}")

    def for_content_type(self, content_type: Optional[str]) -> Optional[SourceVariant]:
        """Find the variant owning an artifact content type

        Args:
            content_type: Content-type tag of the artifact

        Returns:
            Matching variant, or None if no variant handles it
        """
        for variant in self.variants:
            if variant.handles(content_type):
                return variant
        return None

    def get_by_name(self, name: str) -> Optional[SourceVariant]:
        """Find variant by name (case-insensitive).

        Args:
            name: Variant name to search for

        Returns:
            Matching variant, or None if not found
        """
        name_lower = name.lower()
        for variant in self.variants:
            if variant.get_name().lower() == name_lower:
                return variant
        return None

    def get_all_variants(self) -> List[SourceVariant]:
        """Get all registered variants in registration order"""
        return list(self.variants)

    def get_variant_count(self) -> int:
        return len(self.variants)


def default_registry(android_decoder: Decoder, ios_decoder: Decoder) -> VariantRegistry:
    """Build a registry holding both platform variants

    Args:
        android_decoder: Decoder for the msgstore.db / wa.db schema
        ios_decoder: Decoder for the ChatStorage / ContactsV2 schema

    Returns:
        VariantRegistry with the Android and iOS variants registered
    """
    registry = VariantRegistry()
    registry.register(AndroidVariant(android_decoder))
    registry.register(IOSVariant(ios_decoder))
    return registry
