"""
Chip registry for SAMD-family microcontrollers.

Provides family, flash geometry and identification lookups.
"""

from .registry import (
    DeviceFamily,
    FlashDescriptor,
    ChipInfo,
    CHIP_TABLE,
    DID_MATCH_MASK,
    lookup_chip,
    list_chips,
    validate_registry,
)

__all__ = [
    "DeviceFamily",
    "FlashDescriptor",
    "ChipInfo",
    "CHIP_TABLE",
    "DID_MATCH_MASK",
    "lookup_chip",
    "list_chips",
    "validate_registry",
]
