"""
Chip registry for SAMD-family microcontrollers.

Provides a single source of truth for:
- Device families and whether they ship with a resident bootloader
- Flash geometry (page size, page count, total size) per part
- Identification by the DSU Device Identification (DID) register

Usage:
    from samd_flasher.models import lookup_chip, list_chips

    chip = lookup_chip(0x10010305)   # -> ChipInfo for ATSAMD21G18A
    chip.flash.total_size            # -> 262144
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from samd_flasher.config import BOOTLOADER_SIZE

# DID bits 15:8 carry die and revision; they do not change the geometry
DID_MATCH_MASK = 0xFFFF00FF

# Every SAMD NVM erase operates on rows of four pages
PAGES_PER_ROW = 4


class DeviceFamily(Enum):
    """Supported chip families."""
    SAMD21 = "SAMD21"
    SAMR21 = "SAMR21"
    SAML21 = "SAML21"
    SAMD20 = "SAMD20"
    SAMD11 = "SAMD11"
    UNKNOWN = "UNKNOWN"

    @property
    def has_bootloader(self) -> bool:
        """Whether boards of this family ship with a resident bootloader."""
        return self in _BOOTLOADER_FAMILIES

    @property
    def application_offset(self) -> int:
        """First flash address available to the application."""
        return BOOTLOADER_SIZE if self.has_bootloader else 0


_BOOTLOADER_FAMILIES = frozenset(
    {DeviceFamily.SAMD21, DeviceFamily.SAMR21, DeviceFamily.SAML21}
)


@dataclass(frozen=True)
class FlashDescriptor:
    """Flash geometry of one part."""
    page_size: int
    num_pages: int
    total_size: int
    pages_per_row: int = PAGES_PER_ROW

    def __post_init__(self) -> None:
        if self.page_size <= 0 or self.num_pages <= 0:
            raise ValueError("page_size and num_pages must be positive")
        if self.total_size != self.page_size * self.num_pages:
            raise ValueError(
                f"total_size {self.total_size} != page_size {self.page_size} "
                f"x num_pages {self.num_pages}"
            )

    @property
    def row_size(self) -> int:
        """Erase granularity in bytes."""
        return self.page_size * self.pages_per_row

    @classmethod
    def from_size(cls, total_size: int, page_size: int = 64) -> "FlashDescriptor":
        return cls(page_size=page_size, num_pages=total_size // page_size, total_size=total_size)


@dataclass(frozen=True)
class ChipInfo:
    """One entry of the chip table."""
    chip_id: int
    name: str
    family: DeviceFamily
    flash: FlashDescriptor

    @property
    def application_offset(self) -> int:
        return self.family.application_offset

    def to_dict(self) -> Dict:
        """Convert to JSON-serializable dict."""
        return {
            "chip_id": f"0x{self.chip_id:08X}",
            "name": self.name,
            "family": self.family.value,
            "page_size": self.flash.page_size,
            "num_pages": self.flash.num_pages,
            "total_size": self.flash.total_size,
            "application_offset": f"0x{self.application_offset:X}",
        }


def _kb(n: int) -> FlashDescriptor:
    return FlashDescriptor.from_size(n * 1024)


# =============================================================================
# Chip table, keyed by DID & DID_MATCH_MASK
# =============================================================================

_CHIPS: List[ChipInfo] = [
    # SAMD21
    ChipInfo(0x10010000, "ATSAMD21J18A", DeviceFamily.SAMD21, _kb(256)),
    ChipInfo(0x10010001, "ATSAMD21J17A", DeviceFamily.SAMD21, _kb(128)),
    ChipInfo(0x10010002, "ATSAMD21J16A", DeviceFamily.SAMD21, _kb(64)),
    ChipInfo(0x10010003, "ATSAMD21J15A", DeviceFamily.SAMD21, _kb(32)),
    ChipInfo(0x10010005, "ATSAMD21G18A", DeviceFamily.SAMD21, _kb(256)),
    ChipInfo(0x10010006, "ATSAMD21G17A", DeviceFamily.SAMD21, _kb(128)),
    ChipInfo(0x10010007, "ATSAMD21G16A", DeviceFamily.SAMD21, _kb(64)),
    ChipInfo(0x10010008, "ATSAMD21G15A", DeviceFamily.SAMD21, _kb(32)),
    ChipInfo(0x1001000A, "ATSAMD21E18A", DeviceFamily.SAMD21, _kb(256)),
    ChipInfo(0x1001000B, "ATSAMD21E17A", DeviceFamily.SAMD21, _kb(128)),
    ChipInfo(0x1001000C, "ATSAMD21E16A", DeviceFamily.SAMD21, _kb(64)),
    ChipInfo(0x1001000D, "ATSAMD21E15A", DeviceFamily.SAMD21, _kb(32)),
    ChipInfo(0x1001000F, "ATSAMD21G18AU", DeviceFamily.SAMD21, _kb(256)),
    ChipInfo(0x10010010, "ATSAMD21G17AU", DeviceFamily.SAMD21, _kb(128)),
    ChipInfo(0x10010020, "ATSAMD21J16B", DeviceFamily.SAMD21, _kb(64)),
    ChipInfo(0x10010021, "ATSAMD21J15B", DeviceFamily.SAMD21, _kb(32)),
    ChipInfo(0x10010023, "ATSAMD21G16B", DeviceFamily.SAMD21, _kb(64)),
    ChipInfo(0x10010024, "ATSAMD21G15B", DeviceFamily.SAMD21, _kb(32)),
    ChipInfo(0x10010026, "ATSAMD21E16B", DeviceFamily.SAMD21, _kb(64)),
    ChipInfo(0x10010027, "ATSAMD21E15B", DeviceFamily.SAMD21, _kb(32)),
    # SAMR21 (same series as SAMD21, distinct device selects)
    ChipInfo(0x10010019, "ATSAMR21G18A", DeviceFamily.SAMR21, _kb(256)),
    ChipInfo(0x1001001A, "ATSAMR21G17A", DeviceFamily.SAMR21, _kb(128)),
    ChipInfo(0x1001001B, "ATSAMR21G16A", DeviceFamily.SAMR21, _kb(64)),
    ChipInfo(0x1001001C, "ATSAMR21E18A", DeviceFamily.SAMR21, _kb(256)),
    ChipInfo(0x1001001D, "ATSAMR21E17A", DeviceFamily.SAMR21, _kb(128)),
    ChipInfo(0x1001001E, "ATSAMR21E16A", DeviceFamily.SAMR21, _kb(64)),
    # SAML21
    ChipInfo(0x10810000, "ATSAML21J18A", DeviceFamily.SAML21, _kb(256)),
    ChipInfo(0x10810001, "ATSAML21J17A", DeviceFamily.SAML21, _kb(128)),
    ChipInfo(0x10810002, "ATSAML21J16A", DeviceFamily.SAML21, _kb(64)),
    ChipInfo(0x10810005, "ATSAML21G18A", DeviceFamily.SAML21, _kb(256)),
    ChipInfo(0x10810006, "ATSAML21G17A", DeviceFamily.SAML21, _kb(128)),
    ChipInfo(0x10810007, "ATSAML21G16A", DeviceFamily.SAML21, _kb(64)),
    ChipInfo(0x1081000A, "ATSAML21E18A", DeviceFamily.SAML21, _kb(256)),
    ChipInfo(0x1081000B, "ATSAML21E17A", DeviceFamily.SAML21, _kb(128)),
    ChipInfo(0x1081000C, "ATSAML21E16A", DeviceFamily.SAML21, _kb(64)),
    ChipInfo(0x1081000D, "ATSAML21E15A", DeviceFamily.SAML21, _kb(32)),
    # SAMD20 (geometry only, no resident bootloader)
    ChipInfo(0x10000000, "ATSAMD20J18A", DeviceFamily.SAMD20, _kb(256)),
    ChipInfo(0x10000001, "ATSAMD20J17A", DeviceFamily.SAMD20, _kb(128)),
    ChipInfo(0x10000002, "ATSAMD20J16A", DeviceFamily.SAMD20, _kb(64)),
    ChipInfo(0x10000003, "ATSAMD20J15A", DeviceFamily.SAMD20, _kb(32)),
    ChipInfo(0x10000004, "ATSAMD20J14A", DeviceFamily.SAMD20, _kb(16)),
    ChipInfo(0x10000005, "ATSAMD20G18A", DeviceFamily.SAMD20, _kb(256)),
    ChipInfo(0x10000006, "ATSAMD20G17A", DeviceFamily.SAMD20, _kb(128)),
    ChipInfo(0x10000007, "ATSAMD20G16A", DeviceFamily.SAMD20, _kb(64)),
    ChipInfo(0x10000008, "ATSAMD20G15A", DeviceFamily.SAMD20, _kb(32)),
    ChipInfo(0x10000009, "ATSAMD20G14A", DeviceFamily.SAMD20, _kb(16)),
    ChipInfo(0x1000000A, "ATSAMD20E18A", DeviceFamily.SAMD20, _kb(256)),
    ChipInfo(0x1000000B, "ATSAMD20E17A", DeviceFamily.SAMD20, _kb(128)),
    ChipInfo(0x1000000C, "ATSAMD20E16A", DeviceFamily.SAMD20, _kb(64)),
    ChipInfo(0x1000000D, "ATSAMD20E15A", DeviceFamily.SAMD20, _kb(32)),
    ChipInfo(0x1000000E, "ATSAMD20E14A", DeviceFamily.SAMD20, _kb(16)),
    # SAMD11 (geometry only, no resident bootloader)
    ChipInfo(0x10030000, "ATSAMD11D14AM", DeviceFamily.SAMD11, _kb(16)),
    ChipInfo(0x10030003, "ATSAMD11D14AS", DeviceFamily.SAMD11, _kb(16)),
    ChipInfo(0x10030006, "ATSAMD11C14A", DeviceFamily.SAMD11, _kb(16)),
]

CHIP_TABLE: Dict[int, ChipInfo] = {chip.chip_id: chip for chip in _CHIPS}


def validate_registry(chips: Optional[List[ChipInfo]] = None) -> None:
    """
    Check the chip table for duplicate codes.

    Raises:
        ValueError: If two entries share a masked chip id
    """
    seen: Dict[int, str] = {}
    for chip in chips if chips is not None else _CHIPS:
        key = chip.chip_id & DID_MATCH_MASK
        if key in seen:
            raise ValueError(
                f"Chip id 0x{key:08X} used by both {seen[key]} and {chip.name}"
            )
        seen[key] = chip.name


def lookup_chip(chip_id: int) -> Optional[ChipInfo]:
    """
    Resolve a raw DID register value to a chip.

    Returns:
        ChipInfo, or None if the code is not in the table
    """
    return CHIP_TABLE.get(chip_id & DID_MATCH_MASK)


def list_chips(family: Optional[DeviceFamily] = None) -> List[ChipInfo]:
    """List known chips, optionally restricted to one family."""
    chips = sorted(CHIP_TABLE.values(), key=lambda c: (c.family.value, c.name))
    if family is not None:
        chips = [c for c in chips if c.family == family]
    return chips


validate_registry()
