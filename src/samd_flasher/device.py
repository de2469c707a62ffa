"""
Device identification for SAMD targets.

Reads the DSU Device Identification register through SAM-BA, resolves it
against the chip registry and knows how to hand control back to the
application once flashing is done.
"""

import logging
from typing import Optional

from samd_flasher.config import BOOTLOADER_SIZE
from samd_flasher.models import ChipInfo, DeviceFamily, FlashDescriptor, lookup_chip
from samd_flasher.protocol import SamBA, TransportError

logger = logging.getLogger(__name__)

# Device Service Unit, Device Identification register
DSU_DID_ADDR = 0x41002018

# Cortex-M0+ Application Interrupt and Reset Control Register
SCB_AIRCR_ADDR = 0xE000ED0C
AIRCR_SYSRESETREQ = 0x05FA0004


class DeviceError(Exception):
    """Base exception for device identification errors"""
    pass


class DeviceUnsupported(DeviceError):
    """Chip id does not match any known part"""

    def __init__(self, chip_id: int):
        self.chip_id = chip_id
        super().__init__(
            f"Device not supported (chip id 0x{chip_id:08X}). "
            f"Supported devices: ATSAMD21-based boards"
        )


class Device:
    """
    Attached SAMD chip, as seen through a connected SAM-BA client.

    Args:
        samba: Connected SAM-BA client
        bootloader_size: Flash reserved by the resident bootloader on
                         families that ship one

    Example:
        device = Device(samba)
        chip = device.identify()
        flash = device.flash_descriptor()
        offset = device.application_offset()
    """

    def __init__(self, samba: SamBA, bootloader_size: int = BOOTLOADER_SIZE):
        if bootloader_size < 0:
            raise ValueError("bootloader_size must not be negative")
        self.samba = samba
        self.bootloader_size = bootloader_size
        self.chip_id: Optional[int] = None
        self._chip: Optional[ChipInfo] = None

    @property
    def chip(self) -> ChipInfo:
        if self._chip is None:
            raise DeviceError("Device has not been identified")
        return self._chip

    @property
    def family(self) -> DeviceFamily:
        return self._chip.family if self._chip else DeviceFamily.UNKNOWN

    @property
    def name(self) -> str:
        return self.chip.name

    def identify(self) -> ChipInfo:
        """
        Read the DID register and resolve the chip.

        Raises:
            DeviceUnsupported: If the chip id is not in the registry
        """
        self._chip = None
        self.chip_id = self.samba.read_word(DSU_DID_ADDR)
        logger.debug(f"DSU DID = 0x{self.chip_id:08X}")

        chip = lookup_chip(self.chip_id)
        if chip is None:
            raise DeviceUnsupported(self.chip_id)

        self._chip = chip
        flash = chip.flash
        logger.info(
            f"Detected {chip.name} ({chip.family.value}): "
            f"{flash.num_pages} pages x {flash.page_size} bytes = {flash.total_size // 1024}KB"
        )
        return chip

    def flash_descriptor(self) -> FlashDescriptor:
        """Flash geometry of the identified chip."""
        return self.chip.flash

    def application_offset(self) -> int:
        """Lowest flash address the application may occupy."""
        return self.bootloader_size if self.chip.family.has_bootloader else 0

    def start_application(self) -> None:
        """
        Leave the bootloader and run the application.

        With a resident bootloader the monitor jumps straight into the
        application's vector table. Without one, a system reset boots the
        freshly written image. The link disappearing is the expected result.
        """
        chip = self.chip
        if chip.family.has_bootloader:
            offset = self.application_offset()
            logger.info(f"Starting application at 0x{offset:X}")
            self.samba.go(offset)
            return

        logger.info("Requesting system reset")
        try:
            self.samba.write_word(SCB_AIRCR_ADDR, AIRCR_SYSRESETREQ)
        except TransportError as e:
            logger.debug(f"Link dropped during reset: {e}")
