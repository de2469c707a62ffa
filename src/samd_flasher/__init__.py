"""
SAMD Flasher - firmware flashing for ATSAMD21-family boards

Talks SAM-BA to the board's bootloader over a serial port: touch-resets
running applications into the bootloader, identifies the chip, erases and
programs the application region, and starts the new firmware.
"""

__version__ = "0.1.0"

from samd_flasher.protocol import SamBA, SerialTransport
from samd_flasher.device import Device
from samd_flasher.flasher import Flasher
from samd_flasher.core.actions import flash_firmware

__all__ = [
    "SamBA",
    "SerialTransport",
    "Device",
    "Flasher",
    "flash_firmware",
    "__version__",
]
