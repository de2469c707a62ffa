"""
Runtime configuration for SAMD Flasher.

One dataclass holds every tunable: baud rates, timeouts, retry budgets and
the USB vendor allow-list used to recognise bootloader ports. The CLI maps
its options onto it; library callers construct or ``replace()`` it.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Dict, Tuple

# USB vendor IDs of boards that ship a SAM-BA compatible bootloader
KNOWN_VENDORS: Dict[int, str] = {
    0x239A: "Adafruit",
    0x2341: "Arduino",
    0x1B4F: "SparkFun",
    0x03EB: "Atmel/Microchip",
}

# Bootloaders on SAMD21/SAMR21/SAML21 boards occupy the first 8 KiB
BOOTLOADER_SIZE = 0x2000


@dataclass(frozen=True)
class FlasherConfig:
    """
    Tunables for the flashing pipeline.

    Attributes:
        bootloader_baud: Baud rate used to talk SAM-BA to the bootloader
        touch_baud: Baud rate that asks a running application to reboot
                    into its bootloader
        connect_timeout: Seconds to wait for the handshake reply
        io_timeout: Seconds to wait for any other reply
        touch_delay: Pause between DTR transitions during the touch
        settle_delay: Pause after the touch while the board re-enumerates
        ready_retries: Number of NVM ready polls before giving up
        max_block: Largest single binary block transfer in bytes
        rtscts: Enable hardware flow control on the bootloader link
        vendor_ids: USB vendor IDs recognised as bootloader-capable
        bootloader_size: Flash reserved by a resident bootloader
    """
    bootloader_baud: int = 921600
    touch_baud: int = 1200
    connect_timeout: float = 2.5
    io_timeout: float = 1.0
    touch_delay: float = 0.1
    settle_delay: float = 2.0
    ready_retries: int = 1000
    max_block: int = 4096
    rtscts: bool = True
    vendor_ids: Tuple[int, ...] = field(default_factory=lambda: tuple(KNOWN_VENDORS))
    bootloader_size: int = BOOTLOADER_SIZE

    def __post_init__(self) -> None:
        if self.ready_retries < 1:
            raise ValueError("ready_retries must be >= 1")
        if self.max_block < 4 or self.max_block % 4:
            raise ValueError("max_block must be a positive multiple of 4")
        if self.connect_timeout <= 0 or self.io_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.bootloader_size < 0:
            raise ValueError("bootloader_size must not be negative")

    def replace(self, **overrides) -> "FlasherConfig":
        """
        Return a copy with some fields changed.

        ``None`` values are ignored so CLI options can be passed straight
        through.

        Raises:
            ValueError: If an override names an unknown field
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown config field(s): {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)


DEFAULT_CONFIG = FlasherConfig()
