"""
Bootloader entry and bootloader port discovery.

A running Arduino-style SAMD application reboots into its bootloader when
its CDC port is opened at 1200 baud and DTR is dropped ("1200-baud
touch"). The board then re-enumerates, possibly under a different port
name, so the bootloader port is found again from USB metadata.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import serial.tools.list_ports

from samd_flasher.config import DEFAULT_CONFIG, KNOWN_VENDORS, FlasherConfig
from samd_flasher.protocol import SerialTransport, TransportError

logger = logging.getLogger(__name__)


class UserCancelled(Exception):
    """Operator declined to pick a port"""
    pass


class PortNotFound(Exception):
    """No bootloader port could be located"""
    pass


@dataclass(frozen=True)
class PortInfo:
    """USB metadata of one serial port."""
    device: str
    vid: Optional[int] = None
    pid: Optional[int] = None
    description: str = ""
    serial_number: Optional[str] = None

    @property
    def vendor_name(self) -> str:
        if self.vid is None:
            return "-"
        return KNOWN_VENDORS.get(self.vid, f"0x{self.vid:04X}")

    def usb_id(self) -> str:
        if self.vid is None or self.pid is None:
            return "-"
        return f"{self.vid:04X}:{self.pid:04X}"


PortChooser = Callable[[List[PortInfo]], Optional[str]]


def list_ports() -> List[PortInfo]:
    """Enumerate serial ports with their USB identifiers."""
    return [
        PortInfo(
            device=p.device,
            vid=p.vid,
            pid=p.pid,
            description=p.description or "",
            serial_number=p.serial_number,
        )
        for p in serial.tools.list_ports.comports()
    ]


class ResetSequencer:
    """
    Forces a running application into its bootloader and finds the
    resulting port.

    Args:
        config: Baud rates, delays and vendor allow-list
        transport_factory: Callable(port, baudrate=..., timeout=..., rtscts=...)
                           returning an unopened transport
    """

    def __init__(
        self,
        config: FlasherConfig = DEFAULT_CONFIG,
        transport_factory: Callable = SerialTransport,
    ):
        self.config = config
        self.transport_factory = transport_factory

    def reset_to_bootloader(self, port: str) -> bool:
        """
        Perform the 1200-baud touch on ``port``.

        Best effort: a port that cannot be opened at the touch baud rate is
        reported, not raised, since the board may already be in its
        bootloader.

        Returns:
            True if the touch was sent, False if the port could not be opened
        """
        logger.info(f"Resetting device on {port} to bootloader mode...")
        transport = self.transport_factory(
            port,
            baudrate=self.config.touch_baud,
            timeout=self.config.io_timeout,
            rtscts=False,
        )
        try:
            transport.open()
        except TransportError as e:
            logger.info(f"Could not perform reset - device may already be in bootloader mode ({e})")
            return False

        try:
            transport.set_dtr(False)
            time.sleep(self.config.touch_delay)
            transport.set_dtr(True)
            time.sleep(self.config.touch_delay)
            transport.set_dtr(False)
        except TransportError as e:
            logger.debug(f"Device reset during DTR toggle (expected): {e}")
        finally:
            try:
                transport.close()
            except Exception as e:
                logger.warning(f"Ignoring error while closing {port}: {e}")

        logger.info("Reset signal sent, waiting for bootloader...")
        time.sleep(self.config.settle_delay)
        return True

    def snapshot(self) -> List[PortInfo]:
        """Ports present right now, for comparison after re-enumeration."""
        return list_ports()

    def bootloader_candidates(
        self,
        previous: Optional[Iterable[PortInfo]] = None,
        preferred: Optional[str] = None,
    ) -> List[PortInfo]:
        """
        Allow-listed ports, newly appeared ones first.

        Among ports that were already present, ``preferred`` (the port the
        touch was sent to) comes first, since boards often re-enumerate
        under the same name.

        Args:
            previous: Ports seen before the touch
            preferred: Port the operator named
        """
        candidates = [p for p in list_ports() if p.vid in self.config.vendor_ids]
        known = {p.device for p in previous} if previous is not None else set()
        candidates.sort(key=lambda p: (p.device in known, p.device != preferred))
        return candidates

    def discover_bootloader_port(
        self,
        previous: Optional[Iterable[PortInfo]] = None,
        choose_port: Optional[PortChooser] = None,
        preferred: Optional[str] = None,
    ) -> str:
        """
        Locate the bootloader port from USB metadata only.

        Falls back to ``choose_port(all_ports)`` when no allow-listed
        vendor is present.

        Raises:
            UserCancelled: If the chooser returns None
            PortNotFound: If nothing matches and no chooser is given
        """
        candidates = self.bootloader_candidates(previous, preferred)
        if candidates:
            port = candidates[0]
            logger.info(
                f"Found potential bootloader port: {port.device} "
                f"(VID={port.vid:04X}, PID={port.pid or 0:04X})"
            )
            return port.device

        if choose_port is None:
            raise PortNotFound("No bootloader port found (no known USB vendor present)")

        logger.warning("Please select the bootloader port (it may have a different name now)")
        selected = choose_port(list_ports())
        if not selected:
            raise UserCancelled("No port selected - cancelled by user")
        return selected
