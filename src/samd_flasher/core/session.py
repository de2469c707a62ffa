"""
Flashing session: exclusive owner of the bootloader connection.

A FlashSession holds at most one open SAM-BA connection, and a
process-wide lock allows only one session to hold a connection at a time.
Closing is idempotent and never raises, so it is safe on every error path.
"""

import logging
import threading
from typing import Callable, Optional

from samd_flasher.config import DEFAULT_CONFIG, FlasherConfig
from samd_flasher.protocol import SamBA, SerialTransport

logger = logging.getLogger(__name__)

_CONNECTION_LOCK = threading.Lock()


class SessionBusy(Exception):
    """Another session already holds the connection"""
    pass


class FlashSession:
    """
    Context manager owning the single bootloader connection.

    Example:
        with FlashSession(config) as session:
            samba = session.connect("/dev/ttyACM0")
            ...
        # connection closed here, even on exceptions
    """

    def __init__(
        self,
        config: FlasherConfig = DEFAULT_CONFIG,
        transport_factory: Callable = SerialTransport,
    ):
        self.config = config
        self.transport_factory = transport_factory
        self.samba: Optional[SamBA] = None
        self.port: Optional[str] = None
        self._holds_lock = False

    def __enter__(self) -> "FlashSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        return self.samba is not None

    def connect(self, port: str) -> SamBA:
        """
        Open ``port`` at the bootloader baud rate and perform the SAM-BA
        handshake. Any connection this session already holds is closed
        first.

        Raises:
            SessionBusy: If another session holds a connection
            SamBAUnresponsive: If the port does not answer as a bootloader
            TransportError: If the port cannot be opened
        """
        self.close()
        if not _CONNECTION_LOCK.acquire(blocking=False):
            raise SessionBusy("Another flashing session already holds a connection")
        self._holds_lock = True

        transport = self.transport_factory(
            port,
            baudrate=self.config.bootloader_baud,
            timeout=self.config.io_timeout,
            rtscts=self.config.rtscts,
        )
        samba = SamBA(
            transport,
            connect_timeout=self.config.connect_timeout,
            timeout=self.config.io_timeout,
            max_block=self.config.max_block,
        )
        try:
            samba.connect()
        except BaseException:
            samba.disconnect()
            self._release()
            raise

        self.samba = samba
        self.port = port
        logger.debug(f"Session connected on {port}")
        return samba

    def close(self) -> None:
        """Close the connection if open. Never raises."""
        if self.samba is not None:
            self.samba.disconnect()
            logger.debug(f"Session closed on {self.port}")
        self.samba = None
        self.port = None
        self._release()

    def _release(self) -> None:
        if self._holds_lock:
            self._holds_lock = False
            _CONNECTION_LOCK.release()
