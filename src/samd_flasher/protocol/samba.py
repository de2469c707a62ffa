"""
SAM-BA Monitor Protocol Client

Turns a byte-oriented serial transport into word and block memory access
on a SAMD bootloader.

Protocol:
    Commands are ASCII, terminated by '#'. Numbers are 8-digit hex.

    N#                  -> "\\n\\r"           switch to binary mode
    T#                  -> "\\n\\r"           switch to text mode
    V#                  -> "<version>\\n\\r"  identify the monitor
    w<addr>,4#          -> 4 bytes LE         read word
    W<addr>,<value>#    -> (nothing)          write word
    R<addr>,<len>#      -> <len> bytes        read block
    S<addr>,<len># data -> (nothing)          write block
    G<addr>#            -> (nothing)          jump to code at addr

    In text mode each reply is followed by a '>' prompt and words are
    printed as "0x%08X". Binary mode is negotiated on connect.

Every command is a complete round trip performed under a lock, so at
most one command is ever outstanding on the link.
"""

import logging
import re
import struct
import threading
from enum import Enum
from typing import Optional

from .serial_transport import TransportError, TransportTimeout

logger = logging.getLogger(__name__)

TEXT_PROMPT = b">"
LINE_END = b"\n\r"
_WORD_RE = re.compile(rb"0x([0-9A-Fa-f]{1,8})")


class ProtocolError(Exception):
    """Base exception for SAM-BA protocol errors"""
    pass


class SamBAUnresponsive(ProtocolError):
    """No valid reply within the timeout; the port is probably not a bootloader"""
    pass


class SamBAMalformed(ProtocolError):
    """Reply did not match the expected frame shape"""
    pass


class Mode(Enum):
    """Monitor response mode."""
    TEXT = "text"
    BINARY = "binary"


def _check_u32(value: int, label: str) -> None:
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"{label} out of 32-bit range: {value:#x}")


class SamBA:
    """
    SAM-BA client over an already constructed transport.

    The transport must provide open(), close(), is_open, write(),
    read_exact(), read_until() and reset_input_buffer().

    Example:
        samba = SamBA(SerialTransport("/dev/ttyACM0", 921600))
        samba.connect()
        did = samba.read_word(0x41002018)
        samba.disconnect()
    """

    def __init__(
        self,
        transport,
        *,
        connect_timeout: float = 2.5,
        timeout: float = 1.0,
        max_block: int = 4096,
    ):
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.timeout = timeout
        self.max_block = max_block
        self.mode = Mode.TEXT
        self.version: Optional[str] = None
        self._connected = False
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._connected

    def __enter__(self) -> "SamBA":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    # ------------------------------------------------------------------
    # Link management
    # ------------------------------------------------------------------

    def connect(self) -> str:
        """
        Negotiate binary mode and read the monitor version.

        Returns:
            Monitor version string

        Raises:
            SamBAUnresponsive: If the handshake gets no valid reply in time
            TransportError: If the port cannot be opened
        """
        if not self.transport.is_open:
            self.transport.open()

        with self._lock:
            self.transport.reset_input_buffer()
            try:
                self.transport.write(b"N#")
                ack = self.transport.read_exact(len(LINE_END), timeout=self.connect_timeout)
                if ack != LINE_END:
                    raise SamBAUnresponsive(
                        f"Unexpected reply to binary mode request: {ack!r}"
                    )
                self.mode = Mode.BINARY

                self.transport.write(b"V#")
                line = self.transport.read_until(LINE_END, timeout=self.connect_timeout)
            except TransportTimeout as e:
                raise SamBAUnresponsive(f"No SAM-BA reply within {self.connect_timeout}s: {e}")

        version = line[: -len(LINE_END)].decode("ascii", errors="replace").strip()
        if not version:
            raise SamBAUnresponsive("Empty version reply")

        self.version = version
        self._connected = True
        logger.info(f"SAM-BA connected: {version}")
        return version

    def disconnect(self) -> None:
        """Close the link. Safe to call repeatedly; never raises."""
        self._connected = False
        try:
            self.transport.close()
        except Exception as e:
            logger.warning(f"Ignoring error while closing link: {e}")

    def set_text_mode(self) -> None:
        """Switch the monitor back to human-readable replies."""
        with self._lock:
            self._require_connected()
            self.transport.write(b"T#")
            self._expect(len(LINE_END))
            self.mode = Mode.TEXT

    # ------------------------------------------------------------------
    # Memory access
    # ------------------------------------------------------------------

    def read_word(self, address: int) -> int:
        """
        Read one 32-bit word.

        Raises:
            SamBAMalformed: If the reply cannot be parsed
            SamBAUnresponsive: If no reply arrives in time
        """
        _check_u32(address, "address")
        with self._lock:
            self._require_connected()
            self.transport.write(f"w{address:08X},4#".encode("ascii"))
            if self.mode is Mode.BINARY:
                raw = self._expect(4)
                value = struct.unpack("<I", raw)[0]
            else:
                value = self._parse_text_word(self._read_prompt())
        logger.debug(f"read_word 0x{address:08X} = 0x{value:08X}")
        return value

    def write_word(self, address: int, value: int) -> None:
        """Write one 32-bit word."""
        _check_u32(address, "address")
        _check_u32(value, "value")
        with self._lock:
            self._require_connected()
            self.transport.write(f"W{address:08X},{value:08X}#".encode("ascii"))
            if self.mode is Mode.TEXT:
                self._read_prompt()
        logger.debug(f"write_word 0x{address:08X} <- 0x{value:08X}")

    def read_block(self, address: int, length: int) -> bytes:
        """Read ``length`` bytes starting at ``address``."""
        _check_u32(address, "address")
        if length < 0 or address + length > 0x100000000:
            raise ValueError(f"Invalid block length {length} at 0x{address:08X}")
        if length == 0:
            return b""

        if self.mode is Mode.TEXT:
            start = address & ~3
            end = (address + length + 3) & ~3
            words = b"".join(
                struct.pack("<I", self.read_word(a)) for a in range(start, end, 4)
            )
            return words[address - start: address - start + length]

        out = bytearray()
        for pos in range(0, length, self.max_block):
            size = min(self.max_block, length - pos)
            with self._lock:
                self._require_connected()
                self.transport.write(f"R{address + pos:08X},{size:08X}#".encode("ascii"))
                out.extend(self._expect(size))
        return bytes(out)

    def write_block(self, address: int, data: bytes) -> None:
        """
        Write ``data`` starting at ``address``.

        In text mode the block is written word by word, so address and
        length must be word aligned.
        """
        _check_u32(address, "address")
        if address + len(data) > 0x100000000:
            raise ValueError(f"Block of {len(data)} bytes overflows address space")
        if not data:
            return

        if self.mode is Mode.TEXT:
            if address % 4 or len(data) % 4:
                raise ValueError("Text mode block writes must be word aligned")
            for pos in range(0, len(data), 4):
                self.write_word(address + pos, struct.unpack_from("<I", data, pos)[0])
            return

        for pos in range(0, len(data), self.max_block):
            chunk = data[pos: pos + self.max_block]
            with self._lock:
                self._require_connected()
                self.transport.write(f"S{address + pos:08X},{len(chunk):08X}#".encode("ascii"))
                self.transport.write(bytes(chunk))

    def go(self, address: int) -> None:
        """
        Jump to code at ``address``.

        The monitor stops answering afterwards; link errors are expected
        and ignored.
        """
        _check_u32(address, "address")
        with self._lock:
            self._require_connected()
            try:
                self.transport.write(f"G{address:08X}#".encode("ascii"))
            except TransportError as e:
                logger.debug(f"Link dropped after go: {e}")
        logger.info(f"Jumped to 0x{address:08X}")

    # ------------------------------------------------------------------
    # Helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _require_connected(self) -> None:
        if not self._connected:
            raise ProtocolError("Not connected to a SAM-BA monitor")

    def _expect(self, length: int) -> bytes:
        try:
            return self.transport.read_exact(length, timeout=self.timeout)
        except TransportTimeout as e:
            if e.partial:
                raise SamBAMalformed(
                    f"Short reply: expected {length} bytes, got {len(e.partial)}"
                )
            raise SamBAUnresponsive(f"No reply within {self.timeout}s")

    def _read_prompt(self) -> bytes:
        try:
            return self.transport.read_until(TEXT_PROMPT, timeout=self.timeout)
        except TransportTimeout as e:
            if e.partial:
                raise SamBAMalformed(f"Reply without prompt: {e.partial!r}")
            raise SamBAUnresponsive(f"No reply within {self.timeout}s")

    @staticmethod
    def _parse_text_word(reply: bytes) -> int:
        match = _WORD_RE.search(reply)
        if not match:
            raise SamBAMalformed(f"Cannot parse word from reply {reply!r}")
        return int(match.group(1), 16)
