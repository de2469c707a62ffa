"""
Serial Transport Layer

Handles low-level serial communication with SAM-BA bootloaders and with
running applications (for the 1200-baud touch).

This module provides:
- Serial port initialization and configuration (always 8N1)
- Exact-length and terminator-delimited reads with timeouts
- DTR line control
"""

import logging
import time
from typing import Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base exception for transport layer errors"""
    pass


class TransportTimeout(TransportError):
    """Peer did not send the expected bytes in time"""

    def __init__(self, message: str, partial: bytes = b""):
        self.partial = partial
        super().__init__(message)


class SerialTransport:
    """
    Byte-oriented serial link backed by pyserial.

    Example:
        transport = SerialTransport(port="/dev/ttyACM0", baudrate=921600)
        transport.open()
        transport.write(b"V#")
        line = transport.read_until(b"\\n\\r")
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 921600,
        timeout: float = 1.0,
        rtscts: bool = False,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM3")
            baudrate: Serial baud rate
            timeout: Read/write timeout in seconds (default 1.0)
            rtscts: Enable RTS/CTS hardware flow control
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.rtscts = rtscts
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self) -> None:
        """
        Open the serial port.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=self.timeout,
                rtscts=self.rtscts,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps "
                f"(timeout={self.timeout}s, rtscts={self.rtscts})"
            )
        except (serial.SerialException, OSError) as e:
            self.ser = None
            raise TransportError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def _require_open(self) -> "serial.Serial":
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
        return self.ser

    def set_dtr(self, state: bool) -> None:
        """Drive the Data Terminal Ready line."""
        ser = self._require_open()
        try:
            ser.dtr = state
            logger.debug(f"DTR={'on' if state else 'off'} on {self.port}")
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Cannot set DTR on {self.port}: {e}")

    def reset_input_buffer(self) -> None:
        """Discard any unread bytes."""
        ser = self._require_open()
        junk = ser.in_waiting
        ser.reset_input_buffer()
        if junk:
            logger.debug(f"Drained {junk} bytes of junk from buffer")

    def write(self, data: bytes) -> None:
        """
        Send raw bytes and wait until they have left the host buffer.

        Raises:
            TransportError: If write fails
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
            if written != len(data):
                raise TransportError(
                    f"Incomplete write: sent {written}/{len(data)} bytes"
                )
            ser.flush()
            logger.debug(f">>> {data[:64].hex().upper()}{'...' if len(data) > 64 else ''}")
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write error: {e}")

    def read_exact(self, length: int, timeout: Optional[float] = None) -> bytes:
        """
        Receive exactly ``length`` bytes.

        Args:
            length: Number of bytes to receive
            timeout: Overall deadline in seconds (defaults to port timeout)

        Raises:
            TransportTimeout: If fewer bytes arrive before the deadline
            TransportError: If the read fails
        """
        ser = self._require_open()
        deadline = time.monotonic() + (self.timeout if timeout is None else timeout)
        out = bytearray()
        try:
            while len(out) < length:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                ser.timeout = remaining
                chunk = ser.read(length - len(out))
                if chunk:
                    out.extend(chunk)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read error: {e}")
        finally:
            if ser.is_open:
                ser.timeout = self.timeout

        if len(out) < length:
            raise TransportTimeout(
                f"Timeout: expected {length} bytes, got {len(out)}", bytes(out)
            )
        logger.debug(f"<<< {bytes(out[:64]).hex().upper()}{'...' if len(out) > 64 else ''}")
        return bytes(out)

    def read_until(self, terminator: bytes, timeout: Optional[float] = None, max_len: int = 256) -> bytes:
        """
        Receive bytes up to and including ``terminator``.

        Raises:
            TransportTimeout: If the terminator does not arrive in time
            TransportError: If the read fails
        """
        ser = self._require_open()
        deadline = time.monotonic() + (self.timeout if timeout is None else timeout)
        out = bytearray()
        try:
            while not out.endswith(terminator) and len(out) < max_len:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                ser.timeout = remaining
                chunk = ser.read(1)
                if chunk:
                    out.extend(chunk)
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read error: {e}")
        finally:
            if ser.is_open:
                ser.timeout = self.timeout

        if not out.endswith(terminator):
            raise TransportTimeout(
                f"Timeout waiting for {terminator!r} (got {bytes(out)!r})", bytes(out)
            )
        logger.debug(f"<<< {bytes(out).hex().upper()}")
        return bytes(out)
