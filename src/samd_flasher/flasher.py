"""
Flash engine for SAMD NVM controllers.

Drives the NVMCTRL peripheral through SAM-BA word accesses:

    erase:  for each row   -> ADDR = addr/2, CTRLA = key|ER,  poll READY
    write:  for each page  -> CTRLA = key|PBC, poll READY,
                              fill page buffer (32-bit word writes),
                              ADDR = addr/2, CTRLA = key|WP, poll READY

Progress and human-readable status are reported through optional
callbacks, invoked synchronously.
"""

import logging
from typing import Callable, Optional

from samd_flasher.models import FlashDescriptor
from samd_flasher.protocol import SamBA

logger = logging.getLogger(__name__)

NVMCTRL_BASE = 0x41004000
NVM_CTRLA = NVMCTRL_BASE + 0x00
NVM_CTRLB = NVMCTRL_BASE + 0x04
NVM_INTFLAG = NVMCTRL_BASE + 0x14
NVM_STATUS = NVMCTRL_BASE + 0x18
NVM_ADDR = NVMCTRL_BASE + 0x1C

NVM_CMD_KEY = 0xA500
NVM_CMD_ER = 0x02    # Erase row
NVM_CMD_WP = 0x04    # Write page
NVM_CMD_PBC = 0x44   # Page buffer clear

CTRLB_MANW = 1 << 7
INTFLAG_READY = 1 << 0
INTFLAG_ERROR = 1 << 1
STATUS_ERRORS = 0x1C  # PROGE | LOCKE | NVME

ProgressCallback = Callable[[int, int], None]
StatusCallback = Callable[[str], None]


class FlashError(Exception):
    """Base exception for flash engine errors"""
    pass


class FlashEraseTimeout(FlashError):
    """NVM controller never reported ready after an erase"""
    pass


class FlashWriteTimeout(FlashError):
    """NVM controller never reported ready after a page write"""
    pass


class ImageTooLarge(FlashError):
    """Image does not fit between the offset and the end of flash"""

    def __init__(self, image_size: int, available: int):
        self.image_size = image_size
        self.available = available
        super().__init__(
            f"Firmware ({image_size} bytes) is larger than available flash "
            f"({available} bytes)"
        )


class FlashVerifyError(FlashError):
    """Read-back data differs from the image"""

    def __init__(self, address: int, expected: int, actual: int):
        self.address = address
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Verify failed at 0x{address:08X}: expected 0x{expected:02X}, got 0x{actual:02X}"
        )


class Flasher:
    """
    Erase, program and verify flash on a connected SAMD target.

    Args:
        samba: Connected SAM-BA client
        flash: Flash geometry of the identified chip
        protected_size: Flash below this address is never touched
                        (the resident bootloader)
        ready_retries: Ready polls per NVM command before timing out
        progress_cb: Optional progress callback(bytes_done, bytes_total)
        status_cb: Optional status callback(message)
    """

    def __init__(
        self,
        samba: SamBA,
        flash: FlashDescriptor,
        *,
        protected_size: int = 0,
        ready_retries: int = 1000,
        progress_cb: Optional[ProgressCallback] = None,
        status_cb: Optional[StatusCallback] = None,
    ):
        if ready_retries < 1:
            raise ValueError("ready_retries must be >= 1")
        self.samba = samba
        self.flash = flash
        self.protected_size = protected_size
        self.ready_retries = ready_retries
        self.progress_cb = progress_cb
        self.status_cb = status_cb
        self._prepared = False

    # ------------------------------------------------------------------
    # Observer plumbing
    # ------------------------------------------------------------------

    def _status(self, message: str) -> None:
        logger.info(message)
        if self.status_cb:
            self.status_cb(message)

    def _progress(self, done: int, total: int) -> None:
        if self.progress_cb:
            self.progress_cb(done, total)

    # ------------------------------------------------------------------
    # NVM controller access
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        """Enable manual page writes and clear stale error flags."""
        if self._prepared:
            return
        ctrlb = self.samba.read_word(NVM_CTRLB)
        if not ctrlb & CTRLB_MANW:
            self.samba.write_word(NVM_CTRLB, ctrlb | CTRLB_MANW)
        self.samba.write_word(NVM_STATUS, STATUS_ERRORS)
        self._prepared = True

    def _wait_ready(self, timeout_exc: type, what: str) -> None:
        for _ in range(self.ready_retries):
            flags = self.samba.read_word(NVM_INTFLAG)
            if flags & INTFLAG_ERROR:
                status = self.samba.read_word(NVM_STATUS)
                self.samba.write_word(NVM_INTFLAG, INTFLAG_ERROR)
                raise FlashError(f"NVM controller error during {what} (STATUS=0x{status:04X})")
            if flags & INTFLAG_READY:
                return
        raise timeout_exc(f"NVM controller not ready after {what} ({self.ready_retries} polls)")

    def _command(self, cmd: int, timeout_exc: type, what: str, address: Optional[int] = None) -> None:
        if address is not None:
            self.samba.write_word(NVM_ADDR, address >> 1)
        self.samba.write_word(NVM_CTRLA, NVM_CMD_KEY | cmd)
        self._wait_ready(timeout_exc, what)

    def _load_page_buffer(self, address: int, page: bytes) -> None:
        # The NVM page buffer only accepts 16- and 32-bit stores
        for pos in range(0, len(page), 4):
            word = int.from_bytes(page[pos: pos + 4], "little")
            self.samba.write_word(address + pos, word)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_region(self, offset: int, length: int, alignment: int) -> None:
        if offset < 0:
            raise FlashError(f"Negative flash offset {offset}")
        if offset < self.protected_size:
            raise FlashError(
                f"Offset 0x{offset:X} is inside the protected bootloader region "
                f"(below 0x{self.protected_size:X})"
            )
        if offset % alignment:
            raise FlashError(f"Offset 0x{offset:X} is not aligned to {alignment} bytes")
        if offset + length > self.flash.total_size:
            raise ImageTooLarge(length, max(self.flash.total_size - offset, 0))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def erase(self, offset: int, length: Optional[int] = None) -> int:
        """
        Erase the rows covering ``[offset, offset + length)``.

        With no length, erases from ``offset`` to the end of flash.

        Returns:
            Number of rows erased

        Raises:
            ImageTooLarge: If the region runs past the end of flash
            FlashEraseTimeout: If a row erase never completes
            FlashError: On alignment, protection or controller errors
        """
        row_size = self.flash.row_size
        if length is None:
            length = max(self.flash.total_size - offset, 0)
        self._check_region(offset, length, row_size)

        end = min(offset + -(-length // row_size) * row_size, self.flash.total_size)
        rows = (end - offset) // row_size
        self._status(f"Erasing {rows} rows at 0x{offset:08X}-0x{end:08X}")

        self._prepare()
        for addr in range(offset, end, row_size):
            self._command(NVM_CMD_ER, FlashEraseTimeout, f"erase of row 0x{addr:08X}", addr)

        self._status("Flash erased")
        return rows

    def write(self, data: bytes, offset: int) -> None:
        """
        Program ``data`` page by page starting at ``offset``.

        The final partial page is zero padded. Progress counts image bytes
        and ends at (len(data), len(data)).

        Raises:
            ImageTooLarge: If offset + len(data) exceeds the flash size
            FlashWriteTimeout: If a page write never completes
            FlashError: On alignment, protection or controller errors
        """
        total = len(data)
        page_size = self.flash.page_size
        self._check_region(offset, total, page_size)

        pages = -(-total // page_size)
        self._status(f"Writing {total} bytes ({pages} pages) at 0x{offset:08X}")
        self._progress(0, total)
        if not total:
            return

        self._prepare()
        for index in range(pages):
            start = index * page_size
            addr = offset + start
            page = bytes(data[start: start + page_size])
            if len(page) < page_size:
                page += b"\x00" * (page_size - len(page))

            self._command(NVM_CMD_PBC, FlashWriteTimeout, f"page buffer clear at 0x{addr:08X}")
            self._load_page_buffer(addr, page)
            self._command(NVM_CMD_WP, FlashWriteTimeout, f"write of page 0x{addr:08X}", addr)

            self._progress(min(start + page_size, total), total)

        self._status("Firmware written")

    def read(self, offset: int, length: int) -> bytes:
        """Read ``length`` bytes of flash starting at ``offset``."""
        return self._read(offset, length, report=True)

    def _read(self, offset: int, length: int, report: bool) -> bytes:
        if offset < 0 or length < 0 or offset + length > self.flash.total_size:
            raise FlashError(
                f"Read of {length} bytes at 0x{offset:X} exceeds flash size {self.flash.total_size}"
            )
        chunk_size = self.flash.row_size * 16
        out = bytearray()
        if report:
            self._progress(0, length)
        for pos in range(0, length, chunk_size):
            out.extend(self.samba.read_block(offset + pos, min(chunk_size, length - pos)))
            if report:
                self._progress(len(out), length)
        return bytes(out)

    def verify(self, data: bytes, offset: int) -> None:
        """
        Read the region back and compare it with ``data``.

        Raises:
            FlashVerifyError: At the first differing byte
        """
        self._status(f"Verifying {len(data)} bytes at 0x{offset:08X}")
        readback = self._read(offset, len(data), report=False)
        if readback != bytes(data):
            for pos, (want, got) in enumerate(zip(data, readback)):
                if want != got:
                    raise FlashVerifyError(offset + pos, want, got)
        self._status("Verify successful")
