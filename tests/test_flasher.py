"""Tests for the NVM flash engine."""

import os

import pytest

from samd_flasher.flasher import (
    CTRLB_MANW,
    Flasher,
    FlashEraseTimeout,
    FlashError,
    FlashVerifyError,
    FlashWriteTimeout,
    ImageTooLarge,
)
from samd_flasher.models import FlashDescriptor

from fake_target import connected_samba

SAMD21_FLASH = FlashDescriptor(page_size=64, num_pages=4096, total_size=262144)
APP_OFFSET = 0x2000


def make_flasher(board=None, **kwargs):
    samba, board, _ = connected_samba(board)
    kwargs.setdefault("protected_size", APP_OFFSET)
    return Flasher(samba, SAMD21_FLASH, **kwargs), board


class TestWrite:

    @pytest.mark.parametrize("length", [1, 63, 64, 65, 1000, 4096])
    def test_write_then_read_back(self, length):
        flasher, board = make_flasher()
        image = os.urandom(length)

        flasher.erase(APP_OFFSET, length)
        flasher.write(image, APP_OFFSET)

        assert flasher.read(APP_OFFSET, length) == image
        padded_end = APP_OFFSET + -(-length // 64) * 64
        assert bytes(board.flash[APP_OFFSET + length: padded_end]) == b"\x00" * (padded_end - APP_OFFSET - length)
        assert board.flash[padded_end] == 0xFF

    def test_write_enables_manual_page_writes(self):
        flasher, board = make_flasher()
        flasher.write(b"\x55" * 64, APP_OFFSET)
        assert board.ctrlb & CTRLB_MANW

    def test_each_page_is_cleared_then_written(self):
        flasher, board = make_flasher()
        flasher.write(b"\xA5" * 200, APP_OFFSET)

        names = [name for name, _ in board.nvm_log]
        assert names == ["PBC", "WP"] * 4
        assert board.written_pages == [0x2000, 0x2040, 0x2080, 0x20C0]

    def test_page_buffer_loaded_with_word_writes(self):
        flasher, board = make_flasher()
        flasher.write(bytes(range(64)), APP_OFFSET)

        assert not any(c.startswith("S") for c in board.commands)
        page_words = [c for c in board.commands if c.startswith("W0000")]
        assert len(page_words) == 16
        assert page_words[0] == "W00002000,03020100#"
        assert board.byte_writes_to_flash == 0
        assert bytes(board.flash[APP_OFFSET: APP_OFFSET + 64]) == bytes(range(64))

    def test_too_large_sends_no_traffic(self):
        flasher, board = make_flasher()
        before = list(board.commands)

        with pytest.raises(ImageTooLarge) as exc_info:
            flasher.write(b"\x00" * 300000, APP_OFFSET)

        assert exc_info.value.available == 262144 - APP_OFFSET
        assert board.commands == before

    def test_write_into_bootloader_region_refused(self):
        flasher, board = make_flasher()
        with pytest.raises(FlashError):
            flasher.write(b"\x00" * 64, 0x1000)
        assert board.flash_traffic() == []

    def test_unaligned_offset_refused(self):
        flasher, _ = make_flasher()
        with pytest.raises(FlashError):
            flasher.write(b"\x00" * 64, APP_OFFSET + 2)

    def test_progress_is_monotonic_and_ends_at_total(self):
        events = []
        flasher, _ = make_flasher(progress_cb=lambda done, total: events.append((done, total)))

        flasher.write(os.urandom(1000), APP_OFFSET)

        assert events[0] == (0, 1000)
        assert events[-1] == (1000, 1000)
        assert all(total == 1000 for _, total in events)
        done = [d for d, _ in events]
        assert done == sorted(done)

    def test_write_timeout(self):
        flasher, board = make_flasher(ready_retries=5)
        board.stuck_write = True

        with pytest.raises(FlashWriteTimeout):
            flasher.write(b"\x00" * 64, APP_OFFSET)

    def test_busy_controller_is_polled_until_ready(self):
        flasher, board = make_flasher(ready_retries=10)
        board.busy_polls = 3

        flasher.write(b"\x11" * 64, APP_OFFSET)
        assert flasher.read(APP_OFFSET, 64) == b"\x11" * 64

    def test_controller_error_is_reported(self):
        flasher, board = make_flasher()
        board.fail_commands.add("WP")

        with pytest.raises(FlashError, match="NVM controller error"):
            flasher.write(b"\x00" * 64, APP_OFFSET)


class TestErase:

    def test_erase_never_below_offset(self):
        flasher, board = make_flasher()
        rows = flasher.erase(APP_OFFSET, 5000)

        assert rows == 20
        assert board.erased_rows[0] == APP_OFFSET
        assert min(board.erased_rows) >= APP_OFFSET

    def test_erase_to_end_of_flash(self):
        flasher, board = make_flasher()
        flasher.erase(262144 - 1024)

        assert board.erased_rows == [262144 - 1024 + i * 256 for i in range(4)]

    def test_erase_clears_previous_contents(self):
        flasher, board = make_flasher()
        board.flash[APP_OFFSET: APP_OFFSET + 256] = b"\x00" * 256

        flasher.erase(APP_OFFSET, 1)
        assert flasher.read(APP_OFFSET, 256) == b"\xFF" * 256

    def test_erase_in_bootloader_region_refused(self):
        flasher, board = make_flasher()
        with pytest.raises(FlashError):
            flasher.erase(0, 256)
        assert board.erased_rows == []

    def test_erase_offset_must_be_row_aligned(self):
        flasher, _ = make_flasher()
        with pytest.raises(FlashError):
            flasher.erase(APP_OFFSET + 64, 64)

    def test_erase_timeout(self):
        flasher, board = make_flasher(ready_retries=5)
        board.stuck_erase = True

        with pytest.raises(FlashEraseTimeout):
            flasher.erase(APP_OFFSET, 256)

    def test_status_messages(self):
        messages = []
        flasher, _ = make_flasher(status_cb=messages.append)

        flasher.erase(APP_OFFSET, 64)
        flasher.write(b"\x01" * 64, APP_OFFSET)

        assert messages[-3:] == [
            "Flash erased",
            f"Writing 64 bytes (1 pages) at 0x{APP_OFFSET:08X}",
            "Firmware written",
        ]


class TestVerify:

    def test_verify_success(self):
        flasher, _ = make_flasher()
        image = os.urandom(300)
        flasher.erase(APP_OFFSET, len(image))
        flasher.write(image, APP_OFFSET)

        flasher.verify(image, APP_OFFSET)

    def test_verify_mismatch_reports_address(self):
        flasher, board = make_flasher()
        image = b"\x42" * 128
        flasher.erase(APP_OFFSET, len(image))
        flasher.write(image, APP_OFFSET)
        board.flash[APP_OFFSET + 70] = 0x00

        with pytest.raises(FlashVerifyError) as exc_info:
            flasher.verify(image, APP_OFFSET)

        assert exc_info.value.address == APP_OFFSET + 70
        assert exc_info.value.expected == 0x42
        assert exc_info.value.actual == 0x00

    def test_verify_does_not_report_progress(self):
        events = []
        flasher, _ = make_flasher(progress_cb=lambda d, t: events.append((d, t)))
        flasher.write(b"\x01" * 64, APP_OFFSET)
        count = len(events)

        flasher.verify(b"\x01" * 64, APP_OFFSET)
        assert len(events) == count


def test_read_out_of_bounds():
    flasher, _ = make_flasher()
    with pytest.raises(FlashError):
        flasher.read(262144 - 10, 20)


def test_ready_retries_must_be_positive():
    samba, _, _ = connected_samba()
    with pytest.raises(ValueError):
        Flasher(samba, SAMD21_FLASH, ready_retries=0)
