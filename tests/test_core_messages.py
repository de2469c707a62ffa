"""Tests for error codes, messages and result objects."""

import pytest

from samd_flasher.core import (
    ERROR_REMEDIATIONS,
    ERROR_TITLES,
    ErrorCode,
    MessageItem,
    MessageLevel,
    OperationResult,
    SessionBusy,
    classify_error,
    result_to_messages,
)
from samd_flasher.device import DeviceUnsupported
from samd_flasher.flasher import (
    FlashEraseTimeout,
    FlashError,
    FlashVerifyError,
    FlashWriteTimeout,
    ImageTooLarge,
)
from samd_flasher.protocol import SamBAMalformed, SamBAUnresponsive, TransportError, TransportTimeout
from samd_flasher.reset import PortNotFound, UserCancelled


@pytest.mark.parametrize(
    "exc, code",
    [
        (SamBAUnresponsive("x"), ErrorCode.E_UNRESPONSIVE),
        (SamBAMalformed("x"), ErrorCode.E_MALFORMED),
        (TransportTimeout("x"), ErrorCode.E_TRANSPORT),
        (DeviceUnsupported(0x12345678), ErrorCode.E_UNSUPPORTED),
        (FlashEraseTimeout("x"), ErrorCode.E_ERASE_TIMEOUT),
        (FlashWriteTimeout("x"), ErrorCode.E_WRITE_TIMEOUT),
        (ImageTooLarge(300000, 253952), ErrorCode.E_IMAGE_TOO_LARGE),
        (FlashVerifyError(0x2000, 1, 2), ErrorCode.E_VERIFY_MISMATCH),
        (FlashError("x"), ErrorCode.E_FLASH),
        (PortNotFound("x"), ErrorCode.E_PORT_NOT_FOUND),
        (UserCancelled("x"), ErrorCode.E_CANCELLED),
        (SessionBusy("x"), ErrorCode.E_BUSY),
        (RuntimeError("x"), ErrorCode.E_UNKNOWN),
    ],
)
def test_classify_error(exc, code):
    assert classify_error(exc) is code


def test_every_code_has_title_and_remediation():
    for code in ErrorCode:
        assert ERROR_TITLES[code]
        assert ERROR_REMEDIATIONS[code]


def test_unresponsive_title():
    assert ERROR_TITLES[ErrorCode.E_UNRESPONSIVE] == "Device not supported or not in bootloader mode"


class TestMessageItem:

    def test_default_remediation(self):
        item = MessageItem.for_code(ErrorCode.E_TRANSPORT, "Cannot open port")
        assert item.level is MessageLevel.ERROR
        assert item.remediation == ERROR_REMEDIATIONS[ErrorCode.E_TRANSPORT]

    def test_cancel_is_info(self):
        assert MessageItem.for_code(ErrorCode.E_CANCELLED).level is MessageLevel.INFO

    def test_cli_string(self):
        item = MessageItem.for_code(ErrorCode.E_IMAGE_TOO_LARGE, "too big")
        short = item.to_cli_string()
        assert "[E_IMAGE_TOO_LARGE]" in short
        assert "too big" in short
        assert item.remediation not in short
        assert item.remediation in item.to_cli_string(verbose=True)

    def test_to_dict(self):
        data = MessageItem.for_code(ErrorCode.E_BUSY).to_dict()
        assert data["code"] == "E_BUSY"
        assert data["level"] == "error"


class TestOperationResult:

    def test_success_summary(self):
        result = OperationResult.success("flash", device="ATSAMD21G18A", bytes_len=4096)
        result.hashes["sha256"] = "ab" * 32

        summary = result.to_summary()
        assert summary.startswith("[SUCCESS] flash")
        assert "4,096" in summary
        assert result_to_messages(result) == []

    def test_failure(self):
        result = OperationResult.failure("flash", "no reply", ErrorCode.E_UNRESPONSIVE)

        assert not result.ok
        assert result.error_code is ErrorCode.E_UNRESPONSIVE
        assert "[E_UNRESPONSIVE] no reply" in result.to_summary()
        messages = result_to_messages(result)
        assert [m.code for m in messages] == [ErrorCode.E_UNRESPONSIVE]
        assert messages[0].detail == "no reply"

    def test_cancellation(self):
        result = OperationResult.cancellation("flash", "No port selected")

        assert result.cancelled
        assert not result.ok
        assert result.to_summary().startswith("[CANCELLED]")
        assert result.to_dict()["error_code"] == "E_CANCELLED"

    def test_add_error_keeps_first_code(self):
        result = OperationResult.success("read")
        result.add_error("first", ErrorCode.E_TRANSPORT)
        result.add_error("second", ErrorCode.E_FLASH)

        assert not result.ok
        assert result.error_code is ErrorCode.E_TRANSPORT
