"""
Standardized error and message system for SAMD Flasher.

Provides stable codes for every pipeline outcome, with a short title and a
remediation hint, so the CLI (or any other front end) reports failures as
distinct, user-actionable outcomes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from samd_flasher.device import DeviceUnsupported
from samd_flasher.flasher import (
    FlashEraseTimeout,
    FlashError,
    FlashVerifyError,
    FlashWriteTimeout,
    ImageTooLarge,
)
from samd_flasher.protocol import SamBAMalformed, SamBAUnresponsive, TransportError
from samd_flasher.reset import PortNotFound, UserCancelled

from .session import SessionBusy


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ErrorCode(Enum):
    """Stable codes for pipeline outcomes."""
    E_UNRESPONSIVE = "E_UNRESPONSIVE"
    E_MALFORMED = "E_MALFORMED"
    E_TRANSPORT = "E_TRANSPORT"
    E_UNSUPPORTED = "E_UNSUPPORTED"
    E_ERASE_TIMEOUT = "E_ERASE_TIMEOUT"
    E_WRITE_TIMEOUT = "E_WRITE_TIMEOUT"
    E_IMAGE_TOO_LARGE = "E_IMAGE_TOO_LARGE"
    E_VERIFY_MISMATCH = "E_VERIFY_MISMATCH"
    E_FLASH = "E_FLASH"
    E_PORT_NOT_FOUND = "E_PORT_NOT_FOUND"
    E_BUSY = "E_BUSY"
    E_CANCELLED = "E_CANCELLED"
    E_UNKNOWN = "E_UNKNOWN"


ERROR_TITLES: Dict[ErrorCode, str] = {
    ErrorCode.E_UNRESPONSIVE: "Device not supported or not in bootloader mode",
    ErrorCode.E_MALFORMED: "Bootloader sent a malformed reply",
    ErrorCode.E_TRANSPORT: "Serial port error",
    ErrorCode.E_UNSUPPORTED: "Device not supported",
    ErrorCode.E_ERASE_TIMEOUT: "Flash erase timed out",
    ErrorCode.E_WRITE_TIMEOUT: "Flash write timed out",
    ErrorCode.E_IMAGE_TOO_LARGE: "Firmware does not fit in flash",
    ErrorCode.E_VERIFY_MISMATCH: "Verification failed",
    ErrorCode.E_FLASH: "Flash operation failed",
    ErrorCode.E_PORT_NOT_FOUND: "Bootloader port not found",
    ErrorCode.E_BUSY: "Another flashing session is active",
    ErrorCode.E_CANCELLED: "Cancelled by user",
    ErrorCode.E_UNKNOWN: "Unexpected error",
}

ERROR_REMEDIATIONS: Dict[ErrorCode, str] = {
    ErrorCode.E_UNRESPONSIVE:
        "Double-tap the reset button to enter the bootloader manually, then retry.",
    ErrorCode.E_MALFORMED:
        "Check the cable and close other serial apps (Arduino IDE, serial monitors).",
    ErrorCode.E_TRANSPORT:
        "Check USB connection; run 'ports' to list available ports.",
    ErrorCode.E_UNSUPPORTED:
        "Supported devices: ATSAMD21-based boards. Check 'detect' output.",
    ErrorCode.E_ERASE_TIMEOUT:
        "Power-cycle the board, re-enter the bootloader and flash again.",
    ErrorCode.E_WRITE_TIMEOUT:
        "Power-cycle the board, re-enter the bootloader and flash again.",
    ErrorCode.E_IMAGE_TOO_LARGE:
        "Build a smaller image or target a part with more flash.",
    ErrorCode.E_VERIFY_MISMATCH:
        "Flash again; if it persists the flash may be worn or locked.",
    ErrorCode.E_FLASH:
        "Check the offset and the NVM lock bits, then flash again.",
    ErrorCode.E_PORT_NOT_FOUND:
        "Pass the bootloader port explicitly with --port.",
    ErrorCode.E_BUSY:
        "Wait for the running flash to finish; only one device is flashed at a time.",
    ErrorCode.E_CANCELLED:
        "Nothing was written. Run the command again to flash.",
    ErrorCode.E_UNKNOWN:
        "Check logs for more details.",
}


def classify_error(exc: BaseException) -> ErrorCode:
    """Map an exception raised by the pipeline to its stable code."""
    # Subclasses before their bases
    mapping = [
        (UserCancelled, ErrorCode.E_CANCELLED),
        (PortNotFound, ErrorCode.E_PORT_NOT_FOUND),
        (SamBAUnresponsive, ErrorCode.E_UNRESPONSIVE),
        (SamBAMalformed, ErrorCode.E_MALFORMED),
        (DeviceUnsupported, ErrorCode.E_UNSUPPORTED),
        (FlashEraseTimeout, ErrorCode.E_ERASE_TIMEOUT),
        (FlashWriteTimeout, ErrorCode.E_WRITE_TIMEOUT),
        (ImageTooLarge, ErrorCode.E_IMAGE_TOO_LARGE),
        (FlashVerifyError, ErrorCode.E_VERIFY_MISMATCH),
        (FlashError, ErrorCode.E_FLASH),
        (TransportError, ErrorCode.E_TRANSPORT),
        (SessionBusy, ErrorCode.E_BUSY),
    ]
    for exc_type, code in mapping:
        if isinstance(exc, exc_type):
            return code
    return ErrorCode.E_UNKNOWN


@dataclass
class MessageItem:
    """
    Structured message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: ErrorCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in ERROR_REMEDIATIONS:
            self.remediation = ERROR_REMEDIATIONS[self.code]

    @classmethod
    def for_code(cls, code: ErrorCode, detail: str = "") -> "MessageItem":
        level = MessageLevel.INFO if code is ErrorCode.E_CANCELLED else MessageLevel.ERROR
        return cls(level, code, ERROR_TITLES[code], detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        icons = {
            MessageLevel.INFO: "ℹ️ ",
            MessageLevel.WARN: "⚠️ ",
            MessageLevel.ERROR: "❌",
        }
        icon = icons.get(self.level, "")

        lines = [f"{icon} [{self.code.value}] {self.title}"]
        if self.detail:
            lines.append(f"   {self.detail}")
        if verbose and self.remediation:
            lines.append(f"   → {self.remediation}")
        return "\n".join(lines)


def result_to_messages(result: "OperationResult") -> List[MessageItem]:
    """
    Convert a failed result's code and errors to displayable messages.

    Returns:
        Empty list for successful results
    """
    if result.ok:
        return []
    code: Optional[ErrorCode] = result.error_code or ErrorCode.E_UNKNOWN
    detail = result.errors[0] if result.errors else ""
    return [MessageItem.for_code(code, detail)]
