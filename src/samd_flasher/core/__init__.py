"""
Core module for SAMD Flasher.

This module provides the single source of truth for:
- Session ownership of the bootloader connection (session.py)
- Offset and size parsing (parsing.py)
- Result objects (results.py)
- End-to-end detect/flash/read/reset workflows (actions.py)
- Stable error codes and remediation hints (messages.py)

Front ends should call into this module rather than implementing their
own pipeline.
"""

from .session import FlashSession, SessionBusy
from .parsing import parse_offset, parse_size
from .messages import (
    MessageLevel,
    ErrorCode,
    MessageItem,
    ERROR_TITLES,
    ERROR_REMEDIATIONS,
    classify_error,
    result_to_messages,
)
from .results import OperationResult
from .actions import (
    establish_connection,
    detect_device,
    flash_firmware,
    read_flash,
    touch_reset,
)

__all__ = [
    # Session
    "FlashSession",
    "SessionBusy",
    # Parsing
    "parse_offset",
    "parse_size",
    # Messages
    "MessageLevel",
    "ErrorCode",
    "MessageItem",
    "ERROR_TITLES",
    "ERROR_REMEDIATIONS",
    "classify_error",
    "result_to_messages",
    # Results
    "OperationResult",
    # Actions
    "establish_connection",
    "detect_device",
    "flash_firmware",
    "read_flash",
    "touch_reset",
]
