"""
Centralized parsing helpers for offset and size values.

The CLI and any other front end import these rather than re-implement.
"""

from typing import Optional


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    Parse offset value from string, supporting multiple formats.

    This is the single source of truth for offset parsing.

    Accepts:
        - Decimal: "8192"
        - Hex with 0x prefix: "0x2000" or "0X2000"
        - Hex with h suffix: "2000h" or "2000H"
        - None for auto-detection

    Returns:
        Parsed integer offset, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        # Hex with 0x/0X prefix
        if value.lower().startswith("0x"):
            result = int(value, 16)
        # Hex with h/H suffix
        elif value.lower().endswith("h"):
            result = int(value[:-1], 16)
        # Decimal
        else:
            result = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid offset '{value}'. Use decimal (8192), hex (0x2000), or suffix (2000h)."
        )
    if result < 0:
        raise ValueError(f"Offset must not be negative: '{value}'")
    return result


def parse_size(value: Optional[str]) -> Optional[int]:
    """
    Parse a byte count with an optional K/M suffix.

    Accepts "4096", "0x1000", "4K", "256k", "1M".

    Raises:
        ValueError: If value cannot be parsed or is not positive
    """
    if value is None:
        return None

    text = value.strip()
    if not text:
        return None

    multiplier = 1
    suffix = text[-1].lower()
    if suffix in ("k", "m"):
        multiplier = 1024 if suffix == "k" else 1024 * 1024
        text = text[:-1]

    try:
        number = int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError:
        raise ValueError(
            f"Invalid size '{value}'. Use bytes (4096), hex (0x1000), or K/M suffix (4K)."
        )
    size = number * multiplier
    if size <= 0:
        raise ValueError(f"Size must be positive: '{value}'")
    return size
