"""Firmware image loading."""

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FirmwareImage:
    """Raw application binary, written verbatim."""
    data: bytes
    name: str = ""

    def __len__(self) -> int:
        return len(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


def load_firmware(path: Union[str, Path]) -> FirmwareImage:
    """
    Read a raw .bin firmware file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Firmware file not found: {path}")

    if path.suffix.lower() != ".bin":
        logger.warning(
            f"{path.name} does not have a .bin extension. "
            f"Make sure it's a raw firmware binary."
        )

    data = path.read_bytes()
    if not data:
        raise ValueError(f"Firmware file is empty: {path}")

    logger.info(f"Loaded firmware: {path.name} ({len(data):,} bytes)")
    return FirmwareImage(data=data, name=path.name)
