"""
Core workflow actions for SAMD Flasher.

This module exposes the end-to-end operations the CLI calls. Each one
runs inside a FlashSession (so the port is always closed on exit), turns
exceptions into an OperationResult with a stable ErrorCode, and captures
the log lines it produced.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional, Union

from samd_flasher.config import DEFAULT_CONFIG, FlasherConfig
from samd_flasher.device import Device
from samd_flasher.firmware import FirmwareImage
from samd_flasher.flasher import FlashError, Flasher, ImageTooLarge, ProgressCallback, StatusCallback
from samd_flasher.protocol import ProtocolError, SamBA, SerialTransport, TransportError
from samd_flasher.reset import PortChooser, ResetSequencer

from .messages import ErrorCode, classify_error
from .results import OperationResult
from .session import FlashSession

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "samd_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _error_result(operation: str, exc: Exception, **kwargs) -> OperationResult:
    code = classify_error(exc)
    if code is ErrorCode.E_CANCELLED:
        logger.info(str(exc))
        return OperationResult.cancellation(operation, str(exc), **kwargs)
    if code is ErrorCode.E_UNKNOWN:
        logger.exception(f"{operation} failed")
    else:
        logger.error(f"{operation} failed: {exc}")
    return OperationResult.failure(operation, str(exc), code, **kwargs)


def establish_connection(
    session: FlashSession,
    port: str,
    *,
    touch: bool = True,
    choose_port: Optional[PortChooser] = None,
    sequencer: Optional[ResetSequencer] = None,
    status_cb: Optional[StatusCallback] = None,
) -> SamBA:
    """
    Connect ``session`` to a SAM-BA bootloader reachable from ``port``.

    Probes ``port`` at the bootloader baud rate first. If it does not
    answer, performs the 1200-baud touch, rediscovers the bootloader port
    and connects there.

    Raises:
        SamBAUnresponsive: If the bootloader never answers
        UserCancelled: If the operator declines the port prompt
        PortNotFound: If no bootloader port can be located
    """
    def status(message: str) -> None:
        logger.info(message)
        if status_cb:
            status_cb(message)

    status(f"Checking if device on {port} is already in bootloader mode...")
    try:
        return session.connect(port)
    except (ProtocolError, TransportError) as e:
        if not touch:
            raise
        logger.info(f"No bootloader on {port} ({e})")

    sequencer = sequencer or ResetSequencer(session.config, session.transport_factory)
    previous = sequencer.snapshot()
    sequencer.reset_to_bootloader(port)

    status("Looking for bootloader port...")
    bootloader_port = sequencer.discover_bootloader_port(previous, choose_port, preferred=port)

    status(f"Connecting to bootloader on {bootloader_port}...")
    return session.connect(bootloader_port)


def detect_device(
    port: str,
    *,
    config: FlasherConfig = DEFAULT_CONFIG,
    touch: bool = False,
    choose_port: Optional[PortChooser] = None,
    transport_factory: Callable = SerialTransport,
) -> OperationResult:
    """
    Connect to the bootloader and identify the chip.

    Returns:
        OperationResult with:
            - device: chip name
            - metadata["chip"]: ChipInfo.to_dict()
            - metadata["version"]: SAM-BA version string
            - metadata["chip_id"]: raw DID register value
    """
    with _capture_logs() as logs:
        try:
            with FlashSession(config, transport_factory) as session:
                samba = establish_connection(
                    session, port, touch=touch, choose_port=choose_port
                )
                device = Device(samba, bootloader_size=config.bootloader_size)
                chip = device.identify()
                result = OperationResult.success(
                    operation="detect",
                    device=chip.name,
                    port=session.port or port,
                )
                result.metadata["chip"] = chip.to_dict()
                result.metadata["chip"]["application_offset"] = f"0x{device.application_offset():X}"
                result.metadata["chip_id"] = device.chip_id
                result.metadata["version"] = samba.version
        except Exception as e:
            result = _error_result("detect", e, port=port)
        result.logs = logs
        return result


def flash_firmware(
    port: str,
    firmware: Union[FirmwareImage, bytes],
    *,
    config: FlasherConfig = DEFAULT_CONFIG,
    offset: Optional[int] = None,
    verify: bool = False,
    start_app: bool = True,
    touch: bool = True,
    choose_port: Optional[PortChooser] = None,
    progress_cb: Optional[ProgressCallback] = None,
    status_cb: Optional[StatusCallback] = None,
    transport_factory: Callable = SerialTransport,
) -> OperationResult:
    """
    Full pipeline: connect (touch-resetting if needed), identify, erase,
    write, optionally verify, and start the application.

    Args:
        port: Serial port of the board (application or bootloader)
        firmware: Raw image
        offset: Flash address to write at (default: the chip's
                application offset)
        verify: Read the image back after writing
        start_app: Jump to the new application when done
        touch: Allow the 1200-baud touch if the port is not a bootloader
        choose_port: Fallback prompt when the bootloader port cannot be
                     discovered; return None to cancel
        progress_cb: Optional progress callback(bytes_done, bytes_total)
        status_cb: Optional status callback(message)

    Returns:
        OperationResult; on failure ``error_code`` names the failure kind.
    """
    if isinstance(firmware, (bytes, bytearray)):
        firmware = FirmwareImage(bytes(firmware))

    with _capture_logs() as logs:
        try:
            if not len(firmware):
                raise FlashError("Firmware image is empty")

            with FlashSession(config, transport_factory) as session:
                samba = establish_connection(
                    session,
                    port,
                    touch=touch,
                    choose_port=choose_port,
                    status_cb=status_cb,
                )
                if status_cb:
                    status_cb("Connected to SAM-BA bootloader")

                device = Device(samba, bootloader_size=config.bootloader_size)
                chip = device.identify()
                flash = device.flash_descriptor()
                app_offset = device.application_offset()
                target = app_offset if offset is None else offset

                if status_cb:
                    status_cb(
                        f"Device: {chip.name}, {flash.num_pages} pages x {flash.page_size} bytes "
                        f"= {flash.total_size // 1024}KB flash"
                    )
                    if app_offset:
                        status_cb(f"Using flash offset 0x{app_offset:X} (bootloader present)")

                available = max(flash.total_size - target, 0)
                if len(firmware) > available:
                    raise ImageTooLarge(len(firmware), available)

                flasher = Flasher(
                    samba,
                    flash,
                    protected_size=app_offset,
                    ready_retries=config.ready_retries,
                    progress_cb=progress_cb,
                    status_cb=status_cb,
                )
                flasher.erase(target, len(firmware))
                flasher.write(firmware.data, target)
                if verify:
                    flasher.verify(firmware.data, target)

                result = OperationResult.success(
                    operation="flash",
                    device=chip.name,
                    region=f"0x{target:08X}-0x{target + len(firmware):08X}",
                    bytes_len=len(firmware),
                    port=session.port or port,
                )
                result.hashes["sha256"] = firmware.sha256
                result.metadata["chip"] = chip.to_dict()
                result.metadata["chip"]["application_offset"] = f"0x{device.application_offset():X}"
                result.metadata["offset"] = target
                result.metadata["verified"] = verify

                if start_app:
                    if status_cb:
                        status_cb("Resetting device...")
                    device.start_application()
                    result.metadata["started"] = True

            logger.info("Flash complete")
        except Exception as e:
            result = _error_result("flash", e, port=port, bytes_len=len(firmware))
        result.logs = logs
        return result


def read_flash(
    port: str,
    *,
    config: FlasherConfig = DEFAULT_CONFIG,
    offset: Optional[int] = None,
    length: Optional[int] = None,
    touch: bool = False,
    choose_port: Optional[PortChooser] = None,
    progress_cb: Optional[ProgressCallback] = None,
    transport_factory: Callable = SerialTransport,
) -> OperationResult:
    """
    Dump flash contents.

    Defaults to the whole application region (application offset to end
    of flash).

    Returns:
        OperationResult with metadata["data"] holding the bytes read
    """
    with _capture_logs() as logs:
        try:
            with FlashSession(config, transport_factory) as session:
                samba = establish_connection(
                    session, port, touch=touch, choose_port=choose_port
                )
                device = Device(samba, bootloader_size=config.bootloader_size)
                chip = device.identify()
                flash = device.flash_descriptor()
                start = device.application_offset() if offset is None else offset
                size = flash.total_size - start if length is None else length

                flasher = Flasher(samba, flash, progress_cb=progress_cb)
                data = flasher.read(start, size)

                result = OperationResult.success(
                    operation="read",
                    device=chip.name,
                    region=f"0x{start:08X}-0x{start + size:08X}",
                    bytes_len=len(data),
                    port=session.port or port,
                )
                result.metadata["data"] = data
        except Exception as e:
            result = _error_result("read", e, port=port)
        result.logs = logs
        return result


def touch_reset(
    port: str,
    *,
    config: FlasherConfig = DEFAULT_CONFIG,
    transport_factory: Callable = SerialTransport,
) -> OperationResult:
    """
    Perform only the 1200-baud touch on ``port``.

    A port that cannot be opened is reported as a warning, not a failure.
    """
    with _capture_logs() as logs:
        sequencer = ResetSequencer(config, transport_factory)
        previous = sequencer.snapshot()
        touched = sequencer.reset_to_bootloader(port)
        result = OperationResult.success(operation="reset", port=port)
        result.metadata["touched"] = touched
        if not touched:
            result.add_warning(
                f"Could not open {port} at {config.touch_baud} baud; "
                f"device may already be in bootloader mode"
            )
        candidates = sequencer.bootloader_candidates(previous, preferred=port)
        if candidates:
            result.metadata["bootloader_port"] = candidates[0].device
        result.logs = logs
        return result
