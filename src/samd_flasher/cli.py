"""
SAMD Flasher CLI

Command-line interface for flashing ATSAMD21-family boards over the
SAM-BA serial bootloader.
"""

import sys
import logging
from pathlib import Path
from typing import Callable, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, BarColumn, TextColumn, DownloadColumn

from samd_flasher.config import DEFAULT_CONFIG, KNOWN_VENDORS, FlasherConfig
from samd_flasher.firmware import load_firmware
from samd_flasher.models import DeviceFamily, list_chips
from samd_flasher.reset import PortInfo, list_ports

# Import from core module for unified logic
from samd_flasher.core.parsing import (
    parse_offset as _parse_offset_core,
    parse_size as _parse_size_core,
)
from samd_flasher.core.results import OperationResult
from samd_flasher.core.actions import (
    detect_device as core_detect_device,
    flash_firmware as core_flash_firmware,
    read_flash as core_read_flash,
    touch_reset as core_touch_reset,
)
from samd_flasher.core.messages import MessageLevel, result_to_messages

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("samd_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="🔧 SAMD Flasher - SAM-BA firmware flashing for ATSAMD21 boards")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {escape(text)}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {escape(text)}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {escape(text)}", style="red")


def print_result_messages(result: OperationResult, verbose: bool = True) -> None:
    """Print the coded failure (or cancellation) of a result."""
    for warning in result.warnings:
        print_warning(warning)
    for item in result_to_messages(result):
        style = "red" if item.level == MessageLevel.ERROR else "blue"
        console.print(item.to_cli_string(verbose=verbose), style=style, markup=False)


def exit_for_result(result: OperationResult) -> None:
    """Exit 0 on success or cancellation, 1 on failure."""
    print_result_messages(result)
    if result.ok or result.cancelled:
        return
    raise typer.Exit(code=1)


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    Parse offset value from string, supporting multiple formats.

    CLI wrapper around core.parsing.parse_offset that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_offset_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_size(value: Optional[str]) -> Optional[int]:
    """CLI wrapper around core.parsing.parse_size."""
    try:
        return _parse_size_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_config(baud: Optional[int] = None, timeout: Optional[float] = None) -> FlasherConfig:
    """Apply CLI overrides to the default configuration."""
    try:
        return DEFAULT_CONFIG.replace(bootloader_baud=baud, connect_timeout=timeout)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def prompt_for_port(ports: List[PortInfo]) -> Optional[str]:
    """Ask the operator to pick the bootloader port; empty answer cancels."""
    if not sys.stdin.isatty():
        return None

    table = Table(title="Serial Ports")
    table.add_column("#", style="cyan")
    table.add_column("Port", style="magenta")
    table.add_column("USB ID", style="yellow")
    table.add_column("Description", style="green")
    for index, port in enumerate(ports, start=1):
        table.add_row(str(index), port.device, port.usb_id(), port.description or "-")
    console.print(table)

    answer = typer.prompt("Bootloader port (number or path, empty to cancel)", default="", show_default=False)
    answer = answer.strip()
    if not answer:
        return None
    if answer.isdigit() and 1 <= int(answer) <= len(ports):
        return ports[int(answer) - 1].device
    return answer


def paused_prompt(progress: Progress) -> Callable[[List[PortInfo]], Optional[str]]:
    """Port chooser that stops the live progress display while it asks."""
    def choose(ports: List[PortInfo]) -> Optional[str]:
        progress.stop()
        try:
            return prompt_for_port(ports)
        finally:
            progress.start()
    return choose


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic"),
) -> None:
    """Global options."""
    if verbose:
        logger.setLevel(logging.DEBUG)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("USB ID", style="yellow")
    table.add_column("Vendor", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        vendor = port.vendor_name
        if port.vid in KNOWN_VENDORS:
            vendor = f"[bold]{vendor}[/bold] ✓"
        table.add_row(port.device, port.usb_id(), vendor, port.description or "-")

    console.print(table)


@app.command("list-chips")
def list_chips_cmd(
    family: Optional[str] = typer.Option(None, "--family", "-f", help="Only this family (e.g. SAMD21)"),
) -> None:
    """List supported chips and their flash geometry."""
    print_header("Supported Chips")

    selected = None
    if family:
        try:
            selected = DeviceFamily(family.upper())
        except ValueError:
            raise typer.BadParameter(f"Unknown family: {family}")

    table = Table(title="Chip Registry")
    table.add_column("Chip ID", style="cyan")
    table.add_column("Part", style="green")
    table.add_column("Family", style="magenta")
    table.add_column("Flash", style="yellow")
    table.add_column("App Offset", style="blue")

    for chip in list_chips(selected):
        table.add_row(
            f"0x{chip.chip_id:08X}",
            chip.name,
            chip.family.value,
            f"{chip.flash.total_size // 1024}KB ({chip.flash.num_pages} x {chip.flash.page_size})",
            f"0x{chip.application_offset:04X}",
        )

    console.print(table)


@app.command()
def detect(
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    touch: bool = typer.Option(False, "--touch/--no-touch", help="1200-baud touch if not in bootloader"),
    baud: Optional[int] = typer.Option(None, "--baud", help="Bootloader baud rate"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the bootloader handshake"),
) -> None:
    """Identify the chip behind a SAM-BA bootloader."""
    print_header("Detect Device")
    console.print(f"Port: {port}")

    result = core_detect_device(
        port,
        config=build_config(baud, timeout),
        touch=touch,
        choose_port=prompt_for_port,
    )

    if result.ok:
        chip = result.metadata["chip"]
        table = Table(title="Device Identification")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Part", chip["name"])
        table.add_row("Family", chip["family"])
        table.add_row("Chip ID", f"0x{result.metadata['chip_id']:08X}")
        table.add_row("Flash", f"{chip['num_pages']} pages x {chip['page_size']} bytes = {chip['total_size'] // 1024}KB")
        table.add_row("App Offset", chip["application_offset"])
        table.add_row("Bootloader", result.metadata.get("version") or "-")
        table.add_row("Port", result.port)
        console.print(table)
        print_success("Device detected")

    exit_for_result(result)


@app.command()
def flash(
    firmware: Path = typer.Argument(..., help="Raw firmware binary (.bin)"),
    port: str = typer.Option(..., "--port", "-p", help="Serial port of the board"),
    offset: Optional[str] = typer.Option(None, "--offset", help="Flash offset (default: after bootloader)"),
    verify: bool = typer.Option(False, "--verify/--no-verify", help="Read back and compare after writing"),
    reset: bool = typer.Option(True, "--reset/--no-reset", help="Start the application when done"),
    touch: bool = typer.Option(True, "--touch/--no-touch", help="1200-baud touch if not in bootloader"),
    baud: Optional[int] = typer.Option(None, "--baud", help="Bootloader baud rate"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the bootloader handshake"),
) -> None:
    """Flash firmware: reset to bootloader, erase, write, start."""
    print_header("Flash Firmware")

    try:
        image = load_firmware(firmware)
    except (FileNotFoundError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(code=1)

    target = parse_offset(offset)
    config = build_config(baud, timeout)

    console.print(f"Firmware: {image.name} ({len(image):,} bytes)")
    console.print(f"Port:     {port}")

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        DownloadColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Connecting...", total=len(image))

        def on_progress(current: int, total: int) -> None:
            progress.update(task, completed=current, total=total)

        def on_status(message: str) -> None:
            progress.update(task, description=message.strip())

        result = core_flash_firmware(
            port,
            image,
            config=config,
            offset=target,
            verify=verify,
            start_app=reset,
            touch=touch,
            choose_port=paused_prompt(progress),
            progress_cb=on_progress,
            status_cb=on_status,
        )

    if result.ok:
        console.print(result.to_summary(), markup=False)
        print_success("Flash complete! Your device is now running the new firmware."
                      if reset else "Flash complete")

    exit_for_result(result)


@app.command()
def read(
    output: Path = typer.Argument(..., help="File to write the dump to"),
    port: str = typer.Option(..., "--port", "-p", help="Serial port of the bootloader"),
    offset: Optional[str] = typer.Option(None, "--offset", help="Start address (default: after bootloader)"),
    length: Optional[str] = typer.Option(None, "--length", help="Bytes to read (e.g. 4096, 0x1000, 64K)"),
    touch: bool = typer.Option(False, "--touch/--no-touch", help="1200-baud touch if not in bootloader"),
    baud: Optional[int] = typer.Option(None, "--baud", help="Bootloader baud rate"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait for the bootloader handshake"),
) -> None:
    """Read flash contents to a file."""
    print_header("Read Flash")
    start = parse_offset(offset)
    size = parse_size(length)
    config = build_config(baud, timeout)

    with Progress(
        TextColumn("[Reading]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task("read", total=None)

        def on_progress(current: int, total: int) -> None:
            progress.update(task, completed=current, total=total)

        result = core_read_flash(
            port,
            config=config,
            offset=start,
            length=size,
            touch=touch,
            choose_port=paused_prompt(progress),
            progress_cb=on_progress,
        )

    if result.ok:
        output.write_bytes(result.metadata["data"])
        console.print(result.to_summary(), markup=False)
        print_success(f"Flash saved to {output}")

    exit_for_result(result)


@app.command()
def reset(
    port: str = typer.Option(..., "--port", "-p", help="Serial port of the running application"),
) -> None:
    """Reboot a running application into its bootloader (1200-baud touch)."""
    print_header("Reset to Bootloader")

    result = core_touch_reset(port, config=DEFAULT_CONFIG)
    if result.metadata.get("touched"):
        print_success("Reset signal sent")
    bootloader_port = result.metadata.get("bootloader_port")
    if bootloader_port:
        console.print(f"Bootloader port: [cyan]{bootloader_port}[/cyan]")

    exit_for_result(result)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
