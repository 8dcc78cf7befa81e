"""
ESP Flash Target CLI

Flash raw firmware segments onto ESP32-family chips over the serial
bootloader.
"""

import sys
import json
import logging
from typing import List

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.markup import escape

import serial.tools.list_ports

from esp_flash_target.core.actions import flash_files
from esp_flash_target.core.messages import MessageLevel, WarningItem, result_to_warnings
from esp_flash_target.core.parsing import parse_chip, parse_flash_size, parse_segment_arg
from esp_flash_target.core.results import OperationResult
from esp_flash_target.progress import RichProgress
from esp_flash_target.protocol.connection import DEFAULT_BAUDRATE, USB_SERIAL_JTAG_PID
from esp_flash_target.targets.chips import get_chip_spec, list_chips

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("esp_flash_target")

console = Console()

app = typer.Typer(help="ESP Flash Target - write firmware to ESP32-family flash")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {escape(text)}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {escape(text)}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {escape(text)}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    styles = {
        MessageLevel.INFO: "cyan",
        MessageLevel.WARN: "yellow",
        MessageLevel.ERROR: "red",
    }
    style = styles.get(warning.level, "yellow")
    console.print(escape(f"{warning.to_cli_string()} [{warning.code.value}]"), style=style)
    if verbose and warning.detail:
        console.print(f"   {escape(warning.detail)}", style="dim")
    if verbose and warning.remediation:
        console.print(f"   → {escape(warning.remediation)}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("VID:PID", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        if port.vid is not None and port.pid is not None:
            ids = f"{port.vid:04X}:{port.pid:04X}"
            if port.pid == USB_SERIAL_JTAG_PID:
                ids += " (USB-Serial-JTAG)"
        else:
            ids = "-"
        table.add_row(port.device, ids, port.description or "-")

    console.print(table)


@app.command("list-chips")
def list_chips_command() -> None:
    """List supported chips and their flashing parameters."""
    print_header("Supported Chips")

    table = Table(title="Chips")
    table.add_column("Chip", style="cyan")
    table.add_column("ROM block", style="green")
    table.add_column("Stub block", style="green")
    table.add_column("Encrypted writes", style="magenta")
    table.add_column("WDT quirk", style="yellow")

    for chip in list_chips():
        spec = get_chip_spec(chip)
        encryption = "begin flag" if spec.rom_encrypted_begin else "encrypt-data command"
        table.add_row(
            f"{chip.value} ({spec.description})",
            f"0x{spec.rom_flash_write_size:X}",
            f"0x{spec.stub_flash_write_size:X}",
            encryption,
            "Yes" if spec.watchdog_quirk else "No",
        )

    console.print(table)
    console.print()
    console.print("Use [cyan]show-chip <chip>[/cyan] for details.")


@app.command("show-chip")
def show_chip(
    chip: str = typer.Argument(..., help="Chip name (e.g., esp32c3)"),
) -> None:
    """Show flashing parameters and quirk registers for one chip."""
    try:
        chip_id = parse_chip(chip)
    except ValueError as e:
        print_error(str(e))
        sys.exit(1)

    spec = get_chip_spec(chip_id)
    print_header(f"Chip: {spec.description}")

    table = Table(title=f"{spec.description} Parameters")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("ROM write block", f"0x{spec.rom_flash_write_size:X} bytes")
    table.add_row("Stub write block", f"0x{spec.stub_flash_write_size:X} bytes")
    table.add_row("Encrypt flag in begin (ROM)", "Yes" if spec.rom_encrypted_begin else "No")
    table.add_row("Compression", "Yes" if spec.supports_compression else "No")
    console.print(table)

    if spec.watchdog_quirk:
        console.print()
        quirk = Table(title="Watchdog disable sequence (USB-Serial-JTAG)")
        quirk.add_column("#", style="dim")
        quirk.add_column("Register", style="cyan")
        quirk.add_column("Value", style="yellow")
        for index, write in enumerate(spec.watchdog_quirk, start=1):
            quirk.add_row(str(index), f"0x{write.address:08X}", f"0x{write.value:08X}")
        console.print(quirk)

    for note in spec.notes:
        console.print(f"  • {note}")


@app.command("write-flash")
def write_flash(
    segments: List[str] = typer.Argument(..., help="ADDRESS=FILE pairs, e.g. 0x10000=app.bin"),
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    baud: int = typer.Option(DEFAULT_BAUDRATE, "--baud", "-b", help="Baud rate"),
    chip: str = typer.Option("esp32", "--chip", "-c", help="Chip variant"),
    flash_size: str = typer.Option("4MB", "--flash-size", "-s", help="Flash size (1MB .. 128MB)"),
    stub: bool = typer.Option(False, "--stub", help="Flasher stub is already running"),
    encrypt: bool = typer.Option(False, "--encrypt", help="Write through flash encryption"),
    no_compress: bool = typer.Option(False, "--no-compress", help="Send data uncompressed"),
    no_reset: bool = typer.Option(False, "--no-reset", help="Stay in the bootloader afterwards"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show wire traffic and remediation hints"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output the result as JSON for scripting"),
) -> None:
    """Write one or more binary files to flash."""
    if verbose:
        logger.setLevel(logging.DEBUG)

    try:
        chip_id = parse_chip(chip)
        size = parse_flash_size(flash_size)
        files = [parse_segment_arg(arg) for arg in segments]
    except ValueError as e:
        print_error(str(e))
        sys.exit(1)

    if not output_json:
        print_header(f"Write Flash: {get_chip_spec(chip_id).description} on {port}")
        for address, path in files:
            console.print(f"  0x{address:08X}  {escape(str(path))}")

    result = flash_files(
        port,
        files,
        chip_id,
        baud=baud,
        flash_size=size,
        use_stub=stub,
        encrypt=encrypt,
        compress=not no_compress,
        reboot=not no_reset,
        progress_factory=None if output_json else lambda: RichProgress(console),
    )

    if output_json:
        payload = result.to_dict()
        payload["messages"] = [w.to_dict() for w in result_to_warnings(result)]
        typer.echo(json.dumps(payload, indent=2))
        if not result.ok:
            sys.exit(1)
        return

    print_warnings_from_result(result, verbose=verbose)
    if not result.ok:
        console.print(escape(result.to_summary()))
        sys.exit(1)

    print_success(
        f"Wrote {result.bytes_len:,} bytes in {len(result.regions)} segment(s) "
        f"(mode: {result.metadata.get('mode', '-')})"
    )
    if verbose:
        console.print(escape(result.to_summary()))


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
