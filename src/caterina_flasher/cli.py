"""
caterina-flasher CLI

Command-line interface for reading, writing and verifying ATmega32U4 boards
through the Caterina bootloader.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from caterina_flasher.core.actions import (
    flash_board,
    identify_board,
    read_board,
    verify_board,
)
from caterina_flasher.core.messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    result_to_warnings,
)
from caterina_flasher.core.parsing import parse_size as _parse_size_core
from caterina_flasher.core.results import OperationResult
from caterina_flasher.core.safety import (
    CONFIRMATION_TOKEN,
    WritePermissionError,
    create_cli_safety_context,
    require_write_permission,
)
from caterina_flasher.image_io import load_image, save_image
from caterina_flasher.models import get_mcu, list_mcus
from caterina_flasher.protocol import ProtocolTimeouts, TickClock
from caterina_flasher.protocol.transport import DEFAULT_BAUDRATE

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("caterina_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="Caterina bootloader flasher for ATmega32U4 boards (Leonardo, Pro Micro)")

EXIT_FAILED = 1
EXIT_NO_BOOTLOADER = 2


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic (DEBUG logging)"),
) -> None:
    """Caterina bootloader flasher."""
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = True) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style, icon = "red", "❌"
    elif warning.level == MessageLevel.WARN:
        style, icon = "yellow", "⚠️"
    else:
        style, icon = "blue", "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if verbose and warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


class ConsoleProgress:
    """
    Progress sink for the console.

    Status strings are printed on their own line; single-character block
    markers are appended to the current line.
    """

    def __init__(self, out: Console):
        self.out = out
        self._ticks = 0

    def __call__(self, message: str) -> None:
        if len(message) == 1:
            self.out.print(message, end="", style="dim", highlight=False)
            self._ticks += 1
            return
        if self._ticks:
            self.out.print()
            self._ticks = 0
        self.out.print(f"  {message}", highlight=False)

    def finish(self) -> None:
        if self._ticks:
            self.out.print()
            self._ticks = 0


def parse_size(value: Optional[str]) -> int:
    """CLI wrapper around core.parsing.parse_size raising typer.BadParameter."""
    try:
        return _parse_size_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _require_port(port: Optional[str], simulate: bool) -> str:
    if simulate:
        return port or "SIMULATED"
    if not port:
        raise typer.BadParameter("--port is required unless --simulate is given")
    return port


def _load(path: Path, label: str) -> bytes:
    try:
        return load_image(path)
    except (OSError, ValueError) as e:
        print_error(f"Cannot load {label} image: {e}")
        raise typer.Exit(EXIT_FAILED)


def _timing(timeout_ticks: int, erase_ticks: int, tick_ms: float):
    return (
        ProtocolTimeouts(default_ticks=timeout_ticks, erase_ticks=erase_ticks),
        TickClock(tick_seconds=tick_ms / 1000.0),
    )


def _exit_code(result: OperationResult) -> int:
    """Process exit status for a failed result."""
    if result.error_type == "BootloaderNotFound":
        return EXIT_NO_BOOTLOADER
    return EXIT_FAILED


def _finish(result: OperationResult, progress: ConsoleProgress) -> None:
    """Print warnings and exit non-zero on failure."""
    progress.finish()
    for warning in result_to_warnings(result):
        print_structured_warning(warning)
    if not result.ok:
        raise typer.Exit(_exit_code(result))


# Options shared by every device command
PortOption = typer.Option(None, "--port", "-p", help="Bootloader serial port (e.g., /dev/ttyACM0, COM5)")
BaudOption = typer.Option(DEFAULT_BAUDRATE, "--baud", "-b", help="Baud rate")
ResetOption = typer.Option(False, "--reset", help="1200-baud touch before connecting (port must be the sketch's port)")
SimulateOption = typer.Option(False, "--simulate", help="Talk to an in-memory simulated board")
TimeoutOption = typer.Option(1000, "--timeout-ticks", help="Response budget per exchange, in ticks")
EraseOption = typer.Option(6000, "--erase-ticks", help="Response budget for chip erase, in ticks")
TickOption = typer.Option(1.0, "--tick-ms", help="Length of one tick in milliseconds")


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    import serial.tools.list_ports

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("VID:PID", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        vid_pid = f"{port.vid:04X}:{port.pid:04X}" if port.vid is not None else "-"
        table.add_row(port.device, vid_pid, port.description or "-")

    console.print(table)


@app.command("list-mcus")
def list_mcus_cmd() -> None:
    """List supported MCUs and their memory geometry."""
    print_header("Supported MCUs")

    table = Table(title="MCU Descriptors")
    table.add_column("MCU", style="cyan")
    table.add_column("Signature", style="magenta")
    table.add_column("Flash", style="green")
    table.add_column("EEPROM", style="green")
    table.add_column("Boot Section", style="yellow")

    for name in list_mcus():
        mcu = get_mcu(name)
        table.add_row(
            mcu.name,
            f"0x{mcu.signature:06X}",
            f"{mcu.flash_size:,} bytes",
            f"{mcu.eeprom_size:,} bytes",
            f"0x{mcu.boot_section_addr:04X}",
        )

    console.print(table)


@app.command()
def info(
    port: Optional[str] = PortOption,
    baud: int = BaudOption,
    reset: bool = ResetOption,
    simulate: bool = SimulateOption,
    timeout_ticks: int = TimeoutOption,
    erase_ticks: int = EraseOption,
    tick_ms: float = TickOption,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Detect the bootloader and show board information."""
    port = _require_port(port, simulate)
    timeouts, clock = _timing(timeout_ticks, erase_ticks, tick_ms)
    progress = ConsoleProgress(console)

    if not output_json:
        print_header("Bootloader Information")
        console.print(f"Port: {port}")

    result = identify_board(
        port, baud=baud, simulate=simulate, reset=reset,
        timeouts=timeouts, clock=clock,
        progress=None if output_json else progress,
    )

    if output_json:
        console.print(json.dumps(result.to_dict(), indent=2), soft_wrap=True, markup=False, highlight=False)
        if not result.ok:
            raise typer.Exit(_exit_code(result))
        return

    if result.ok:
        bl = result.metadata["bootloader"]
        table = Table(title="Board Information")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("MCU", result.mcu)
        table.add_row("Signature", bl["signature"])
        table.add_row("Bootloader", bl["identifier"])
        table.add_row("Software Version", bl["software_version"])
        table.add_row("Hardware Version", bl["hardware_version"])
        table.add_row("Programmer Type", bl["programmer_type"])
        table.add_row("Auto Increment", "Yes" if bl["auto_increment"] else "No")
        table.add_row("Buffer Size", f"{bl['buffer_size']} bytes")
        table.add_row("Device Type", bl["device_type"])
        for name, value in bl["fuses"].items():
            table.add_row(f"Fuse ({name})", value)
        progress.finish()
        console.print(table)

    _finish(result, progress)


@app.command()
def read(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save to file (.hex for Intel HEX)"),
    size: Optional[str] = typer.Option(None, "--size", "-s", help="Bytes to read (default: whole memory)"),
    eeprom: bool = typer.Option(False, "--eeprom", help="Read EEPROM instead of flash"),
    port: Optional[str] = PortOption,
    baud: int = BaudOption,
    reset: bool = ResetOption,
    simulate: bool = SimulateOption,
    timeout_ticks: int = TimeoutOption,
    erase_ticks: int = EraseOption,
    tick_ms: float = TickOption,
) -> None:
    """Read flash (or EEPROM) from the board."""
    port = _require_port(port, simulate)
    byte_count = parse_size(size)
    timeouts, clock = _timing(timeout_ticks, erase_ticks, tick_ms)
    progress = ConsoleProgress(console)

    print_header("Read EEPROM" if eeprom else "Read Firmware")
    console.print(f"Port: {port}")

    result = read_board(
        port, size=byte_count, eeprom=eeprom, baud=baud, simulate=simulate,
        reset=reset, timeouts=timeouts, clock=clock, progress=progress,
    )

    if result.ok:
        progress.finish()
        data = result.metadata["data"]
        if output:
            save_image(output, data)
            print_success(f"{len(data):,} bytes saved to {output}")
        else:
            print_success(f"{len(data):,} bytes read (sha256 {result.hashes['sha256'][:16]}...)")

    _finish(result, progress)


def confirm_write_with_details(
    write_flag: bool,
    port: str,
    flash_bytes: int,
    eeprom_bytes: Optional[int],
    simulate: bool,
    confirm_token: Optional[str] = None,
) -> None:
    """
    Require explicit --write flag AND typed confirmation before flashing.

    Supports three modes:
    1. Non-interactive (script): --confirm WRITE provided, no prompts
    2. Interactive (TTY): prompts user for typed confirmation
    3. Non-interactive without token: errors with remediation

    Raises:
        typer.Exit: If confirmation fails or write not permitted
    """
    def show_details(details: dict) -> None:
        lines = [
            "[bold yellow]⚠️  WRITE CONFIRMATION REQUIRED[/bold yellow]\n",
            f"Port:          {details.get('port', 'Unknown')}",
            f"Flash:         {details.get('flash_bytes', 0):,} bytes (chip will be erased)",
        ]
        if details.get("eeprom_bytes") is not None:
            lines.append(f"EEPROM:        {details['eeprom_bytes']:,} bytes")
        lines.append(f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]")
        console.print(Panel("\n".join(lines), title="Flash Write Operation", expand=False))

    ctx = create_cli_safety_context(
        write_flag, port=port, simulate=simulate, confirmation_token=confirm_token
    )
    ctx.prompt_confirmation = lambda _text: typer.prompt("Confirm")
    ctx.show_details = show_details

    try:
        require_write_permission(ctx, flash_bytes=flash_bytes, eeprom_bytes=eeprom_bytes)
    except WritePermissionError as e:
        print_structured_warning(WarningItem.error(WarningCode.W_WRITE_DISABLED, str(e)))
        if not write_flag:
            console.print()
            console.print("[bold]For scripted/non-interactive use, provide:[/bold]")
            console.print(f"  --write --confirm {CONFIRMATION_TOKEN}")
        raise typer.Exit(EXIT_FAILED)


@app.command()
def write(
    image: Path = typer.Option(..., "--in", "-i", help="Firmware image (.hex or .bin)"),
    eeprom_image: Optional[Path] = typer.Option(None, "--eeprom-image", "-e", help="EEPROM image (.eep/.hex or .bin)"),
    write_flag: bool = typer.Option(False, "--write", help="Actually erase and program the board"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation token ({CONFIRMATION_TOKEN})"),
    port: Optional[str] = PortOption,
    baud: int = BaudOption,
    reset: bool = ResetOption,
    simulate: bool = SimulateOption,
    timeout_ticks: int = TimeoutOption,
    erase_ticks: int = EraseOption,
    tick_ms: float = TickOption,
) -> None:
    """Erase, program and verify the board (optionally EEPROM too)."""
    port = _require_port(port, simulate)
    flash_data = _load(image, "firmware")
    eeprom_data = _load(eeprom_image, "EEPROM") if eeprom_image else None

    print_header("Write Firmware")
    console.print(f"Port: {port}")
    console.print(f"Firmware opened: {image.name} ({len(flash_data):,} bytes)")
    if eeprom_data is not None:
        console.print(f"EEPROM opened: {eeprom_image.name} ({len(eeprom_data):,} bytes)")

    confirm_write_with_details(
        write_flag, port, len(flash_data),
        len(eeprom_data) if eeprom_data is not None else None,
        simulate, confirm,
    )

    timeouts, clock = _timing(timeout_ticks, erase_ticks, tick_ms)
    progress = ConsoleProgress(console)
    result = flash_board(
        port, flash_data, eeprom_data, baud=baud, simulate=simulate,
        reset=reset, timeouts=timeouts, clock=clock, progress=progress,
    )
    if result.ok:
        progress.finish()
        print_success("Flash complete and verified")

    _finish(result, progress)


@app.command()
def verify(
    image: Path = typer.Option(..., "--in", "-i", help="Firmware image (.hex or .bin)"),
    port: Optional[str] = PortOption,
    baud: int = BaudOption,
    reset: bool = ResetOption,
    simulate: bool = SimulateOption,
    timeout_ticks: int = TimeoutOption,
    erase_ticks: int = EraseOption,
    tick_ms: float = TickOption,
) -> None:
    """Compare the board's flash with an image."""
    port = _require_port(port, simulate)
    flash_data = _load(image, "firmware")
    timeouts, clock = _timing(timeout_ticks, erase_ticks, tick_ms)
    progress = ConsoleProgress(console)

    print_header("Verify Firmware")
    console.print(f"Port: {port}")

    result = verify_board(
        port, flash_data, baud=baud, simulate=simulate, reset=reset,
        timeouts=timeouts, clock=clock, progress=progress,
    )
    if result.ok:
        progress.finish()
        print_success("Board flash matches image")

    _finish(result, progress)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
