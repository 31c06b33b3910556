"""
CH55x Flasher CLI

Command-line interface for the WCH CH55x UART bootloader: reset, detect,
erase, write and verify.
"""

import sys
import json
import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from ch55x_flasher.models import list_chip_profiles
from ch55x_flasher.protocol import (
    BootloaderEngine,
    ProtocolError,
    DEFAULT_BAUDRATE,
    DEFAULT_TIMEOUT,
)
from ch55x_flasher.core.results import OperationResult
from ch55x_flasher.core.actions import (
    open_session,
    reset_chip,
    detect_chip,
    erase_chip,
    write_firmware,
    verify_firmware,
)
from ch55x_flasher.core.messages import MessageItem, MessageLevel, result_to_messages

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
)
logger = logging.getLogger("ch55x_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="CH55x UART bootloader flash tool")


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


def print_message(message: MessageItem, verbose: bool = False) -> None:
    """Print a structured message with its remediation hint."""
    if message.level == MessageLevel.ERROR:
        print_error(f"[{message.code.value}] {message.title}")
    else:
        print_warning(f"[{message.code.value}] {message.title}")
    if message.remediation:
        console.print(f"   → {message.remediation}", style="cyan")
    if verbose and message.detail:
        console.print(f"   {message.detail}", style="dim")


def print_result(result: OperationResult, verbose: bool = False) -> None:
    """Print an operation outcome."""
    if result.operation == "detect" and result.ok:
        table = Table(title="Chip Identification")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Chip", result.chip)
        table.add_row("Chip ID", result.chip_info.get("chip_id", "-"))
        table.add_row("Bootloader", result.bootloader)
        table.add_row("Flash", f"{result.chip_info.get('flash_size', 0):,} bytes")
        table.add_row("Application area", f"{result.chip_info.get('app_size', 0):,} bytes")
        table.add_row("Boot address", result.chip_info.get("boot_address", "-"))
        console.print(table)

    for message in result_to_messages(result):
        print_message(message, verbose=verbose)

    if result.ok:
        print_success(result.status_line())


def run_requested(
    engine: BootloaderEngine,
    reset: bool = False,
    detect: bool = False,
    erase: bool = False,
    write: bool = False,
    verify: bool = False,
    file: Optional[str] = None,
    progress_cb=None,
) -> List[OperationResult]:
    """
    Run the requested operations in flag order.

    Reset runs first, then detect and erase (each aborts the rest on error).
    With a file, --verify alone runs the verify flow; --write runs the write
    flow, which verifies anyway.
    """
    results: List[OperationResult] = []

    def step(result: OperationResult) -> bool:
        results.append(result)
        return result.ok

    if reset and not step(reset_chip(engine)):
        return results
    if detect and not step(detect_chip(engine)):
        return results
    if erase and not step(erase_chip(engine)):
        return results

    if file:
        if verify and not write:
            step(verify_firmware(engine, file, progress_cb))
        elif write:
            step(write_firmware(engine, file, progress_cb))

    return results


@app.command()
def flash(
    port: str = typer.Option(..., "--port", "-p", help="Serial port (e.g., /dev/ttyUSB0)"),
    write: bool = typer.Option(False, "--write", "-w", help="Write file to flash, verify and exit the bootloader"),
    verify: bool = typer.Option(False, "--verify", "-v", help="Verify flash against the provided file"),
    detect: bool = typer.Option(False, "--detect", "-d", help="Detect chip and bootloader version"),
    erase: bool = typer.Option(False, "--erase", "-e", help="Erase flash"),
    reset: bool = typer.Option(False, "--reset", "-r", help="Reset chip into bootloader (DTR/RTS)"),
    file: Optional[str] = typer.Option(None, "--file", "-f", help="Firmware .bin to write or verify"),
    baud: int = typer.Option(DEFAULT_BAUDRATE, "--baud", help="Baud rate"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, "--timeout", help="Per-byte read timeout (seconds)"),
    verbose: bool = typer.Option(False, "--verbose", help="Show wire-level debug logs"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output results as JSON"),
) -> None:
    """Run bootloader operations on a CH55x chip."""
    if (write or verify) and not file:
        raise typer.BadParameter("--file is required with --write or --verify")

    if verbose:
        logger.setLevel(logging.DEBUG)

    if not output_json:
        print_header(f"CH55x Flasher on {port}")

    try:
        with open_session(port, baudrate=baud, timeout=timeout) as engine:
            if file and (write or verify) and not output_json:
                with Progress(
                    TextColumn("[bold blue]{task.description}"),
                    BarColumn(),
                    TextColumn("{task.completed}/{task.total} bytes"),
                    console=console,
                ) as progress:
                    task = progress.add_task("Flashing", total=None)

                    def progress_cb(sent: int, total: int) -> None:
                        progress.update(task, completed=sent, total=total)

                    results = run_requested(
                        engine, reset, detect, erase, write, verify, file, progress_cb
                    )
            else:
                results = run_requested(engine, reset, detect, erase, write, verify, file)
    except ProtocolError as e:
        print_error(f"Cannot open port: {port} ({e})")
        raise typer.Exit(code=1)

    if output_json:
        console.print_json(json.dumps([r.to_dict() for r in results], default=str))
    else:
        for result in results:
            print_result(result, verbose=verbose)
        if not results:
            print_warning("Nothing to do (use --detect, --erase, --write or --verify)")

    if any(not r.ok for r in results):
        raise typer.Exit(code=1)


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
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")

    console.print(table)


@app.command()
def chips() -> None:
    """List supported chips and their memory layout."""
    print_header("Supported Chips")

    table = Table(title="CH55x Chip Profiles")
    table.add_column("Chip", style="cyan")
    table.add_column("ID", style="magenta")
    table.add_column("Flash", justify="right")
    table.add_column("Erase blocks", justify="right")
    table.add_column("Boot address", style="green")

    for profile in list_chip_profiles():
        table.add_row(
            profile.name,
            f"0x{profile.chip_id:02X}",
            f"{profile.flash_size // 1024} KiB",
            str(profile.erase_blocks),
            f"0x{profile.boot_address:04X}",
        )

    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()
