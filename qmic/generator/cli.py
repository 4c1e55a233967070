"""Command-line interface for qmic code generation."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from qmic.generator import accessor, kernel, parse
from qmic.generator.errors import CompileError
from qmic.generator.sizes import ProtocolSizeInfo, SizeInfo, calculate_sizes

if TYPE_CHECKING:
    from qmic.generator.types import QmiDefinitions, QmiPackage

logger = logging.getLogger(__name__)

BACKENDS = {
    "accessor": accessor,
    "kernel": kernel,
}

# Undecodable bytes are passed on to the scanner, which reports them by line
DEFINITION_FILE = click.File("r", encoding="ascii", errors="surrogateescape")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _compile(source: TextIO) -> tuple[QmiPackage, QmiDefinitions]:
    """Parse a definition file, exiting with a diagnostic on the first error."""
    try:
        return parse(source.read())
    except CompileError as e:
        if e.line is None:
            click.echo(f"qmic: {e.kind}:\n\t{e.message}", err=True)
        else:
            click.echo(f"qmic: {e.kind} on line {e.line}:\n\t{e.message}", err=True)
        sys.exit(1)


@click.group()
def cli() -> None:
    """QMI interface definition compiler."""


@cli.command()
@click.option(
    "--accessor",
    "backend",
    flag_value="accessor",
    default=True,
    help="Generate get/set accessor functions (default)",
)
@click.option("--kernel", "backend", flag_value="kernel", help="Generate static element info tables")
@click.option("--file", "-f", "source", type=DEFINITION_FILE, default="-", help="Input definition file")
@click.option(
    "--output",
    "-o",
    "output_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    envvar="QMIC_OUTPUT_DIR",
    help="Output directory",
)
@click.option("--verbose", "-v", is_flag=True, help="Log parser and generator progress")
def gen(backend: str, source: TextIO, output_dir: Path, verbose: bool) -> None:
    """Generate qmi_<package>.h and qmi_<package>.c from a definition file."""
    _setup_logging(verbose)

    package, definitions = _compile(source)
    generator = BACKENDS[backend]

    try:
        header = generator.render_header(package, definitions)
        source_file = generator.render_source(package, definitions)
    except CompileError as e:
        click.echo(f"qmic: {e}", err=True)
        sys.exit(1)

    header_path = output_dir / f"qmi_{package.name}.h"
    source_path = output_dir / f"qmi_{package.name}.c"
    header_path.write_text(header, encoding="utf-8")
    source_path.write_text(source_file, encoding="utf-8")
    logger.info("wrote %s and %s", header_path, source_path)


@cli.command()
@click.option("--file", "-f", "source", type=DEFINITION_FILE, default="-", help="Input definition file")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def info(source: TextIO, output_json: bool) -> None:
    """Display package information and size calculations."""
    package, definitions = _compile(source)
    size_info = calculate_sizes(package, definitions)

    if output_json:
        _output_json(size_info, package)
    else:
        _output_plain(size_info, package, definitions)


@cli.command()
@click.option("--file", "-f", "source", type=DEFINITION_FILE, default="-", help="Input definition file")
def dump(source: TextIO) -> None:
    """Print the parsed definitions as JSON."""
    package, definitions = _compile(source)
    data = {
        "package": json.loads(package.to_json()),
        "definitions": json.loads(definitions.to_json()),
    }
    print(json.dumps(data, indent=2))


def _format_size(size: int | None) -> str:
    """Format a size value, handling None for unbounded."""
    return "unbounded" if size is None else str(size)


def _format_range(size: SizeInfo) -> str:
    if size.min_size == size.max_size:
        return f"{size.min_size} bytes"
    return f"{size.min_size}-{_format_size(size.max_size)} bytes"


def _output_json(size_info: ProtocolSizeInfo, package: QmiPackage) -> None:
    """Output package info as JSON."""
    data: dict = {
        "package": {"name": package.name, "type": package.type.value},
        "structs": {},
        "messages": {},
        "limits": {
            "min_message_size": size_info.min_message_size,
            "max_message_size": size_info.max_message_size,
        },
    }

    for name, struct_info in size_info.structs.items():
        data["structs"][name] = {
            "min_size": struct_info.size.min_size,
            "max_size": struct_info.size.max_size,
            "kind": struct_info.size.kind.value,
        }

    for name, message_info in size_info.messages.items():
        data["messages"][name] = {
            "msg_id": message_info.msg_id,
            "min_size": message_info.size.min_size,
            "max_size": message_info.size.max_size,
            "kind": message_info.size.kind.value,
        }

    print(json.dumps(data, indent=2))


def _output_plain(size_info: ProtocolSizeInfo, package: QmiPackage, definitions: QmiDefinitions) -> None:
    """Output package info using rich text formatting."""
    console = Console()

    console.print("[bold cyan]Package[/bold cyan]")
    pkg_table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
    pkg_table.add_column("Label", style="dim")
    pkg_table.add_column("Value", style="white")
    pkg_table.add_row("Name", package.name)
    pkg_table.add_row("Type", package.type.value)
    pkg_table.add_row("Max message", f"{_format_size(size_info.max_message_size)} bytes")
    console.print(pkg_table)
    console.print()

    if size_info.structs:
        console.print("[bold cyan]Structs[/bold cyan]")
        struct_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
        struct_table.add_column("Name", style="white")
        struct_table.add_column("Size", style="yellow", justify="right")
        struct_table.add_column("Kind", style="dim")

        for name, struct_info in size_info.structs.items():
            struct_table.add_row(name, _format_range(struct_info.size), struct_info.size.kind.value)

        console.print(struct_table)
        console.print()

    console.print("[bold cyan]Messages[/bold cyan]")
    msg_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    msg_table.add_column("Name", style="white")
    msg_table.add_column("Type", style="dim")
    msg_table.add_column("Msg ID", style="green", justify="right")
    msg_table.add_column("Size", style="yellow", justify="right")

    for qm in definitions.messages:
        message_info = size_info.messages[qm.name]
        msg_table.add_row(qm.name, qm.type.name.lower(), f"0x{qm.msg_id:04x}", _format_range(message_info.size))

    console.print(msg_table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
