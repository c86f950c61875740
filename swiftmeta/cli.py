"""Command-line interface for inspecting Swift metadata in binaries."""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from swiftmeta.config import Config, ConfigError, load_config
from swiftmeta.demangle import find_demangler
from swiftmeta.host import ModuleUnreadable
from swiftmeta.images import ImageHost, ImageModule
from swiftmeta.registry import Registry
from swiftmeta.symbols import enumerate_demangled_symbols

if TYPE_CHECKING:
    from swiftmeta.types import Type


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@click.group()
@click.option("--config", "config_path", default=None, help="Path to swiftmeta.toml")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Inspect Swift type metadata embedded in binaries."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    if verbose:
        config.log_level = "DEBUG"
    _setup_logging(config.log_level)
    ctx.obj = config


def _build_registry(config: Config, images: tuple[str, ...]) -> Registry:
    paths = list(images) or config.images
    if not paths:
        click.echo("No images given")
        sys.exit(1)
    host = ImageHost(paths)
    registry = Registry(host)
    for path, reason in host.failures.items():
        click.echo(f"warning: {path}: {reason}", err=True)
    for warning in registry.warnings:
        click.echo(f"warning: {warning}", err=True)
    return registry


@cli.command()
@click.argument("images", nargs=-1)
@click.option("--module", "-m", "module_name", default=None, help="Only list this Swift module")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def types(config: Config, images: tuple[str, ...], module_name: str | None, output_json: bool) -> None:
    """List the Swift types and protocols declared in IMAGES."""
    registry = _build_registry(config, images)
    entries: list[Type] = [
        t for t in registry.types if module_name is None or t.module_name == module_name
    ]
    protocols = [
        p for p in dict.fromkeys(registry.protocols.values())
        if module_name is None or p.module_name == module_name
    ]

    if output_json:
        data = [t.describe() for t in entries] + [p.describe() for p in protocols]
        print(json.dumps(data, indent=2))
        return

    console = Console()
    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Kind", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Conformances", style="green")

    for t in entries:
        table.add_row(t.kind.name.lower(), t.full_name, ", ".join(t.conformances))
    for p in protocols:
        table.add_row("protocol", p.full_name, "")

    console.print(table)


@cli.command()
@click.argument("images", nargs=-1)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def modules(config: Config, images: tuple[str, ...], output_json: bool) -> None:
    """Summarize the Swift modules found in IMAGES."""
    registry = _build_registry(config, images)
    summary = registry.summary()

    if output_json:
        print(json.dumps(summary, indent=2))
        return

    console = Console()
    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Module", style="white")
    for column in ("Classes", "Structs", "Enums", "Protocols"):
        table.add_column(column, style="yellow", justify="right")

    for name, counts in summary.items():
        table.add_row(
            name,
            str(counts["classes"]),
            str(counts["structs"]),
            str(counts["enums"]),
            str(counts["protocols"]),
        )

    console.print(table)


@cli.command()
@click.argument("image")
@click.option("--demangler", default=None, help="swift-demangle executable")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def symbols(config: Config, image: str, demangler: str | None, output_json: bool) -> None:
    """List the demangled Swift symbols exported by IMAGE."""
    tool = find_demangler(demangler or config.demangler)
    if tool is None:
        click.echo("swift-demangle not found")
        sys.exit(1)

    try:
        records = enumerate_demangled_symbols(ImageModule.open(image), tool)
    except ModuleUnreadable as exc:
        click.echo(f"Cannot read {image}: {exc}")
        sys.exit(1)

    if output_json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return

    console = Console()
    table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
    table.add_column("Address", style="dim", justify="right")
    table.add_column("Symbol", style="white")
    for record in records:
        table.add_row(f"{record.address:#x}", record.demangled)
    console.print(table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
