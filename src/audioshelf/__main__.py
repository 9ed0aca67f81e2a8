"""AudioShelf command line.

    audioshelf serve [--host HOST] [--port PORT] [--root DIR]
    audioshelf scan
    audioshelf convert BOOK_ID
    audioshelf config

Verbosity: -q/--quiet, -v/--verbose, -d/--debug.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from audioshelf.conversion import (
    ConversionOrchestrator,
    ConversionRegistry,
    FFmpegTranscoder,
    SystemLoadProbe,
)
from audioshelf.core import (
    AudioShelfError,
    ConfigResolver,
    LibraryScanner,
    MetadataStore,
    Settings,
    get_logger,
    set_colors,
    set_verbosity,
    verbosity_from_name,
)

_LOGGER = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", help="Audiobook library root directory")
    common.add_argument("--data-dir", help="Directory for metadata, covers and diagnostics")
    common.add_argument(
        "--config", type=Path, help="User config YAML (default ~/.config/audioshelf/config.yaml)"
    )
    verbosity = common.add_mutually_exclusive_group()
    verbosity.add_argument("-q", "--quiet", dest="level", action="store_const", const="quiet")
    verbosity.add_argument("-v", "--verbose", dest="level", action="store_const", const="verbose")
    verbosity.add_argument("-d", "--debug", dest="level", action="store_const", const="debug")

    p = argparse.ArgumentParser(prog="audioshelf", description="Self-hosted audiobook library server")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", parents=[common], help="Start the HTTP server")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    sub.add_parser("scan", parents=[common], help="List books found under the library root")

    convert = sub.add_parser(
        "convert", parents=[common], help="Convert one book's legacy audio files and wait"
    )
    convert.add_argument("book_id")

    sub.add_parser(
        "config", parents=[common], help="Show effective configuration and where each value comes from"
    )
    return p


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    cli: dict[str, Any] = {
        "library.root": args.root,
        "data_dir": args.data_dir,
        "logging.level": args.level,
        "web.host": getattr(args, "host", None),
        "web.port": getattr(args, "port", None),
    }
    return {k: v for k, v in cli.items() if v is not None}


def _build_orchestrator(settings: Settings) -> ConversionOrchestrator:
    return ConversionOrchestrator(
        ConversionRegistry(),
        FFmpegTranscoder(settings.conversion.ffmpeg_path),
        SystemLoadProbe(),
        settings.conversion,
    )


def cmd_serve(settings: Settings, resolver: ConfigResolver) -> int:
    # Imported here so scan/convert/config do not load the web stack.
    from audioshelf.web.core import WebServer

    _LOGGER.info(f"serving {settings.library_root} on http://{settings.host}:{settings.port}")
    verbosity = int(verbosity_from_name(settings.logging_level))
    WebServer().run(settings, config_resolver=resolver, verbosity=verbosity)
    return 0


def cmd_scan(settings: Settings, console: Console) -> int:
    scanner = LibraryScanner(settings.library_root, MetadataStore(settings.metadata_path))
    books = scanner.scan()

    table = Table(title=f"Library: {settings.library_root}")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Seasons", justify="right")
    table.add_column("Episodes", justify="right")
    table.add_column("Legacy", style="yellow", justify="right")
    table.add_column("Cover", style="dim")
    for book in books:
        legacy = sum(1 for ep in book.iter_episodes() if ep.needs_conversion)
        table.add_row(
            book.id,
            book.name,
            str(len(book.seasons)),
            str(book.total_episodes),
            str(legacy) if legacy else "-",
            "yes" if book.has_cover else "-",
        )
    console.print(table)
    if not books:
        console.print("[yellow]No books found[/yellow]")
    return 0


def cmd_convert(settings: Settings, console: Console, book_id: str) -> int:
    scanner = LibraryScanner(settings.library_root, MetadataStore(settings.metadata_path))
    book = scanner.get_book(book_id)
    orchestrator = _build_orchestrator(settings)

    task = orchestrator.start(book)
    if task is None:
        console.print(f"[green]Nothing to convert for {book.name}[/green]")
        return 0

    with console.status(f"Converting {book.name} ({task.total} files)..."):
        task = orchestrator.wait(book.id)

    if task is None:
        raise AudioShelfError(f"conversion task for {book.name!r} is no longer registered")
    table = Table(title=f"Conversion: {book.name}")
    for column in ("Status", "Completed", "Failed", "Abandoned", "Total"):
        table.add_column(column, justify="right")
    table.add_row(
        task.status.value,
        str(task.completed),
        str(task.failed),
        str(task.abandoned),
        str(task.total),
    )
    console.print(table)
    return 0 if task.failed == 0 and task.abandoned == 0 else 1


def cmd_config(resolver: ConfigResolver, console: Console) -> int:
    table = Table(title="Effective configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Source", style="dim")
    for key, src in resolver.resolve_all().items():
        table.add_row(key, str(src.value), src.source)
    console.print(table)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()

    try:
        resolver = ConfigResolver(cli_args=_cli_overrides(args), user_config_path=args.config)
        settings = Settings.from_resolver(resolver)
        set_verbosity(verbosity_from_name(settings.logging_level))
        set_colors(settings.color)

        if args.command == "serve":
            return cmd_serve(settings, resolver)
        if args.command == "scan":
            return cmd_scan(settings, console)
        if args.command == "convert":
            return cmd_convert(settings, console, args.book_id)
        return cmd_config(resolver, console)
    except AudioShelfError as e:
        _LOGGER.error(str(e))
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
