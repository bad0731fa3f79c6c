#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname CLI

Commands:
    snapname watch                  Rename new images in the watch folder as they appear
    snapname batch FOLDER           Preview renames for a folder (add --apply to run them)
    snapname test                   Check the AI backend and the clipboard
    snapname models [--pull]        List (or pull) Ollama models
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .clipboard import ClipboardPublisher
from .config import (
    ConfigError,
    PROVIDER_KINDS,
    PROVIDER_OLLAMA,
    ProviderConfig,
    Settings,
    load_settings,
    validate_settings,
)
from .engine import (
    FILENAME_FORMATS,
    MODE_COPY,
    MODE_RENAME,
    STATUS_ERROR,
    STATUS_RENAME,
    BatchReport,
    BatchSettings,
    apply_batch,
    export_preview,
    preview_batch,
    validate_preview,
)
from .logs import setup_logging
from .vision import check_provider_connection
from .vision_providers import OllamaProvider, ProviderConnectionError, get_provider
from .watcher import FolderWatcher

logger = logging.getLogger(__name__)

console = Console()


# ==============================================================================
# DISPLAY HELPERS
# ==============================================================================

def format_size(size_bytes: float) -> str:
    """Format byte size into human-readable string (e.g. "45.6 KB")."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} TB"


def show_report(report: BatchReport, compact: bool = False) -> None:
    """Print a batch report as a table plus a one-line summary."""
    if compact:
        table = Table(show_header=True, header_style="bold cyan", box=None)
        table.add_column("Original")
        table.add_column("")
        table.add_column("New name", style="green")
        for change in report.changes:
            if change.status == STATUS_RENAME:
                table.add_row(change.original_name, "→", change.final_name)
    else:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Original", overflow="fold")
        table.add_column("New name", style="green", overflow="fold")
        table.add_column("Status")
        table.add_column("Size", justify="right")
        table.add_column("Analysis", style="dim", overflow="fold")
        status_styles = {STATUS_RENAME: "green", STATUS_ERROR: "red"}
        for change in report.changes:
            style = status_styles.get(change.status, "yellow")
            table.add_row(
                change.original_name,
                change.final_name,
                f"[{style}]{change.status}[/{style}]",
                format_size(change.size),
                change.analysis or change.reason or "",
            )

    console.print(table)

    summary = (f"[bold]{report.total_files}[/bold] files, "
               f"[green]{report.processed}[/green] to {report.settings.process_mode}, "
               f"[yellow]{report.skipped}[/yellow] skipped, "
               f"[red]{report.errors}[/red] errors")
    if report.average_latency is not None:
        summary += f", avg {report.average_latency:.1f}s per file"
    console.print(summary)


# ==============================================================================
# COMMANDS
# ==============================================================================

def cmd_watch(args: argparse.Namespace, settings: Settings) -> int:
    provider = get_provider(settings)
    try:
        check_provider_connection(provider)
    except ProviderConnectionError as e:
        console.print(f"[red]✗ {e}[/red]")
        return 1

    watcher = FolderWatcher(settings, provider=provider)
    try:
        watcher.start()
    except ConfigError as e:
        console.print(f"[red]✗ {e}[/red]")
        return 1

    stop_requested = threading.Event()
    reload_requested = threading.Event()

    def _on_stop(signum, frame):
        stop_requested.set()

    signal.signal(signal.SIGINT, _on_stop)
    signal.signal(signal.SIGTERM, _on_stop)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda signum, frame: reload_requested.set())

    console.print(f"[cyan]Watching[/cyan] {settings.watch_folder}  (Ctrl+C to stop)")
    try:
        while not stop_requested.wait(0.5):
            if reload_requested.is_set():
                reload_requested.clear()
                _reload(watcher, args)
    finally:
        watcher.stop()
    return 0


def _reload(watcher: FolderWatcher, args: argparse.Namespace) -> None:
    """Re-read the config file, keeping the command-line overrides on top."""
    try:
        new_settings = _apply_overrides(load_settings(args.config), args)
        watcher.reload_config(new_settings)
    except ConfigError as e:
        logger.error("Config reload failed, keeping previous settings: %s", e)
        return
    setup_logging(new_settings.log_level)


def cmd_batch(args: argparse.Namespace, settings: Settings) -> int:
    batch_settings = BatchSettings(
        process_mode=MODE_COPY if args.copy_to else MODE_RENAME,
        copy_destination=args.copy_to,
        skip_processed=not args.include_processed,
        copy_to_clipboard=args.clipboard,
        prefix=args.prefix or '',
        filename_format=args.format,
    )
    folder = args.folder.expanduser()

    try:
        if not args.apply:
            provider = get_provider(settings) if args.analyze else None
            report = preview_batch(folder, batch_settings, provider=provider, analyze=args.analyze)
            show_report(report, compact=args.compact)
            valid, issues = validate_preview(report)
            for issue in issues:
                console.print(f"[yellow]⚠ {issue}[/yellow]")
            if args.export:
                if export_preview(report, args.export):
                    console.print(f"Preview exported to {args.export}")
                else:
                    return 1
            if report.processed:
                console.print("[dim]Run again with --apply to perform these changes.[/dim]")
            return 0 if valid else 1

        provider = get_provider(settings)
        clipboard = ClipboardPublisher(helper_path=settings.clipboard_helper) if args.clipboard else None
        report = apply_batch(folder, provider, batch_settings, clipboard=clipboard)
    except ProviderConnectionError as e:
        console.print(f"[red]✗ {e}[/red]")
        return 1
    except (FileNotFoundError, NotADirectoryError) as e:
        console.print(f"[red]✗ {e}[/red]")
        return 1

    show_report(report, compact=args.compact)
    if args.export:
        export_preview(report, args.export)
    return 0 if report.errors == 0 else 1


def cmd_test(args: argparse.Namespace, settings: Settings) -> int:
    provider = get_provider(settings)
    status = provider.test_connection()
    if status.success:
        console.print(f"[green]✓ {status.message}[/green] ({provider.model}): {status.response}")
    else:
        console.print(f"[red]✗ {provider.kind} connection failed: {status.error}[/red]")

    clipboard_ok, message = ClipboardPublisher(helper_path=settings.clipboard_helper).test_clipboard()
    color = "green" if clipboard_ok else "yellow"
    console.print(f"[{color}]{'✓' if clipboard_ok else '⚠'} {message}[/{color}]")

    return 0 if status.success else 1


def cmd_models(args: argparse.Namespace, settings: Settings) -> int:
    if settings.provider.kind != PROVIDER_OLLAMA:
        console.print(f"[yellow]Model management is only available for Ollama "
                      f"(current provider: {settings.provider.kind})[/yellow]")
        return 1

    provider = get_provider(settings)
    if not isinstance(provider, OllamaProvider):
        console.print(f"[red]✗ Unexpected provider for model management: {provider.kind}[/red]")
        return 1

    if args.pull and not provider.ensure_model():
        console.print(f"[red]✗ Failed to pull {provider.model}[/red]")
        return 1

    models = provider.list_models()
    if not models:
        console.print("[yellow]No models found (is Ollama running?)[/yellow]")
        return 1

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Model")
    table.add_column("Configured", justify="center")
    for name in models:
        table.add_row(name, "[green]✓[/green]" if name == provider.model else "")
    console.print(table)
    return 0


# ==============================================================================
# ENTRY POINT
# ==============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapname",
        description="Rename screenshots and images with descriptive, AI-generated names.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config file (default: ~/.snapname.conf)")
    parser.add_argument("--provider", choices=PROVIDER_KINDS, help="Override the AI provider")
    parser.add_argument("--model", help="Override the model name")
    parser.add_argument("--log-level", choices=("debug", "info", "warning", "error"),
                        help="Override the log level")

    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Watch a folder and rename new images")
    watch.add_argument("--folder", type=Path, help="Folder to watch (default from config)")
    watch.add_argument("--no-clipboard", action="store_true", help="Do not copy renamed images to the clipboard")
    watch.set_defaults(func=cmd_watch)

    batch = sub.add_parser("batch", help="Rename or copy all images in a folder")
    batch.add_argument("folder", type=Path)
    batch.add_argument("--apply", action="store_true", help="Perform the changes (default is preview only)")
    batch.add_argument("--copy-to", type=Path, help="Copy renamed files here instead of renaming in place")
    batch.add_argument("--analyze", action="store_true", help="Use the AI backend for the preview too")
    batch.add_argument("--export", type=Path, help="Write the report to a JSON file")
    batch.add_argument("--prefix", help="Prefix used by prefixed filename formats")
    batch.add_argument("--format", choices=FILENAME_FORMATS, default=FILENAME_FORMATS[0],
                       help="Filename format")
    batch.add_argument("--clipboard", action="store_true", help="Copy each renamed file to the clipboard")
    batch.add_argument("--include-processed", action="store_true",
                       help="Also process files that already look renamed")
    batch.add_argument("--compact", action="store_true", help="Only list files that change")
    batch.set_defaults(func=cmd_batch)

    test = sub.add_parser("test", help="Test the AI backend and clipboard")
    test.set_defaults(func=cmd_test)

    models = sub.add_parser("models", help="List Ollama models")
    models.add_argument("--pull", action="store_true", help="Pull the configured model if missing")
    models.set_defaults(func=cmd_models)

    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.provider and args.provider != settings.provider.kind:
        settings = replace(settings, provider=ProviderConfig.for_kind(
            args.provider, api_key=settings.provider.api_key))
    if args.model:
        settings = settings.with_provider(model=args.model)
    if args.log_level:
        settings = replace(settings, log_level=args.log_level)
    if getattr(args, 'folder', None) is not None and args.command == "watch":
        settings = replace(settings, watch_folder=args.folder.expanduser())
    if getattr(args, 'no_clipboard', False):
        settings = replace(settings, copy_to_clipboard=False)
    return validate_settings(settings)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = _apply_overrides(load_settings(args.config), args)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    setup_logging(settings.log_level)

    try:
        return args.func(args, settings)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
