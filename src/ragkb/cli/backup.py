"""ragkb backup: snapshot every target and the vector index into one tar.gz."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console

from ragkb.backup import BackupResult, create_backup
from ragkb.cli import common
from ragkb.cli.errors import err_backup_failed, err_configuration, err_ingestion_locked
from ragkb.errors import BackupError, ConfigurationError, IngestionLockedError

console = Console()


def backup_cmd(
    dest: Annotated[
        Path | None,
        typer.Option("--dest", "-d", help="Directory for the archive (default: backup.directory)."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print one JSON result object to stdout."),
    ] = False,
) -> None:
    """Write a timestamped backup of all targets and the vector index."""
    if json_output:
        common.enter_json_mode()

    try:
        cfg = common.load()
    except ConfigurationError as exc:
        _fail(str(exc), json_output, err_configuration(str(exc)))

    try:
        result = create_backup(cfg, dest)
    except IngestionLockedError as exc:
        _fail(str(exc), json_output, err_ingestion_locked(str(exc), cfg.ingest.lock_file))
    except BackupError as exc:
        _fail(str(exc), json_output, err_backup_failed(str(exc)))

    if json_output:
        common.emit_json(result.to_dict())
    else:
        _render(result)


def _fail(message: str, json_output: bool, rendered: str) -> NoReturn:
    if json_output:
        common.emit_json({"success": False, "error": message})
    else:
        console.print(rendered)
    raise typer.Exit(1)


def _render(result: BackupResult) -> None:
    for item in result.included:
        console.print(f"  [green]✓[/] {item}")
    for item in result.missing:
        console.print(f"  [yellow]✗ not found, skipped:[/] {item}")
    console.print(f"\n[bold]Backup written:[/] {result.archive}")
