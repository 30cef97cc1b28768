"""ragkb ingest: extract, tag, chunk, embed and store one source.

Source dispatch (see ragkb.ingest.extractor):
  downloader .json   → reel / video transcript sections
  https:// / http:// → article, PDF, YouTube, tweet or reel by host and path
  .pdf / .txt / .md  → local file
"""

from __future__ import annotations

import asyncio
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ragkb.cli import common
from ragkb.cli.errors import (
    err_configuration,
    err_ingestion_failed,
    err_ingestion_locked,
    warn_missing_archive,
)
from ragkb.config import RagKbConfig
from ragkb.errors import ConfigurationError, IngestionLockedError
from ragkb.ingest.coordinator import IngestionCoordinator, IngestionResult
from ragkb.runtime import Runtime

console = Console()

_STATUS_STYLE = {
    "stored": "[green]✓ stored[/]",
    "duplicate": "[dim]↷ already stored[/]",
    "skipped": "[yellow]✗ skipped[/]",
    "failed": "[red]✗ failed[/]",
    "vector_failed": "[red]✗ vectors not written[/]",
}


def ingest_cmd(
    source: Annotated[str, typer.Argument(help="URL or local file path to ingest.")],
    tags: Annotated[
        str | None,
        typer.Option("--tags", "-t", help="Comma-separated tags for the source."),
    ] = None,
    targets: Annotated[
        str | None,
        typer.Option("--targets", help="Comma-separated target names (default: configured)."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print one JSON result object to stdout."),
    ] = False,
) -> None:
    """Ingest a document into one or more knowledge-base targets."""
    if json_output:
        common.enter_json_mode()

    try:
        cfg = common.load()
    except ConfigurationError as exc:
        _fail(str(exc), json_output, err_configuration(str(exc)))

    manual_tags = common.split_csv(tags)
    requested = common.split_csv(targets) or None
    runtime = common.make_runtime(cfg)
    try:
        runtime.require_credentials(completion=False)
        if json_output:
            result = _run(runtime, source, manual_tags, requested)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                transient=True,
                console=console,
            ) as prog:
                prog.add_task(f"Ingesting {source}…", total=None)
                result = _run(runtime, source, manual_tags, requested)
    except ConfigurationError as exc:
        _fail(str(exc), json_output, err_configuration(str(exc)))
    except IngestionLockedError as exc:
        _fail(str(exc), json_output, err_ingestion_locked(str(exc), cfg.ingest.lock_file))
    finally:
        runtime.close()

    if json_output:
        common.emit_json(result.to_dict())
    else:
        _render(result, cfg)

    if not result.success:
        raise typer.Exit(1)


def _run(
    runtime: Runtime, source: str, tags: list[str], targets: list[str] | None
) -> IngestionResult:
    return asyncio.run(IngestionCoordinator(runtime).ingest(source, tags, targets))


def _fail(message: str, json_output: bool, rendered: str) -> NoReturn:
    if json_output:
        common.emit_json({"success": False, "error": message})
    else:
        console.print(rendered)
    raise typer.Exit(1)


def _render(result: IngestionResult, cfg: RagKbConfig) -> None:
    if not result.targets:
        console.print(err_ingestion_failed(result.source, result.error or "unknown error"))
        return

    console.print(f"\n[bold]→ {result.title or result.source}[/] [dim]({result.source_type})[/]")
    console.print(
        f"  Chunks: {result.chunk_count}  |  Embedded: {result.embedded_count}  |  "
        f"Tags: {', '.join(result.tags) or '(none)'}"
    )
    for outcome in result.targets:
        line = f"  {outcome.target}: {_STATUS_STYLE.get(outcome.status, outcome.status)}"
        if outcome.source_id is not None:
            line += f" [dim](source {outcome.source_id})[/]"
        console.print(line)
        if outcome.status == "skipped":
            archive = cfg.target(outcome.target).archive
            console.print(warn_missing_archive(outcome.target, str(archive)))
        elif outcome.message and outcome.status != "duplicate":
            console.print(f"    [dim]{outcome.message}[/]")

    if not result.success:
        console.print(err_ingestion_failed(result.source, result.error or "no target succeeded"))
