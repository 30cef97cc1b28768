"""ragkb remove: source lifecycle management.

Removes a source and all its associated data from one target:
  - vector records (target collection)
  - chunks (ON DELETE CASCADE)
  - source record

The archived original is left in place.

Usage:
  ragkb remove https://example.com/post
  ragkb remove ./notes.md --target work --yes
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from ragkb.cli import common
from ragkb.cli.errors import err_configuration, err_source_not_found
from ragkb.errors import ConfigurationError
from ragkb.ingest.extractor import detect_source_type, normalize_source

console = Console()


def remove_cmd(
    url: Annotated[str, typer.Argument(help="Source URL or path to remove.")],
    target: Annotated[
        str | None,
        typer.Option("--target", help="Target to remove from (default: default_target)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a source and all its data from a target."""
    try:
        cfg = common.load()
        target_cfg = cfg.target(target or cfg.default_target)
    except ConfigurationError as exc:
        console.print(err_configuration(str(exc)))
        raise typer.Exit(1)

    if not target_cfg.database.exists():
        console.print(err_source_not_found(url, target_cfg.name))
        raise typer.Exit(0)

    runtime = common.make_runtime(cfg)
    try:
        repo = runtime.repository(target_cfg)
        existing = repo.find_by_url(url) or repo.find_by_normalized_url(
            normalize_source(url, detect_source_type(url))
        )
        if existing is None:
            console.print(err_source_not_found(url, target_cfg.name))
            raise typer.Exit(0)

        chunk_count = repo.count_chunks_by_source(existing.id)
        console.print(f"\nRemove source: [bold]{existing.title or existing.url}[/]")
        console.print(f"  Target: {target_cfg.name}  |  Chunks: {chunk_count}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        vectors = 0
        if cfg.vector_store.path.exists():
            index = runtime.vector_index
            collection = index.get_collection(target_cfg.collection)
            if collection is not None:
                vectors = index.delete_by_source(collection, existing.id)
        repo.delete_source(existing.id)

        console.print(f"\n[green]✓[/] Removed: {existing.url}")
        console.print(f"  {chunk_count} chunks, {vectors} vector records deleted")
    finally:
        runtime.close()
