"""ragkb status: per-target sources, chunks, vectors and tag vocabulary."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ragkb.cli import common
from ragkb.cli.errors import err_configuration
from ragkb.config import TargetCfg
from ragkb.errors import ConfigurationError
from ragkb.runtime import Runtime

console = Console()


def status_cmd() -> None:
    """Show every configured target and what it holds."""
    try:
        cfg = common.load()
    except ConfigurationError as exc:
        console.print(err_configuration(str(exc)))
        raise typer.Exit(1)

    runtime = common.make_runtime(cfg)
    try:
        lock = cfg.ingest.lock_file
        lock_state = "[yellow]held[/]" if lock.exists() else "[green]free[/]"
        console.print(
            Panel(
                f"Vector index:  {cfg.vector_store.path}\n"
                f"Lock file:     {lock} ({lock_state})\n"
                f"Default:       [bold]{cfg.default_target}[/]",
                title="[bold]ragkb[/]",
                expand=False,
            )
        )
        for target in cfg.targets.values():
            _show_target(runtime, target)
    finally:
        runtime.close()


def _show_target(runtime: Runtime, target: TargetCfg) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Database", str(target.database))
    archive_state = "" if target.archive.is_dir() else " [yellow]✗ missing[/]"
    table.add_row("Archive", f"{target.archive}{archive_state}")

    if not target.database.exists():
        table.add_row("Sources", "[dim]none (database not created yet)[/]")
        console.print(Panel(table, title=f"[bold]{target.name}[/]", expand=False))
        return

    repo = runtime.repository(target)
    vectors = 0
    if runtime.config.vector_store.path.exists():
        collection = runtime.vector_index.get_collection(target.collection)
        if collection is not None:
            vectors = runtime.vector_index.count(collection)

    tags = sorted(repo.list_all_tags())
    table.add_row("Sources", f"{repo.count_sources():,}")
    table.add_row("Chunks", f"{repo.count_chunks():,}")
    table.add_row("Vectors", f"{vectors:,} [dim](collection {target.collection})[/]")
    table.add_row("Tags", ", ".join(tags) if tags else "[dim](none)[/]")
    console.print(Panel(table, title=f"[bold]{target.name}[/]", expand=False))
