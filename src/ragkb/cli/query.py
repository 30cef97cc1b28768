"""ragkb query: answer a question from one target with cited sources."""

from __future__ import annotations

import asyncio
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ragkb.cli import common
from ragkb.cli.errors import err_configuration, err_query_failed
from ragkb.errors import ConfigurationError
from ragkb.rag.query import QueryEngine, QueryResult

console = Console()


def query_cmd(
    question: Annotated[str, typer.Argument(help="The question to ask.")],
    tags: Annotated[
        str | None,
        typer.Option("--tags", "-t", help="Comma-separated tags; every tag must match."),
    ] = None,
    target: Annotated[
        str | None,
        typer.Option("--target", help="Target to search (default: default_target)."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print one JSON result object to stdout."),
    ] = False,
) -> None:
    """Ask a question to the knowledge base."""
    if json_output:
        common.enter_json_mode()

    try:
        cfg = common.load()
    except ConfigurationError as exc:
        _fail(str(exc), json_output)

    runtime = common.make_runtime(cfg)
    try:
        runtime.require_credentials()
        result = asyncio.run(
            QueryEngine(runtime).answer(question, common.split_csv(tags), target)
        )
    except ConfigurationError as exc:
        _fail(str(exc), json_output)
    finally:
        runtime.close()

    if json_output:
        common.emit_json(result.to_dict())
    else:
        _render(result)

    if not result.success:
        raise typer.Exit(1)


def _fail(message: str, json_output: bool) -> NoReturn:
    if json_output:
        common.emit_json({"success": False, "error": message})
    else:
        console.print(err_configuration(message))
    raise typer.Exit(1)


def _render(result: QueryResult) -> None:
    if not result.success:
        console.print(err_query_failed(result.error or "unknown error"))
        return

    console.print(Panel(result.answer, title=f"[bold]Answer[/] [dim]({result.target})[/]"))
    if not result.sources:
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("#", style="bold", width=3)
    table.add_column("Title")
    table.add_column("URL", style="dim")
    table.add_column("Distance", justify="right")
    for i, src in enumerate(result.sources, start=1):
        table.add_row(str(i), src.title or "(untitled)", src.url, f"{src.distance:.4f}")
    console.print(table)
