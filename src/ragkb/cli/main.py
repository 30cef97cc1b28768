"""ragkb CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragkb.cli.backup import backup_cmd
from ragkb.cli.ingest import ingest_cmd
from ragkb.cli.query import query_cmd
from ragkb.cli.remove import remove_cmd
from ragkb.cli.status import status_cmd
from ragkb.log import configure_logging


def _version() -> str:
    try:
        return importlib.metadata.version("ragkb")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragkb {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragkb",
    help=(
        "ragkb: personal RAG knowledge base.\n\n"
        "  ragkb ingest SOURCE    Extract, tag, chunk and embed a document into targets.\n"
        "  ragkb query QUESTION   Answer a question with cited sources.\n"
        "  ragkb backup           Snapshot every target and the vector index."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pipeline progress to stderr."),
    ] = False,
) -> None:
    """ragkb: personal RAG knowledge base."""
    configure_logging("DEBUG" if verbose else "WARNING")


app.command("ingest")(ingest_cmd)
app.command("query")(query_cmd)
app.command("status")(status_cmd)
app.command("remove")(remove_cmd)
app.command("backup")(backup_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragkb version."""
    typer.echo(f"ragkb {_version()}")


if __name__ == "__main__":
    app()
