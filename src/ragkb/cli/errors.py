"""ragkb rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragkb.cli.errors import err_configuration
    console.print(err_configuration(str(exc)))
    raise typer.Exit(1)
"""

from __future__ import annotations

from pathlib import Path


def err_configuration(message: str) -> str:
    """Unusable configuration or missing credentials."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Check ragkb.yaml (or ~/.ragkb/config.yaml) and your exported API keys."
    )


def err_ingestion_locked(message: str, lock_file: Path) -> str:
    """Another ingestion holds a live lease."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Wait for the running ingestion to finish. If no ingestion is running,\n"
        f"  remove the stale lock:  rm {lock_file}"
    )


def err_ingestion_failed(source: str, message: str) -> str:
    """Extraction, embedding or every target failed."""
    return (
        f"[red]Error:[/] Ingestion of '{source}' failed.\n"
        f"  {message}\n"
        "  Re-run with --verbose for details."
    )


def err_query_failed(message: str) -> str:
    return (
        f"[red]Error:[/] Query failed.\n"
        f"  {message}\n"
        "  Check the embedding and completion API keys, then retry."
    )


def err_source_not_found(url: str, target: str) -> str:
    """Source not found in the target's store."""
    return (
        f"[yellow]Source not found:[/] '{url}' is not in target '{target}'.\n"
        "  Run:  ragkb status  to see what is stored."
    )


def warn_missing_archive(target: str, archive: str) -> str:
    """Target skipped because its archive root does not exist."""
    return (
        f"[yellow]Warning:[/] Target '{target}' skipped: archive directory '{archive}' is missing.\n"
        f"  Create it:  mkdir -p {archive}"
    )


def err_backup_failed(message: str) -> str:
    """Backup archive could not be written."""
    return (
        f"[red]Error:[/] Backup failed.\n"
        f"  {message}\n"
        "  Pass --dest with a writable directory outside every target archive."
    )
