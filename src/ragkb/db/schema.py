"""Metadata database initialization."""

from __future__ import annotations

import sqlite3


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the metadata schema via the migration runner (idempotent)."""
    from ragkb.db.migrations import run_migrations

    run_migrations(conn)
