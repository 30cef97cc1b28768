"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec


class Database:
    """One SQLite database file with sqlite-vec vector search support."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


class ConnectionRegistry:
    """Process-lifetime cache of open connections, keyed by resolved path.

    Repeated ``open()`` calls for the same file (however the path is spelled)
    return the same connection. Schema initialisation runs on first open.
    Connections stay open until ``close_all()``.
    """

    def __init__(self) -> None:
        self._connections: dict[Path, sqlite3.Connection] = {}

    def open(self, db_path: Path | str) -> sqlite3.Connection:
        """Return the cached connection for *db_path*, opening it if needed."""
        from ragkb.db.schema import initialize

        key = Path(db_path).expanduser().resolve()
        conn = self._connections.get(key)
        if conn is None:
            conn = Database(key).connect()
            try:
                initialize(conn)
            except sqlite3.Error:
                conn.close()
                raise
            self._connections[key] = conn
        return conn

    def __contains__(self, db_path: object) -> bool:
        if not isinstance(db_path, (str, Path)):
            return False
        return Path(db_path).expanduser().resolve() in self._connections

    def close_all(self) -> None:
        """Close every cached connection (tests and orderly shutdown)."""
        for conn in self._connections.values():
            conn.close()
        self._connections.clear()
