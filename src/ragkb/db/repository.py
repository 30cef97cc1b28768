"""Repository for one target's metadata store (sources + chunks).

Dedup keys (normalized_url, content_hash) are UNIQUE in the schema, so the
store rejects duplicates itself; the find_* lookups only let callers skip work
early.
"""

from __future__ import annotations

import json
import sqlite3

from ragkb.db.models import Chunk, Source
from ragkb.errors import DuplicateSourceError

_SOURCE_COLUMNS = (
    "id, url, normalized_url, title, source_type, raw_content, content_hash, "
    "tags, created_at, updated_at"
)


class Repository:
    """Data access layer for a target's sources and chunks.

    Wraps an open sqlite3.Connection. Connections handed out by
    ``ConnectionRegistry`` are shared for the process lifetime, so the
    repository never closes them.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with schema initialised
                (see ragkb.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def find_by_normalized_url(self, normalized_url: str) -> Source | None:
        """Return the source stored under *normalized_url*, or None."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE normalized_url = ?",
            (normalized_url,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def find_by_content_hash(self, content_hash: str) -> Source | None:
        """Return the source whose extracted text hashes to *content_hash*, or None."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE content_hash = ?",
            (content_hash,),
        ).fetchone()
        return _row_to_source(row) if row else None

    def find_by_url(self, url: str) -> Source | None:
        """Return a source by its original or normalized URL, or None."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE url = ? OR normalized_url = ? "
            "ORDER BY id LIMIT 1",
            (url, url),
        ).fetchone()
        return _row_to_source(row) if row else None

    def get_source(self, source_id: int) -> Source | None:
        """Return a source by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[Source]:
        """Return all sources ordered by id (oldest first)."""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY id"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def count_sources(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0]

    def delete_source(self, source_id: int) -> None:
        """Delete a source. Its chunks are removed by ON DELETE CASCADE."""
        with self._conn:
            self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))

    def insert_source_with_chunks(
        self, source: Source, chunks: list[Chunk]
    ) -> tuple[int, list[int]]:
        """Insert *source* and all *chunks* as one transaction.

        Either every row is committed or none is. On success ``source.id`` and
        each ``chunk.id`` / ``chunk.source_id`` are set.

        Returns:
            ``(source_id, chunk_ids)`` with chunk ids in the order given.

        Raises:
            DuplicateSourceError: normalized_url or content_hash already stored.
            sqlite3.Error: Any other database failure (transaction rolled back).
        """
        try:
            with self._conn:
                cur = self._conn.execute(
                    """
                    INSERT INTO sources
                        (url, normalized_url, title, source_type, raw_content,
                         content_hash, tags)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source.url,
                        source.normalized_url,
                        source.title,
                        source.source_type,
                        source.raw_content,
                        source.content_hash,
                        source.tags_json,
                    ),
                )
                source_id = cur.lastrowid
                chunk_ids: list[int] = []
                for chunk in chunks:
                    cur = self._conn.execute(
                        "INSERT INTO chunks (source_id, chunk_index, content) VALUES (?, ?, ?)",
                        (source_id, chunk.chunk_index, chunk.content),
                    )
                    chunk_ids.append(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed: sources." in str(exc):
                raise DuplicateSourceError(
                    f"Source already stored ({exc}): {source.normalized_url}"
                ) from exc
            raise

        source.id = source_id
        for chunk, chunk_id in zip(chunks, chunk_ids):
            chunk.id = chunk_id
            chunk.source_id = source_id
        return source_id, chunk_ids

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def list_chunks(self, source_id: int) -> list[Chunk]:
        """Return the chunks of *source_id* ordered by chunk_index."""
        rows = self._conn.execute(
            """
            SELECT id, source_id, chunk_index, content, created_at
            FROM chunks WHERE source_id = ? ORDER BY chunk_index
            """,
            (source_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks_by_source(self, source_id: int) -> int:
        """Return the number of chunks belonging to *source_id*."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE source_id = ?", (source_id,)
        ).fetchone()[0]

    def count_chunks(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def list_all_tags(self) -> set[str]:
        """Return the union of tags across every source in this store."""
        tags: set[str] = set()
        for (raw,) in self._conn.execute("SELECT tags FROM sources").fetchall():
            tags.update(_parse_tags(raw))
        return tags


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _parse_tags(raw: str | None) -> list[str]:
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    return [str(t) for t in value] if isinstance(value, list) else []


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        url=row["url"],
        normalized_url=row["normalized_url"],
        title=row["title"],
        source_type=row["source_type"],
        raw_content=row["raw_content"],
        content_hash=row["content_hash"],
        tags=_parse_tags(row["tags"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        created_at=row["created_at"],
    )
