"""Vector index: named sqlite-vec collections with denormalized chunk metadata.

One index database holds every collection (one per target). Each collection is
a ``vec0`` virtual table keyed by rowid; the rowid points into ``vec_records``,
which carries the record key and the metadata needed to build an answer
without a join back to the target's metadata store.

Distances are L2 (non-negative, lower = more similar).

Tag filtering matches against the comma-joined tag string of a record:
  substring  every requested tag occurs anywhere in the string ("ai" matches "fairy")
  exact      every requested tag equals one comma-separated token
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field

from ragkb.errors import VectorIndexError

_CREATE_COLLECTIONS = """
CREATE TABLE IF NOT EXISTS vec_collections (
    name        TEXT PRIMARY KEY,
    table_name  TEXT NOT NULL UNIQUE,
    dimensions  INTEGER NOT NULL,
    created_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_RECORDS = """
CREATE TABLE IF NOT EXISTS vec_records (
    rowid       INTEGER PRIMARY KEY AUTOINCREMENT,
    collection  TEXT NOT NULL,
    key         TEXT NOT NULL UNIQUE,
    source_id   INTEGER NOT NULL,
    chunk_id    INTEGER NOT NULL,
    text        TEXT NOT NULL,
    url         TEXT NOT NULL,
    title       TEXT NOT NULL DEFAULT '',
    tags        TEXT NOT NULL DEFAULT ''
)
"""

_CREATE_RECORDS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_vec_records_source ON vec_records(collection, source_id)"
)

_RECORD_COLUMNS = "r.rowid AS rowid, r.key, r.source_id, r.chunk_id, r.text, r.url, r.title, r.tags"

TAG_MATCH_MODES = ("substring", "exact")


def collection_slug(name: str) -> str:
    """Convert a collection name to a valid table name suffix.

    Examples:
        "personal" -> "personal"
        "Reels-2024" -> "reels_2024"
    """
    return re.sub(r"[^a-z0-9]", "_", name.lower())


def vec_table_name(slug: str) -> str:
    """Return the full vec table name for a collection slug."""
    return f"vec_{slug}"


def record_key(target: str, source_id: int, chunk_id: int) -> str:
    """Stable vector key: ``<target>_<sourceId>_<chunkId>``."""
    return f"{target}_{source_id}_{chunk_id}"


def flatten_tags(tags: Iterable[str]) -> str:
    """Join tags into the comma-separated string stored with each record."""
    return ",".join(sorted(set(tags)))


@dataclass(frozen=True)
class Collection:
    name: str
    table: str
    dimensions: int


@dataclass
class VectorRecord:
    """One entry to upsert: vector plus denormalized metadata."""

    key: str
    embedding: list[float]
    source_id: int
    chunk_id: int
    text: str
    url: str
    title: str = ""
    tags: str = ""


@dataclass
class SearchHit:
    """A search result: record metadata and its distance to the query."""

    key: str
    distance: float
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return str(self.metadata.get("url", ""))


class VectorIndex:
    """Collection-based nearest-neighbour store over one sqlite-vec database.

    Args:
        conn: Open connection with sqlite-vec loaded.
        batch_size: Maximum records written per upsert transaction.
    """

    def __init__(self, conn: sqlite3.Connection, batch_size: int = 100) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._conn = conn
        self._batch_size = batch_size
        self._collections: dict[str, Collection] = {}
        self._conn.execute(_CREATE_COLLECTIONS)
        self._conn.execute(_CREATE_RECORDS)
        self._conn.execute(_CREATE_RECORDS_INDEX)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def get_collection(self, name: str) -> Collection | None:
        """Return an existing collection, or None if it was never created."""
        if name in self._collections:
            return self._collections[name]
        row = self._conn.execute(
            "SELECT name, table_name, dimensions FROM vec_collections WHERE name = ?",
            (name,),
        ).fetchone()
        if row is None:
            return None
        collection = Collection(name=row[0], table=row[1], dimensions=row[2])
        self._collections[name] = collection
        return collection

    def ensure_collection(self, name: str, dimensions: int) -> Collection:
        """Return collection *name*, creating its vec table on first use.

        Cached per name; only the first call touches the database.

        Raises:
            VectorIndexError: If the collection exists with other dimensions,
                or its table name collides with another collection.
        """
        if dimensions < 1:
            raise ValueError(f"dimensions must be >= 1, got {dimensions}")

        existing = self.get_collection(name)
        if existing is not None:
            if existing.dimensions != dimensions:
                raise VectorIndexError(
                    f"Collection '{name}' holds {existing.dimensions}-dim vectors, "
                    f"got {dimensions}-dim. Re-embed with the original model."
                )
            return existing

        table = vec_table_name(collection_slug(name))
        clash = self._conn.execute(
            "SELECT name FROM vec_collections WHERE table_name = ?", (table,)
        ).fetchone()
        if clash is not None:
            raise VectorIndexError(
                f"Collection name '{name}' collides with existing collection '{clash[0]}'."
            )

        with self._conn:
            self._conn.execute(
                f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} "
                f"USING vec0(embedding float[{dimensions}])"
            )
            self._conn.execute(
                "INSERT INTO vec_collections (name, table_name, dimensions) VALUES (?, ?, ?)",
                (name, table, dimensions),
            )
        collection = Collection(name=name, table=table, dimensions=dimensions)
        self._collections[name] = collection
        return collection

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, collection: Collection, records: list[VectorRecord]) -> int:
        """Insert or replace *records* in batches of at most ``batch_size``.

        Each batch is its own transaction. Returns the number of records written.

        Raises:
            VectorIndexError: If a record's vector length does not match.
        """
        for rec in records:
            if len(rec.embedding) != collection.dimensions:
                raise VectorIndexError(
                    f"Record '{rec.key}' has {len(rec.embedding)} dimensions, "
                    f"collection '{collection.name}' expects {collection.dimensions}."
                )

        written = 0
        for start in range(0, len(records), self._batch_size):
            batch = records[start:start + self._batch_size]
            with self._conn:
                for rec in batch:
                    rowid = self._upsert_record(collection, rec)
                    self._conn.execute(
                        f"DELETE FROM {collection.table} WHERE rowid = ?", (rowid,)
                    )
                    self._conn.execute(
                        f"INSERT INTO {collection.table}(rowid, embedding) VALUES (?, ?)",
                        (rowid, json.dumps(rec.embedding)),
                    )
            written += len(batch)
        return written

    def _upsert_record(self, collection: Collection, rec: VectorRecord) -> int:
        row = self._conn.execute(
            "SELECT rowid FROM vec_records WHERE key = ?", (rec.key,)
        ).fetchone()
        values = (
            collection.name,
            rec.source_id,
            rec.chunk_id,
            rec.text,
            rec.url,
            rec.title,
            rec.tags,
        )
        if row is not None:
            self._conn.execute(
                """
                UPDATE vec_records
                SET collection = ?, source_id = ?, chunk_id = ?, text = ?, url = ?,
                    title = ?, tags = ?
                WHERE rowid = ?
                """,
                (*values, row[0]),
            )
            return row[0]
        cur = self._conn.execute(
            """
            INSERT INTO vec_records
                (collection, source_id, chunk_id, text, url, title, tags, key)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (*values, rec.key),
        )
        return cur.lastrowid

    def delete_by_source(self, collection: Collection, source_id: int) -> int:
        """Delete every record of *source_id* from *collection*. Returns the count."""
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM vec_records WHERE collection = ? AND source_id = ?",
                (collection.name, source_id),
            ).fetchall()
        ]
        if not rowids:
            return 0
        placeholders = ",".join("?" * len(rowids))
        with self._conn:
            self._conn.execute(
                f"DELETE FROM {collection.table} WHERE rowid IN ({placeholders})", rowids
            )
            self._conn.execute(
                f"DELETE FROM vec_records WHERE rowid IN ({placeholders})", rowids
            )
        return len(rowids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self, collection: Collection) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM vec_records WHERE collection = ?", (collection.name,)
        ).fetchone()[0]

    def search(
        self,
        collection: Collection,
        embedding: list[float],
        k: int = 10,
        tags: Iterable[str] = (),
        tag_match: str = "substring",
    ) -> list[SearchHit]:
        """Return up to *k* nearest records, closest first.

        Args:
            collection: Collection to search.
            embedding: Query vector (same dimensions as the collection).
            k: Maximum number of hits.
            tags: Every tag must match (see module docstring); empty = no filter.
            tag_match: ``"substring"`` or ``"exact"``.
        """
        if tag_match not in TAG_MATCH_MODES:
            raise ValueError(f"tag_match must be one of {TAG_MATCH_MODES}, got '{tag_match}'")
        if len(embedding) != collection.dimensions:
            raise VectorIndexError(
                f"Query has {len(embedding)} dimensions, "
                f"collection '{collection.name}' expects {collection.dimensions}."
            )

        wanted = [t for t in tags if t]
        query_json = json.dumps(embedding)

        if not wanted:
            vec_rows = self._conn.execute(
                f"SELECT rowid, distance FROM {collection.table} "
                "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
                (query_json, k),
            ).fetchall()
            hits: list[SearchHit] = []
            for vec_row in vec_rows:
                rec = self._conn.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM vec_records r WHERE r.rowid = ?",
                    (vec_row["rowid"],),
                ).fetchone()
                if rec is not None:
                    hits.append(_row_to_hit(rec, vec_row["distance"]))
            return hits

        # Filtered: exact distance over the matching records only.
        if tag_match == "exact":
            cond = "instr(',' || r.tags || ',', ',' || ? || ',') > 0"
        else:
            cond = "instr(r.tags, ?) > 0"
        where = " AND ".join([cond] * len(wanted))
        rows = self._conn.execute(
            f"""
            SELECT {_RECORD_COLUMNS}, vec_distance_l2(v.embedding, ?) AS distance
            FROM {collection.table} v
            JOIN vec_records r ON r.rowid = v.rowid
            WHERE {where}
            ORDER BY distance
            LIMIT ?
            """,
            (query_json, *wanted, k),
        ).fetchall()
        return [_row_to_hit(row, row["distance"]) for row in rows]


def _row_to_hit(row: sqlite3.Row, distance: float) -> SearchHit:
    return SearchHit(
        key=row["key"],
        distance=float(distance),
        metadata={
            "source_id": row["source_id"],
            "chunk_id": row["chunk_id"],
            "text": row["text"],
            "url": row["url"],
            "title": row["title"],
            "tags": row["tags"],
        },
    )
