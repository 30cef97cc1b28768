"""ragkb database layer: per-target metadata stores and the vector index."""

from ragkb.db.connection import ConnectionRegistry, Database
from ragkb.db.migrations import MIGRATIONS, run_migrations
from ragkb.db.repository import Repository
from ragkb.db.schema import initialize
from ragkb.db.vectors import Collection, SearchHit, VectorIndex, VectorRecord, record_key

__all__ = [
    "Collection",
    "ConnectionRegistry",
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "SearchHit",
    "VectorIndex",
    "VectorRecord",
    "record_key",
]
