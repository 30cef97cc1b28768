"""Domain models for the ragkb database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

SOURCE_TYPES: frozenset[str] = frozenset(
    ["article", "video", "pdf", "text", "tweet", "reel", "other"]
)

# Source types whose original is a local file that can be copied to the archive.
FILE_BACKED_TYPES: frozenset[str] = frozenset(["pdf", "text"])


@dataclass
class Source:
    url: str
    normalized_url: str
    title: str
    source_type: str
    raw_content: str
    content_hash: str
    tags: list[str] = field(default_factory=list)
    id: int | None = None  # set after insert; None for unsaved sources
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def tags_json(self) -> str:
        return json.dumps(sorted(set(self.tags)))


@dataclass
class Chunk:
    chunk_index: int
    content: str
    source_id: int | None = None
    id: int | None = None  # set after insert
    created_at: str | None = None


@dataclass
class EmbeddedChunk:
    """A chunk plus its vector. Transient: vectors live only in the vector index."""

    chunk: Chunk
    embedding: list[float]
    model: str

    @property
    def dimensions(self) -> int:
        return len(self.embedding)
