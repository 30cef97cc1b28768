"""ragkb ingest pipeline: extraction, chunking, embedding, lease and archive.

The coordinator lives in ragkb.ingest.coordinator and is not re-exported here
(it depends on ragkb.runtime, which imports this package).
"""

from ragkb.ingest.chunker import SentenceChunker, TextChunk, chunk_text
from ragkb.ingest.embedder import EmbeddingGateway
from ragkb.ingest.extractor import ExtractedContent, extract_source
from ragkb.ingest.lock import IngestionLease

__all__ = [
    "EmbeddingGateway",
    "ExtractedContent",
    "IngestionLease",
    "SentenceChunker",
    "TextChunk",
    "chunk_text",
    "extract_source",
]
