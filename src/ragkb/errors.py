"""Exception hierarchy for ragkb.

    RagKbError
    +-- ConfigurationError    missing credentials, unknown target, bad config file
    +-- IngestionLockedError  another ingestion holds a live lease
    +-- ExtractionError       a source could not be turned into text
    +-- ClassificationError   auto-tagging failed (always caught by the coordinator)
    +-- ProviderError         every capability in a provider chain failed
    +-- EmbeddingError        nothing could be embedded
    +-- DuplicateSourceError  a UNIQUE dedup key was violated on insert
    +-- VectorIndexError      vector collection misuse (e.g. dimension mismatch)
    +-- BackupError           a snapshot archive could not be written
"""

from __future__ import annotations


class RagKbError(Exception):
    """Base class for all ragkb errors."""


class ConfigurationError(RagKbError):
    """Raised at startup when configuration or credentials are unusable."""


class IngestionLockedError(RagKbError):
    """Raised when an ingestion is already running (live, non-stale lease)."""


class ExtractionError(RagKbError):
    """Raised when the extraction collaborator cannot produce content."""


class ClassificationError(RagKbError):
    """Raised when LLM auto-tagging fails."""


class ProviderError(RagKbError):
    """Raised when all capabilities of a provider chain are exhausted."""


class EmbeddingError(RagKbError):
    """Raised when text could not be embedded by any capability."""


class DuplicateSourceError(RagKbError):
    """Raised when a source violates the normalized-URL or content-hash key."""


class VectorIndexError(RagKbError):
    """Raised on invalid vector collection usage."""


class BackupError(RagKbError):
    """Raised when a backup archive cannot be written."""
