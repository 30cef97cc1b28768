"""Ingestion coordinator: one source → N targets under a process-wide lease.

Flow: lease → extract → classify → chunk + embed (once) → per-target write
(dedup, metadata transaction, vector upsert, archive) → lease released.

Per-target statuses:
  stored         metadata, vectors (and usually the archive) written
  duplicate      same normalized URL or content hash already in the target
  skipped        archive root missing on disk
  failed         metadata transaction rolled back
  vector_failed  metadata kept, vector upsert failed
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import structlog

from ragkb.config import TargetCfg
from ragkb.db.models import Chunk, EmbeddedChunk, Source
from ragkb.db.vectors import VectorRecord, flatten_tags, record_key
from ragkb.errors import (
    ClassificationError,
    DuplicateSourceError,
    ExtractionError,
    VectorIndexError,
)
from ragkb.ingest.archive import archive_source
from ragkb.ingest.chunker import SentenceChunker
from ragkb.ingest.classifier import Classifier
from ragkb.ingest.extractor import ExtractedContent, extract_source
from ragkb.ingest.lock import IngestionLease
from ragkb.runtime import Runtime

logger = structlog.get_logger(logger_name=__name__)

SUCCESS_STATUSES = frozenset({"stored", "duplicate"})


@dataclass
class TargetOutcome:
    target: str
    status: str
    source_id: int | None = None
    message: str = ""
    archive_path: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in SUCCESS_STATUSES


@dataclass
class IngestionResult:
    """Outcome of one ingestion run."""

    success: bool
    source: str
    title: str = ""
    source_type: str = ""
    tags: list[str] = field(default_factory=list)
    chunk_count: int = 0
    embedded_count: int = 0
    targets: list[TargetOutcome] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for outcome, raw in zip(self.targets, data["targets"]):
            raw["succeeded"] = outcome.succeeded
        return data


class IngestionCoordinator:
    """Drive one ingestion across the requested targets.

    Args:
        runtime: Shared resources (stores, vector index, gateways).
        extractor: Locator → ExtractedContent (blocking; run in a thread).
        classifier: Auto-tagger. Built on the runtime's completion gateway
            when omitted and ``ingest.classify`` is on.
        lease_factory: Builds the lease guarding the run.
        clock: Returns "now" for archive paths.
    """

    def __init__(
        self,
        runtime: Runtime,
        *,
        extractor: Callable[[str], ExtractedContent] = extract_source,
        classifier: Classifier | None = None,
        lease_factory: Callable[[], IngestionLease] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        cfg = runtime.config
        self._runtime = runtime
        self._extractor = extractor
        if classifier is None and cfg.ingest.classify:
            classifier = Classifier(runtime.completion)
        self._classifier = classifier
        self._lease_factory = lease_factory or (
            lambda: IngestionLease(
                cfg.ingest.lock_file, stale_after=cfg.ingest.lock_stale_minutes * 60
            )
        )
        self._chunker = SentenceChunker(
            cfg.chunker.max_chars, cfg.chunker.overlap_chars, cfg.chunker.min_chars
        )
        self._clock = clock

    async def ingest(
        self,
        source: str,
        tags: list[str] | None = None,
        targets: list[str] | None = None,
    ) -> IngestionResult:
        """Ingest *source* into *targets* (default targets when None).

        Raises:
            ConfigurationError: An unknown target was requested (before the
                lease is taken).
            IngestionLockedError: Another ingestion holds a live lease.
        """
        cfg = self._runtime.config
        target_cfgs = cfg.resolve_targets(targets)
        reference = (
            cfg.target(cfg.ingest.reference_target)
            if cfg.ingest.reference_target
            else target_cfgs[0]
        )
        lease = self._lease_factory()
        lease.acquire()
        try:
            return await self._run(source, set(tags or []), target_cfgs, reference)
        finally:
            lease.release()

    async def _run(
        self,
        source: str,
        manual_tags: set[str],
        target_cfgs: list[TargetCfg],
        reference: TargetCfg,
    ) -> IngestionResult:
        log = logger.bind(source=source)

        try:
            extracted = await asyncio.to_thread(self._extractor, source)
        except ExtractionError as exc:
            log.error("extraction_failed", error=str(exc))
            return IngestionResult(success=False, source=source, error=str(exc))

        result = IngestionResult(
            success=False,
            source=source,
            title=extracted.title,
            source_type=extracted.source_type,
        )

        tags = manual_tags | await self._classify(extracted, reference)
        result.tags = sorted(tags)

        pieces = self._chunker.chunk(extracted.content)
        result.chunk_count = len(pieces)
        chunks = [Chunk(chunk_index=p.index, content=p.text) for p in pieces]
        embedded = await self._runtime.embedder.embed_chunks(chunks)
        result.embedded_count = len(embedded)
        if not embedded:
            result.error = (
                f"No chunks could be embedded ({len(chunks)} produced); nothing was stored."
            )
            log.error("embedding_failed", chunks=len(chunks))
            return result
        log.info("content_embedded", chunks=len(chunks), embedded=len(embedded))

        by_index = {e.chunk.chunk_index: e for e in embedded}
        for target in target_cfgs:
            outcome = self._write_target(target, extracted, tags, chunks, by_index)
            result.targets.append(outcome)

        result.success = any(o.succeeded for o in result.targets)
        if not result.success:
            result.error = "No target stored the source: " + "; ".join(
                f"{o.target}: {o.status} {o.message}".strip() for o in result.targets
            )
        return result

    async def _classify(self, extracted: ExtractedContent, reference: TargetCfg) -> set[str]:
        if self._classifier is None:
            return set()
        try:
            vocabulary = self._runtime.repository(reference).list_all_tags()
            classification = await self._classifier.classify(extracted.content, vocabulary)
        except (ClassificationError, sqlite3.Error) as exc:
            logger.warning("classification_failed", error=str(exc))
            return set()
        return set(classification.tags)

    def _write_target(
        self,
        target: TargetCfg,
        extracted: ExtractedContent,
        tags: set[str],
        chunks: list[Chunk],
        embedded: dict[int, EmbeddedChunk],
    ) -> TargetOutcome:
        log = logger.bind(target=target.name)
        try:
            repo = self._runtime.repository(target)
            existing = repo.find_by_normalized_url(
                extracted.normalized_source
            ) or repo.find_by_content_hash(extracted.content_hash)
        except (sqlite3.Error, OSError) as exc:
            log.error("metadata_open_failed", database=str(target.database), error=str(exc))
            return TargetOutcome(target.name, "failed", message=str(exc))
        if existing is not None:
            log.info("target_duplicate", source_id=existing.id)
            return TargetOutcome(target.name, "duplicate", source_id=existing.id)

        if not target.archive.is_dir():
            log.warning("target_skipped_missing_archive", archive=str(target.archive))
            return TargetOutcome(
                target.name, "skipped", message=f"archive directory {target.archive} missing"
            )

        source = Source(
            url=extracted.source,
            normalized_url=extracted.normalized_source,
            title=extracted.title,
            source_type=extracted.source_type,
            raw_content=extracted.content,
            content_hash=extracted.content_hash,
            tags=sorted(tags),
        )
        rows = [Chunk(chunk_index=c.chunk_index, content=c.content) for c in chunks]
        try:
            source_id, _ = repo.insert_source_with_chunks(source, rows)
        except DuplicateSourceError as exc:
            log.info("target_duplicate", error=str(exc))
            return TargetOutcome(target.name, "duplicate", message=str(exc))
        except sqlite3.Error as exc:
            log.error("metadata_insert_failed", error=str(exc))
            return TargetOutcome(target.name, "failed", message=str(exc))

        flat_tags = flatten_tags(tags)
        records = [
            VectorRecord(
                key=record_key(target.name, source_id, row.id),
                embedding=embedded[row.chunk_index].embedding,
                source_id=source_id,
                chunk_id=row.id,
                text=row.content,
                url=extracted.source,
                title=extracted.title,
                tags=flat_tags,
            )
            for row in rows
            if row.chunk_index in embedded
        ]
        try:
            index = self._runtime.vector_index
            collection = index.ensure_collection(target.collection, len(records[0].embedding))
            index.upsert(collection, records)
        except (VectorIndexError, sqlite3.Error) as exc:
            log.error("vector_upsert_failed", source_id=source_id, error=str(exc))
            return TargetOutcome(
                target.name, "vector_failed", source_id=source_id, message=str(exc)
            )

        outcome = TargetOutcome(target.name, "stored", source_id=source_id)
        try:
            path = archive_source(
                target.archive,
                extracted.source_type,
                source_id,
                extracted.title,
                extracted.file_extension,
                extracted.original_content,
                local_path=extracted.source,
                now=self._clock(),
            )
        except OSError as exc:
            log.error("archive_failed", source_id=source_id, error=str(exc))
        else:
            outcome.archive_path = str(path)
        log.info("target_stored", source_id=source_id, vectors=len(records))
        return outcome
