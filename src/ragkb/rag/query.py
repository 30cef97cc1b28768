"""Query engine: question → cited answer from one target's vector collection."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from ragkb.db.vectors import SearchHit
from ragkb.errors import EmbeddingError, ProviderError, VectorIndexError
from ragkb.runtime import Runtime

logger = structlog.get_logger(logger_name=__name__)

NO_CONTEXT_ANSWER = "Could not find any relevant context for the question in the knowledge base."

_SYSTEM_PROMPT = (
    "You answer questions about a personal knowledge base. Use ONLY the provided "
    "context. Cite the sources you drew from as [Source N]. If the context does "
    "not contain enough information to answer, say so explicitly."
)

_PROMPT_TEMPLATE = """\
Answer the following question using ONLY the provided context.
Cite which sources you drew from using the format [Source N].
If the context is insufficient, say that it is insufficient.

Question: {question}

Context:
{context}
"""


@dataclass
class CitedSource:
    url: str
    title: str
    text: str
    distance: float


@dataclass
class QueryResult:
    success: bool
    question: str
    target: str
    answer: str = ""
    sources: list[CitedSource] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def best_hit_per_source(hits: list[SearchHit]) -> list[SearchHit]:
    """Keep the lowest-distance hit per source URL, sorted ascending by distance.

    Hits without a URL are dropped.
    """
    best: dict[str, SearchHit] = {}
    for hit in hits:
        url = hit.url
        if not url:
            continue
        if url not in best or hit.distance < best[url].distance:
            best[url] = hit
    return sorted(best.values(), key=lambda h: h.distance)


def build_context(hits: list[SearchHit]) -> str:
    """Numbered context block: ``Source N`` with URL, title and chunk text."""
    blocks = []
    for i, hit in enumerate(hits, start=1):
        meta = hit.metadata
        blocks.append(
            f"Source {i} (URL: {meta.get('url', '')})\n"
            f"Title: {meta.get('title', '')}\n"
            f"{meta.get('text', '')}"
        )
    return "\n\n---\n\n".join(blocks)


class QueryEngine:
    """Answer questions against one target at a time."""

    def __init__(self, runtime: Runtime) -> None:
        self._runtime = runtime

    async def answer(
        self,
        question: str,
        tags: list[str] | None = None,
        target: str | None = None,
    ) -> QueryResult:
        """Embed, search, dedup by source, and generate a cited answer.

        Raises:
            ConfigurationError: *target* is not configured.
        """
        cfg = self._runtime.config
        target_cfg = cfg.target(target or cfg.default_target)
        result = QueryResult(success=False, question=question, target=target_cfg.name)
        log = logger.bind(target=target_cfg.name)

        try:
            vector = await self._runtime.embedder.embed_query(question)
        except EmbeddingError as exc:
            log.error("query_embedding_failed", error=str(exc))
            result.error = str(exc)
            return result

        index = self._runtime.vector_index
        collection = index.get_collection(target_cfg.collection)
        hits: list[SearchHit] = []
        if collection is not None:
            try:
                hits = index.search(
                    collection,
                    vector,
                    k=cfg.retrieval.top_k,
                    tags=tags or [],
                    tag_match=cfg.retrieval.tag_match,
                )
            except VectorIndexError as exc:
                log.error("query_search_failed", error=str(exc))
                result.error = str(exc)
                return result
        kept = best_hit_per_source(hits)
        log.info("query_search", hits=len(hits), sources=len(kept), tags=tags or [])

        if not kept:
            result.success = True
            result.answer = NO_CONTEXT_ANSWER
            return result

        prompt = _PROMPT_TEMPLATE.format(question=question, context=build_context(kept))
        try:
            result.answer = await self._runtime.completion.generate(
                prompt, system=_SYSTEM_PROMPT
            )
        except ProviderError as exc:
            log.error("query_completion_failed", error=str(exc))
            result.error = str(exc)
            return result

        result.sources = [
            CitedSource(
                url=h.url,
                title=str(h.metadata.get("title", "")),
                text=str(h.metadata.get("text", "")),
                distance=h.distance,
            )
            for h in kept
        ]
        result.success = True
        return result
