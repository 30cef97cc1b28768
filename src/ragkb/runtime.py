"""Process-wide runtime context.

Owns every long-lived resource: metadata store connections (cached per
resolved path), the vector index (collections cached per name), and the
embedding and completion gateways. Tests build a fresh Runtime per case.
"""

from __future__ import annotations

import asyncio
import sqlite3

from ragkb.config import RagKbConfig, TargetCfg
from ragkb.db.connection import ConnectionRegistry, Database
from ragkb.db.repository import Repository
from ragkb.db.vectors import VectorIndex
from ragkb.errors import ConfigurationError
from ragkb.ingest.embedder import EmbeddingGateway
from ragkb.rag.llm_client import CompletionGateway, ProviderChain, Sleeper, credential_env


class Runtime:
    """Registry of shared resources for one process.

    Args:
        config: Loaded configuration.
        embedder: Override the embedding gateway (tests).
        completion: Override the completion gateway (tests).
        sleep: Awaitable sleep used for backoff and batch delays.
    """

    def __init__(
        self,
        config: RagKbConfig,
        *,
        embedder: EmbeddingGateway | None = None,
        completion: CompletionGateway | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.config = config
        self.registry = ConnectionRegistry()
        self._vector_conn: sqlite3.Connection | None = None
        self._vector_index: VectorIndex | None = None

        emb = config.embedding
        self.embedder = embedder or EmbeddingGateway(
            ProviderChain(emb.models, emb.max_attempts, emb.backoff_base, sleep=sleep),
            batch_size=emb.batch_size,
            cache_size=emb.cache_size,
            batch_delay=emb.batch_delay,
            sleep=sleep,
        )
        gen = config.generation
        self.completion = completion or CompletionGateway(
            ProviderChain(gen.models, gen.max_attempts, gen.backoff_base, sleep=sleep),
            max_tokens=gen.max_tokens,
        )

    def repository(self, target: TargetCfg) -> Repository:
        """Repository over the target's (cached) metadata store connection."""
        return Repository(self.registry.open(target.database))

    @property
    def vector_index(self) -> VectorIndex:
        if self._vector_index is None:
            self._vector_conn = Database(self.config.vector_store.path).connect()
            self._vector_index = VectorIndex(
                self._vector_conn, batch_size=self.config.vector_store.upsert_batch_size
            )
        return self._vector_index

    def require_credentials(self, *, completion: bool = True) -> None:
        """Fail fast when a required capability has no credential configured.

        Raises:
            ConfigurationError: No embedding capability (or, if *completion*,
                no completion capability) is available.
        """
        missing: list[str] = []
        if not self.embedder.chain.available():
            missing.append(_describe("embedding", self.config.embedding.models))
        if completion and not self.completion.chain.available():
            missing.append(_describe("completion", self.config.generation.models))
        if missing:
            raise ConfigurationError("\n".join(missing))

    def close(self) -> None:
        self.registry.close_all()
        if self._vector_conn is not None:
            self._vector_conn.close()
            self._vector_conn = None
            self._vector_index = None


def _describe(kind: str, models: list[str]) -> str:
    envs = sorted({e for e in (credential_env(m) for m in models) if e})
    return (
        f"No {kind} capability available (models: {', '.join(models)}). "
        f"Set one of: {', '.join(envs)}"
    )
