"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from ragkb.config import IngestCfg, RagKbConfig, TargetCfg, VectorStoreCfg
from ragkb.db.connection import Database
from ragkb.db.models import EmbeddedChunk
from ragkb.db.schema import initialize
from ragkb.errors import EmbeddingError, ProviderError
from ragkb.log import configure_logging
from ragkb.rag.llm_client import ProviderChain
from ragkb.runtime import Runtime


def fake_vector(text: str, dims: int = 4) -> list[float]:
    """Deterministic small vector derived from *text*."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [digest[i] / 255.0 for i in range(dims)]


class FakeEmbedder:
    """Stand-in for EmbeddingGateway: deterministic vectors, no network."""

    def __init__(self, dims: int = 4) -> None:
        self.dims = dims
        self.chain = ProviderChain(["ollama/fake-embed"])
        self.fail = False
        self.queries: list[str] = []
        self.chunk_calls = 0

    async def embed_chunks(self, chunks):
        self.chunk_calls += 1
        if self.fail:
            return []
        return [
            EmbeddedChunk(chunk=c, embedding=fake_vector(c.content, self.dims), model="fake/model")
            for c in chunks
        ]

    async def embed_query(self, text: str) -> list[float]:
        self.queries.append(text)
        if self.fail:
            raise EmbeddingError("Could not embed query: all capabilities failed")
        return fake_vector(text, self.dims)


class FakeCompletion:
    """Stand-in for CompletionGateway: canned text, records prompts."""

    def __init__(self, text: str = "The answer [Source 1].") -> None:
        self.text = text
        self.chain = ProviderChain(["ollama/fake-chat"])
        self.fail = False
        self.prompts: list[tuple[str, str | None]] = []

    async def generate(self, prompt: str, system: str | None = None) -> str:
        self.prompts.append((prompt, system))
        if self.fail:
            raise ProviderError("All capabilities failed (fake/model): boom")
        return self.text


@pytest.fixture(autouse=True)
def _rebind_logging():
    """Point log output at the current stderr; CliRunner swaps streams per invoke."""
    configure_logging("WARNING")


@pytest.fixture
def tmp_db(tmp_path):
    """File-based metadata DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "knowledge_base.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def vec_conn(tmp_path):
    """Connection to an empty vector-index database with sqlite-vec loaded."""
    conn = Database(tmp_path / "vectors.db").connect()
    yield conn
    conn.close()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_completion() -> FakeCompletion:
    return FakeCompletion()


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory: RagKbConfig with targets under tmp_path (archive dirs created)."""

    def _make(
        targets: tuple[str, ...] = ("t1",),
        missing_archive: tuple[str, ...] = (),
        classify: bool = False,
    ) -> RagKbConfig:
        cfg = RagKbConfig()
        cfg.targets = {}
        for name in targets:
            archive = tmp_path / name / "storage"
            if name not in missing_archive:
                archive.mkdir(parents=True, exist_ok=True)
            cfg.targets[name] = TargetCfg(
                name=name, database=tmp_path / name / "knowledge_base.db", archive=archive
            )
        cfg.default_target = targets[0]
        cfg.vector_store = VectorStoreCfg(path=tmp_path / "vectors.db")
        cfg.ingest = IngestCfg(lock_file=tmp_path / "ingest.lock", classify=classify)
        return cfg

    return _make


@pytest.fixture
def make_runtime(fake_embedder, fake_completion):
    """Factory: Runtime over a config with fake gateways; closed after the test."""
    created: list[Runtime] = []

    def _make(cfg: RagKbConfig, embedder=None, completion=None) -> Runtime:
        runtime = Runtime(
            cfg,
            embedder=embedder or fake_embedder,
            completion=completion or fake_completion,
        )
        created.append(runtime)
        return runtime

    yield _make
    for runtime in created:
        runtime.close()
