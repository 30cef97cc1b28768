"""Tests for the process-wide Runtime."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from ragkb.config import RagKbConfig
from ragkb.errors import ConfigurationError
from ragkb.ingest.embedder import EmbeddingGateway
from ragkb.rag.llm_client import CompletionGateway
from ragkb.runtime import Runtime


@pytest.fixture
def no_keys(monkeypatch):
    for var in ("OPENAI_API_KEY", "GEMINI_API_KEY", "OPENROUTER_API_KEY"):
        monkeypatch.delenv(var, raising=False)


def test_builds_gateways_from_config(make_config):
    cfg = make_config()
    cfg.embedding.models = ["ollama/nomic-embed-text"]
    runtime = Runtime(cfg)
    try:
        assert isinstance(runtime.embedder, EmbeddingGateway)
        assert isinstance(runtime.completion, CompletionGateway)
        assert [c.model for c in runtime.embedder.chain.capabilities] == ["ollama/nomic-embed-text"]
    finally:
        runtime.close()


def test_repository_connections_cached(make_config):
    cfg = make_config(("t1",))
    runtime = Runtime(cfg)
    try:
        a = runtime.repository(cfg.target("t1"))
        b = runtime.repository(cfg.target("t1"))
        assert a._conn is b._conn
        assert cfg.target("t1").database in runtime.registry
    finally:
        runtime.close()


def test_vector_index_lazy_and_shared(make_config):
    cfg = make_config()
    runtime = Runtime(cfg)
    try:
        assert not cfg.vector_store.path.exists()
        assert runtime.vector_index is runtime.vector_index
        assert cfg.vector_store.path.exists()
    finally:
        runtime.close()


def test_require_credentials_missing_all(make_config, no_keys):
    runtime = Runtime(make_config())
    with pytest.raises(ConfigurationError) as excinfo:
        runtime.require_credentials()
    message = str(excinfo.value)
    assert "No embedding capability" in message
    assert "No completion capability" in message
    assert "GEMINI_API_KEY" in message
    runtime.close()


def test_require_credentials_embedding_only(make_config, no_keys, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g")
    cfg = make_config()
    cfg.generation.models = ["openai/gpt-4o-mini"]
    runtime = Runtime(cfg)
    runtime.require_credentials(completion=False)
    with pytest.raises(ConfigurationError, match="No completion capability"):
        runtime.require_credentials()
    runtime.close()


def test_close_is_repeatable(make_config):
    runtime = Runtime(make_config())
    runtime.vector_index
    runtime.close()
    runtime.close()


def test_default_retry_policy_matches_for_both_capabilities():
    cfg = RagKbConfig()
    assert cfg.generation.max_attempts == cfg.embedding.max_attempts == 3
    assert cfg.generation.backoff_base == 1.0


async def test_default_completion_chain_retries_then_succeeds(make_config):
    cfg = make_config()
    cfg.generation.models = ["ollama/llama3"]
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    runtime = Runtime(cfg, sleep=sleep)
    flaky = AsyncMock(side_effect=[RuntimeError("503"), RuntimeError("503"), "answer"])
    try:
        with patch("ragkb.rag.llm_client.complete", flaky):
            assert await runtime.completion.generate("q") == "answer"
    finally:
        runtime.close()

    assert flaky.await_count == 3
    assert delays == [1.0, 2.0]
