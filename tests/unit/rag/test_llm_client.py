"""Tests for the LiteLLM wrapper: credentials, ProviderChain, embed/complete."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ragkb.errors import ProviderError
from ragkb.rag.llm_client import (
    Capability,
    CompletionGateway,
    ProviderChain,
    complete,
    credential_env,
    embed,
    provider_of,
    validate_api_key,
)


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ------------------------------------------------------------------
# Credentials
# ------------------------------------------------------------------


def test_validate_api_key_raises_if_missing(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
        validate_api_key("openai/gpt-4o")


def test_validate_api_key_passes_if_set(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    validate_api_key("gemini/gemini-embedding-001")  # should not raise


def test_validate_api_key_ollama_no_key_required():
    validate_api_key("ollama/llama2")


@pytest.mark.parametrize(
    "model, provider, env",
    [
        ("openai/text-embedding-3-small", "openai", "OPENAI_API_KEY"),
        ("text-embedding-3-small", "openai", "OPENAI_API_KEY"),
        ("openrouter/meta-llama/llama-3.3-70b-instruct:free", "openrouter", "OPENROUTER_API_KEY"),
        ("ollama/nomic-embed-text", "ollama", None),
        ("newcorp/model", "newcorp", "NEWCORP_API_KEY"),
    ],
)
def test_provider_and_credential_env(model, provider, env):
    assert provider_of(model) == provider
    assert credential_env(model) == env


def test_capability_available_follows_env(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    cap = Capability("openai/gpt-4o-mini")
    assert not cap.available
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert cap.available


# ------------------------------------------------------------------
# ProviderChain
# ------------------------------------------------------------------


async def test_chain_returns_first_success():
    chain = ProviderChain(["ollama/a", "ollama/b"], sleep=_Sleeps())
    call = AsyncMock(return_value="ok")
    result, capability = await chain.run(call)
    assert result == "ok"
    assert capability.model == "ollama/a"
    assert call.await_count == 1


async def test_chain_retries_with_exponential_backoff():
    sleeps = _Sleeps()
    chain = ProviderChain(["ollama/a", "ollama/b"], max_attempts=3, backoff_base=1.0, sleep=sleeps)
    seen: list[str] = []

    async def call(cap):
        seen.append(cap.model)
        if cap.model == "ollama/a":
            raise RuntimeError("rate limited")
        return "from b"

    result, capability = await chain.run(call)
    assert result == "from b"
    assert capability.model == "ollama/b"
    assert seen == ["ollama/a"] * 3 + ["ollama/b"]
    assert sleeps.delays == [1.0, 2.0]


async def test_chain_all_fail_raises_provider_error():
    chain = ProviderChain(["ollama/a"], max_attempts=2, sleep=_Sleeps())
    with pytest.raises(ProviderError, match="boom"):
        await chain.run(AsyncMock(side_effect=RuntimeError("boom")))


async def test_chain_no_capability_available(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    chain = ProviderChain(["openai/gpt-4o-mini", "gemini/gemini-2.0-flash"], sleep=_Sleeps())
    call = AsyncMock()
    with pytest.raises(ProviderError, match="No capability available"):
        await chain.run(call)
    call.assert_not_awaited()


def test_chain_available_filters(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "g")
    chain = ProviderChain(["openai/x", "gemini/y", "ollama/z"])
    assert [c.model for c in chain.available()] == ["gemini/y", "ollama/z"]


def test_chain_rejects_zero_attempts():
    with pytest.raises(ValueError):
        ProviderChain(["ollama/a"], max_attempts=0)


# ------------------------------------------------------------------
# embed() / complete()
# ------------------------------------------------------------------


async def test_embed_returns_vectors_in_order():
    mock_response = MagicMock()
    mock_response.data = [{"embedding": [0.1, 0.2]}, {"embedding": [0.3, 0.4]}]

    with patch(
        "ragkb.rag.llm_client.litellm.aembedding", AsyncMock(return_value=mock_response)
    ) as mock_e:
        result = await embed("openai/text-embedding-3-small", ["a", "b"])

    assert result == [[0.1, 0.2], [0.3, 0.4]]
    assert mock_e.call_args.kwargs["input"] == ["a", "b"]


async def test_embed_count_mismatch_raises():
    mock_response = MagicMock()
    mock_response.data = [{"embedding": [0.1]}]
    with patch("ragkb.rag.llm_client.litellm.aembedding", AsyncMock(return_value=mock_response)):
        with pytest.raises(ValueError, match="1 vectors for 2 inputs"):
            await embed("openai/text-embedding-3-small", ["a", "b"])


async def test_complete_returns_content():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = "Hello, world!"

    with patch(
        "ragkb.rag.llm_client.litellm.acompletion", AsyncMock(return_value=mock_response)
    ) as mock_c:
        result = await complete("openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}], max_tokens=512)

    assert result == "Hello, world!"
    assert mock_c.call_args.kwargs["max_tokens"] == 512
    assert mock_c.call_args.kwargs["temperature"] == 0.0


async def test_complete_empty_content_raises():
    mock_response = MagicMock()
    mock_response.choices[0].message.content = None
    with patch("ragkb.rag.llm_client.litellm.acompletion", AsyncMock(return_value=mock_response)):
        with pytest.raises(ValueError, match="Empty completion"):
            await complete("openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}])


async def test_completion_gateway_builds_messages():
    chain = ProviderChain(["ollama/llama3"], sleep=_Sleeps())
    gateway = CompletionGateway(chain, max_tokens=100)
    with patch("ragkb.rag.llm_client.complete", AsyncMock(return_value="answer")) as mock_c:
        text = await gateway.generate("question?", system="be brief")

    assert text == "answer"
    model, messages = mock_c.call_args.args
    assert model == "ollama/llama3"
    assert messages == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "question?"},
    ]
    assert mock_c.call_args.kwargs["max_tokens"] == 100


async def test_completion_gateway_falls_back():
    chain = ProviderChain(["ollama/a", "ollama/b"], max_attempts=1, sleep=_Sleeps())
    gateway = CompletionGateway(chain)

    async def fake_complete(model, messages, max_tokens=2048):
        if model == "ollama/a":
            raise RuntimeError("down")
        return f"from {model}"

    with patch("ragkb.rag.llm_client.complete", fake_complete):
        assert await gateway.generate("q") == "from ollama/b"
