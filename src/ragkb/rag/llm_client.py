"""LiteLLM capability chain with retry, backoff, and credential checks.

Every embedding and completion call routes through a ``ProviderChain``: an
ordered list of capabilities (LiteLLM model strings). Each available capability
is attempted up to ``max_attempts`` times with exponential backoff before the
chain advances to the next one. Capabilities whose credential is not set are
skipped without being attempted.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import litellm
import structlog

from ragkb.errors import ProviderError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

Sleeper = Callable[[float], Awaitable[None]]


# ------------------------------------------------------------------
# Provider → env var mapping for credential checks
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a LiteLLM model string ('openai' if none)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def credential_env(model: str) -> str | None:
    """Return the env var holding the key for *model*, or None if keyless."""
    provider = provider_of(model)
    if provider in _PROVIDER_ENV:
        return _PROVIDER_ENV[provider]
    return f"{provider.upper()}_API_KEY"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    env_var = credential_env(model)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider_of(model)}'. "
            f"Set the {env_var} environment variable."
        )


@dataclass(frozen=True)
class Capability:
    """One backend able to embed or complete, identified by its LiteLLM model."""

    model: str

    @property
    def available(self) -> bool:
        env_var = credential_env(self.model)
        return env_var is None or bool(os.getenv(env_var))


# ------------------------------------------------------------------
# Retry-then-advance chain
# ------------------------------------------------------------------


class ProviderChain:
    """Ordered capabilities behind one call interface.

    Args:
        models: LiteLLM model strings in priority order.
        max_attempts: Attempts per capability before advancing.
        backoff_base: First backoff delay in seconds; doubles per retry.
        sleep: Awaitable sleep function (injectable for tests).
    """

    def __init__(
        self,
        models: list[str],
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.capabilities = [Capability(m) for m in models]
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

    def available(self) -> list[Capability]:
        """Capabilities whose credential is configured, in priority order."""
        return [c for c in self.capabilities if c.available]

    async def run(self, call: Callable[[Capability], Awaitable[_T]]) -> tuple[_T, Capability]:
        """Invoke *call* on each available capability until one succeeds.

        Returns:
            ``(result, capability)`` from the first successful attempt.

        Raises:
            ProviderError: If no capability is available or all of them failed.
        """
        available = self.available()
        if not available:
            raise ProviderError(
                "No capability available. Set an API key for one of: "
                + ", ".join(c.model for c in self.capabilities)
            )

        last_exc: Exception | None = None
        for capability in available:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await call(capability), capability
                except Exception as exc:
                    last_exc = exc
                    logger.warning(
                        "capability_call_failed",
                        model=capability.model,
                        attempt=attempt,
                        max_attempts=self.max_attempts,
                        error=str(exc),
                    )
                    if attempt < self.max_attempts:
                        await self._sleep(self.backoff_base * 2 ** (attempt - 1))
            logger.warning("capability_exhausted", model=capability.model)

        raise ProviderError(
            f"All capabilities failed ({', '.join(c.model for c in available)}): {last_exc}"
        )


# ------------------------------------------------------------------
# LiteLLM calls
# ------------------------------------------------------------------


async def embed(model: str, texts: list[str]) -> list[list[float]]:
    """Call litellm.aembedding() once. Returns one vector per input text.

    Raises:
        ValueError: If the backend returned a different number of vectors.
    """
    response = await litellm.aembedding(model=model, input=texts)
    vectors = [item["embedding"] for item in response.data]
    if len(vectors) != len(texts):
        raise ValueError(
            f"Embedding backend returned {len(vectors)} vectors for {len(texts)} inputs"
        )
    return vectors


async def complete(
    model: str,
    messages: list[dict[str, Any]],
    max_tokens: int = 2048,
    temperature: float = 0.0,
) -> str:
    """Call litellm.acompletion() once. Returns the content string.

    Raises:
        ValueError: If the backend returned no content.
    """
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
    )
    content = response.choices[0].message.content
    if not content:
        raise ValueError(f"Empty completion from '{model}'")
    return content


class CompletionGateway:
    """Completion capability: prompt in, text out, via a ProviderChain."""

    def __init__(self, chain: ProviderChain, max_tokens: int = 2048) -> None:
        self._chain = chain
        self._max_tokens = max_tokens

    @property
    def chain(self) -> ProviderChain:
        return self._chain

    async def generate(self, prompt: str, system: str | None = None) -> str:
        """Return the completion for *prompt* from the first working capability.

        Raises:
            ProviderError: If every capability failed.
        """
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        text, capability = await self._chain.run(
            lambda c: complete(c.model, messages, max_tokens=self._max_tokens)
        )
        logger.debug("completion_generated", model=capability.model, chars=len(text))
        return text
