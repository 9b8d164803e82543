"""LiteLLM client: embeddings, streaming chat, one-shot chat.

All provider calls route through this module. Provider exceptions are
classified into UpstreamRetryable (rate-limit, timeout, connection, 5xx) and
UpstreamFatal (everything else). Retryable failures are retried with
exponential backoff plus jitter via tenacity; fatal ones abort immediately.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator, Sequence
from typing import Any, TypeVar

import litellm
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from mailrag.capabilities import ChatMessage
from mailrag.config import EmbeddingCfg, GenerationCfg, RetryCfg
from mailrag.errors import MailragError, UpstreamFatal, UpstreamRetryable

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}

_RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.InternalServerError,
    litellm.ServiceUnavailableError,
)


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def classify_error(exc: BaseException) -> MailragError:
    """Map a provider exception onto the retryable / fatal split."""
    if isinstance(exc, MailragError):
        return exc
    if isinstance(exc, _RETRYABLE_EXCEPTIONS):
        return UpstreamRetryable(str(exc))
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and (status == 429 or status >= 500):
        return UpstreamRetryable(str(exc))
    return UpstreamFatal(str(exc))


def build_retrying(cfg: RetryCfg) -> Retrying:
    """Retry only UpstreamRetryable, exponential backoff with full jitter."""
    return Retrying(
        retry=retry_if_exception_type(UpstreamRetryable),
        wait=wait_random_exponential(multiplier=cfg.base_delay, max=cfg.max_delay),
        stop=stop_after_attempt(cfg.max_attempts),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


class LiteLLMClient:
    """Embedder + ChatModel backed by litellm.

    Args:
        embedding: Embedding model and sub-batch size.
        generation: Chat model, sampling and token limits.
        retry: Attempt budget and backoff parameters.
    """

    def __init__(
        self,
        embedding: EmbeddingCfg | None = None,
        generation: GenerationCfg | None = None,
        retry: RetryCfg | None = None,
    ) -> None:
        self._embedding = embedding or EmbeddingCfg()
        self._generation = generation or GenerationCfg()
        self._retry = retry or RetryCfg()

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in sequential sub-batches. Any failure aborts the call."""
        if not texts:
            return []
        vectors: list[list[float]] = []
        size = max(1, self._embedding.batch_size)
        for start in range(0, len(texts), size):
            batch = list(texts[start : start + size])
            vectors.extend(self._call(self._embed_batch, batch))
        return vectors

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        response = litellm.embedding(model=self._embedding.model, input=batch)
        data = list(response.data)
        if len(data) != len(batch):
            raise UpstreamFatal(
                f"Embedding provider returned {len(data)} vectors for {len(batch)} inputs."
            )
        return [item["embedding"] for item in data]

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat_stream(self, messages: list[ChatMessage]) -> Iterator[str]:
        """Yield content deltas. Only opening the stream is retried."""
        stream = self._call(
            litellm.completion,
            model=self._generation.model,
            messages=messages,
            temperature=self._generation.temperature,
            max_tokens=self._generation.max_tokens,
            stream=True,
        )
        try:
            for part in stream:
                if not part.choices:
                    continue
                content = part.choices[0].delta.content
                if content:
                    yield content
        except MailragError:
            raise
        except Exception as exc:
            raise classify_error(exc) from exc

    def chat_once(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Single completion on the utility model. Returns the content string."""
        response = self._call(
            litellm.completion,
            model=self._generation.utility_model,
            messages=messages,
            temperature=self._generation.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self._generation.max_tokens,
        )
        return response.choices[0].message.content or ""

    # ------------------------------------------------------------------
    # Retry plumbing
    # ------------------------------------------------------------------

    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        def _attempt() -> T:
            try:
                return fn(*args, **kwargs)
            except MailragError:
                raise
            except Exception as exc:
                raise classify_error(exc) from exc

        return build_retrying(self._retry)(_attempt)
