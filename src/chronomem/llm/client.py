"""Ollama client wrapper for embedding and completion calls.

This module provides an async wrapper around the Ollama API that reports
token usage alongside every result, so callers can settle credit
reservations against what the provider actually consumed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import ollama
from pydantic import BaseModel, Field

from chronomem.core.config import DEFAULT_OLLAMA_URL, DEFAULT_REQUEST_TIMEOUT
from chronomem.core.exceptions import (
    EmbeddingError,
    LLMConnectionError,
    LLMResponseError,
    LLMTimeoutError,
    ModelNotFoundError,
)
from chronomem.core.types import TokenUsage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EmbeddingResult(BaseModel):
    """An embedding vector and the usage the provider reported for it."""

    embedding: list[float]
    usage: TokenUsage = Field(default_factory=TokenUsage)


class CompletionResult(BaseModel):
    """A completion and the usage the provider reported for it."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


def _usage_from_response(response: Any) -> TokenUsage:
    prompt_tokens = response.get("prompt_eval_count")
    completion_tokens = response.get("eval_count")
    total = None
    if prompt_tokens is not None or completion_tokens is not None:
        total = (prompt_tokens or 0) + (completion_tokens or 0)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total,
    )


class OllamaClient:
    """Async client for Ollama embedding and chat operations.

    Every request is bounded by ``default_timeout``. Connection failures are
    retried with exponential backoff; timeouts and model errors are not.

    Args:
        base_url: Ollama server URL (default: http://localhost:11434)
        default_timeout: Timeout in seconds for each request attempt (default: 60)
        max_retries: Maximum number of attempts for connection failures (default: 3)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        default_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = 3,
    ):
        self.base_url = base_url
        self.default_timeout = default_timeout
        self.max_retries = max_retries
        self._client = ollama.AsyncClient(host=base_url)
        self._keyed_clients: dict[str, ollama.AsyncClient] = {}

    def _client_for(self, api_key: str | None) -> ollama.AsyncClient:
        """Return the client to use for a credential; None means the default client."""
        if not api_key:
            return self._client
        client = self._keyed_clients.get(api_key)
        if client is None:
            client = ollama.AsyncClient(
                host=self.base_url,
                headers={"Authorization": f"Bearer {api_key}"},
            )
            self._keyed_clients[api_key] = client
        return client

    async def _retry_with_backoff(
        self,
        func: Callable[[], Awaitable[T]],
        model: str = "unknown",
    ) -> T:
        """Execute a request with a per-attempt timeout and exponential backoff.

        Args:
            func: Zero-argument coroutine function performing the request
            model: Model name for error messages

        Returns:
            Result from the function

        Raises:
            LLMConnectionError: If all retries fail due to connection issues
            LLMTimeoutError: If an attempt times out
            ModelNotFoundError: If the model is not found
            LLMResponseError: For any other provider error
        """
        last_exception: BaseException | None = None

        for attempt in range(self.max_retries):
            try:
                async with asyncio.timeout(self.default_timeout):
                    return await func()
            except TimeoutError as e:
                raise LLMTimeoutError(
                    f"Request to {model} timed out after {self.default_timeout}s"
                ) from e
            except ollama.ResponseError as e:
                if e.status_code == 404 or "not found" in str(e).lower():
                    raise ModelNotFoundError(model) from e
                raise LLMResponseError(f"Ollama returned an error for {model}: {e}") from e
            except (ConnectionError, OSError) as e:
                last_exception = e
                logger.warning(
                    f"Connection to Ollama failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    # Exponential backoff: 1s, 2s, 4s
                    await asyncio.sleep(2**attempt)
            except (LLMResponseError, EmbeddingError):
                raise
            except Exception as e:
                raise LLMResponseError(f"Unexpected error: {e}") from e

        raise LLMConnectionError(
            f"Failed to connect to Ollama at {self.base_url} after {self.max_retries} attempts"
        ) from last_exception

    async def embed_with_usage(
        self,
        model: str,
        text: str,
        api_key: str | None = None,
    ) -> EmbeddingResult:
        """Generate an embedding vector and report its token usage.

        Args:
            model: Embedding model name (e.g., "nomic-embed-text")
            text: Text to embed
            api_key: Workspace credential; None uses the platform client

        Returns:
            The embedding and usage (``prompt_tokens`` is None when the
            provider did not report it)

        Raises:
            EmbeddingError: If the provider returned no vector
            ModelNotFoundError: If the model is not available
            LLMConnectionError: If connection to Ollama fails
            LLMTimeoutError: If request times out
        """
        client = self._client_for(api_key)

        async def _embed() -> EmbeddingResult:
            response = await client.embed(model=model, input=text)
            embeddings = response.get("embeddings") or []
            if len(embeddings) == 0 or len(embeddings[0]) == 0:
                raise EmbeddingError(f"Model {model} returned an empty embedding")
            return EmbeddingResult(
                embedding=[float(x) for x in embeddings[0]],
                usage=_usage_from_response(response),
            )

        result = await self._retry_with_backoff(_embed, model=model)
        logger.debug(f"Embedded {len(text)} chars with {model}")
        return result

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        system: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> CompletionResult:
        """Chat completion with an optional system prompt.

        Args:
            model: Model name
            messages: List of message dicts with 'role' and 'content' keys
            system: Optional system message prepended to the conversation
            api_key: Workspace credential; None uses the platform client
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens to generate

        Returns:
            Assistant's response text and the reported usage

        Raises:
            ModelNotFoundError: If the model is not available
            LLMConnectionError: If connection to Ollama fails
            LLMTimeoutError: If request times out
        """
        client = self._client_for(api_key)
        full_messages = list(messages)
        if system:
            full_messages.insert(0, {"role": "system", "content": system})
        options = {
            "temperature": temperature,
            "num_predict": max_tokens,
        }

        async def _chat() -> CompletionResult:
            response = await client.chat(
                model=model,
                messages=full_messages,
                options=options,
            )
            message = response.get("message") or {}
            return CompletionResult(
                text=message.get("content") or "",
                model=model,
                usage=_usage_from_response(response),
            )

        return await self._retry_with_backoff(_chat, model=model)
