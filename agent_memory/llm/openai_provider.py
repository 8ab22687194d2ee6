"""
OpenAI Provider - Chat completions and embeddings via the OpenAI API.
"""

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import openai

from .base import (
    LLMAuthenticationError,
    LLMConfig,
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMRateLimitError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation."""

    name = "openai"

    DEFAULT_API_BASE = "https://api.openai.com/v1"
    API_KEY_ENV = "OPENAI_API_KEY"

    def __init__(self, config: LLMConfig, client: Optional[Any] = None):
        """
        Initialize the OpenAI provider.

        Args:
            config: Configuration for the provider.
            client: Pre-built AsyncOpenAI-compatible client.

        Raises:
            LLMAuthenticationError: If no API key is configured.
        """
        super().__init__(config)

        # Get API key from config or environment
        self.api_key = config.api_key or os.environ.get(self.API_KEY_ENV)
        if not self.api_key and client is None:
            raise LLMAuthenticationError(
                f"No API key for {self.name}. Set {self.API_KEY_ENV} environment variable."
            )

        self.api_base = config.api_base or self.DEFAULT_API_BASE
        self._client = client or openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.api_base,
            timeout=config.timeout,
            max_retries=0,
            default_headers=self._default_headers(),
        )

    def _default_headers(self) -> Optional[Dict[str, str]]:
        """Extra headers sent with every request."""
        return None

    async def chat(
        self,
        messages: List[LLMMessage],
        **kwargs,
    ) -> str:
        """
        Generate a completion.

        Args:
            messages: List of messages in the conversation.
            **kwargs: Overrides for model, temperature and max_tokens.

        Returns:
            The content of the first choice, or an empty string.
        """
        request_params = {
            "model": kwargs.get("model", self.config.model),
            "messages": [msg.to_dict() for msg in messages],
            "temperature": kwargs.get("temperature", self.config.temperature),
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
        }

        # Add extra options
        for key, value in self.config.extra_options.items():
            if key not in request_params:
                request_params[key] = value

        response = await self._with_retries(
            lambda: self._client.chat.completions.create(**request_params)
        )

        choice = response.choices[0] if response.choices else None
        if choice is None or choice.message is None:
            return ""
        return choice.message.content or ""

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding for one text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts in one request."""
        if not texts:
            return []

        response = await self._with_retries(
            lambda: self._client.embeddings.create(
                model=self.config.embedding_model,
                input=list(texts),
            )
        )

        # Sort by index to keep input order
        data = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in data]

    async def _with_retries(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an API call with exponential backoff on transient errors."""
        last_error = None
        attempts = max(1, self.config.max_retries)

        for attempt in range(attempts):
            try:
                return await operation()
            except openai.OpenAIError as e:
                last_error = self._handle_error(e)
                if isinstance(last_error, LLMAuthenticationError) or attempt == attempts - 1:
                    raise last_error from e

                wait_time = self.config.retry_delay * (2 ** attempt)
                if isinstance(last_error, LLMRateLimitError) and last_error.retry_after:
                    wait_time = last_error.retry_after
                    logger.warning(f"Rate limited. Waiting {wait_time}s before retry...")
                else:
                    logger.warning(f"{self.name} request failed ({last_error}), retrying in {wait_time}s")
                await asyncio.sleep(wait_time)

        raise last_error or LLMError("Max retries exceeded")

    def _handle_error(self, error: Exception) -> LLMError:
        """Convert OpenAI errors to LLM errors."""
        error_message = str(error)

        if isinstance(error, openai.RateLimitError):
            retry_after = None
            retry_after_str = error.response.headers.get("Retry-After")
            if retry_after_str:
                try:
                    retry_after = float(retry_after_str)
                except ValueError:
                    pass
            return LLMRateLimitError(error_message, retry_after)

        if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return LLMAuthenticationError(error_message)

        return LLMError(error_message)
