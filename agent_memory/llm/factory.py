"""
LLM Factory - Factory for creating chat and embedding providers.
"""

from enum import Enum
from typing import Dict, List, Optional

from .base import EmbeddingProvider, LLMConfig, LLMError, LLMProvider
from .github_models import GitHubModelsProvider
from .local_provider import HashingEmbedding, SentenceTransformerEmbedding
from .openai_provider import OpenAIProvider


class EmbeddingBackend(str, Enum):
    """Statically known embedding providers."""

    GITHUB_MODELS = "github-models"
    OPENAI = "openai"
    SENTENCE_TRANSFORMERS = "sentence-transformers"
    HASHING = "hashing"
    NONE = "none"


class LLMFactory:
    """Factory for creating LLM and embedding providers."""

    # Mapping of provider names to classes
    _providers: Dict[str, type] = {
        "github-models": GitHubModelsProvider,
        "openai": OpenAIProvider,
    }

    @classmethod
    def create(
        cls,
        provider: str = "github-models",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        **kwargs,
    ) -> LLMProvider:
        """
        Create an LLM provider instance.

        Args:
            provider: Provider name ("github-models", "openai").
            model: Chat model name (optional, uses provider default if not specified).
            api_key: API key (optional, uses environment variable if not specified).
            **kwargs: Additional LLMConfig options.

        Returns:
            Configured LLM provider instance.

        Raises:
            LLMError: If provider is not supported or has no credential.
        """
        provider_name = provider.lower()

        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise LLMError(
                f"Unknown LLM provider: {provider}. "
                f"Available providers: {available}"
            )

        config = LLMConfig(
            provider=provider_name,
            model=model or "",
            api_key=api_key,
            **kwargs,
        )

        provider_class = cls._providers[provider_name]
        return provider_class(config)

    @classmethod
    def create_embedder(
        cls,
        backend: EmbeddingBackend,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> Optional[EmbeddingProvider]:
        """
        Create an embedding provider.

        Args:
            backend: Which provider to build.
            model: Embedding model name (provider default if not specified).
            api_key: Credential for hosted providers.

        Returns:
            The provider, or None for ``EmbeddingBackend.NONE``.

        Raises:
            LLMError: If a hosted provider has no credential.
        """
        backend = EmbeddingBackend(backend)

        if backend == EmbeddingBackend.NONE:
            return None
        if backend == EmbeddingBackend.HASHING:
            return HashingEmbedding()
        if backend == EmbeddingBackend.SENTENCE_TRANSFORMERS:
            return SentenceTransformerEmbedding(model)

        config = LLMConfig(
            provider=backend.value,
            embedding_model=model or "",
            api_key=api_key,
        )
        return cls._providers[backend.value](config)

    @classmethod
    def list_providers(cls) -> List[str]:
        """
        List available LLM providers.

        Returns:
            List of provider names.
        """
        return list(cls._providers.keys())
