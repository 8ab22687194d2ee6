"""
Language-model capability used by the memory store.

Provides chat completions for knowledge extraction and text embeddings
for semantic search.
"""

from .base import (
    EmbeddingProvider,
    LLMAuthenticationError,
    LLMConfig,
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMRateLimitError,
    MessageRole,
)
from .factory import EmbeddingBackend, LLMFactory
from .github_models import GitHubModelsProvider
from .local_provider import HashingEmbedding, SentenceTransformerEmbedding
from .openai_provider import OpenAIProvider

__all__ = [
    "EmbeddingBackend",
    "EmbeddingProvider",
    "GitHubModelsProvider",
    "HashingEmbedding",
    "LLMAuthenticationError",
    "LLMConfig",
    "LLMError",
    "LLMFactory",
    "LLMMessage",
    "LLMProvider",
    "LLMRateLimitError",
    "MessageRole",
    "OpenAIProvider",
    "SentenceTransformerEmbedding",
]
