"""
Base LLM Provider - Abstract base classes and data structures for the
language-model capability consumed by the memory store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class MessageRole(str, Enum):
    """Role of the message sender."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class LLMMessage:
    """Represents a message in an LLM conversation."""
    role: MessageRole
    content: str

    def to_dict(self) -> dict:
        """Convert to dictionary format."""
        return {
            "role": self.role.value,
            "content": self.content,
        }


@dataclass
class LLMConfig:
    """Configuration for an LLM provider."""
    provider: str  # "github-models", "openai"
    model: str = ""
    embedding_model: str = ""
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: float = 60.0

    # Retry configuration
    max_retries: int = 3
    retry_delay: float = 1.0

    # Additional provider-specific options
    extra_options: dict = field(default_factory=dict)

    def __post_init__(self):
        """Set default models based on provider if not specified."""
        if not self.model:
            default_models = {
                "github-models": "openai/gpt-4o-mini",
                "openai": "gpt-4o-mini",
            }
            self.model = default_models.get(self.provider, "gpt-4o-mini")
        if not self.embedding_model:
            default_embedding_models = {
                "github-models": "openai/text-embedding-3-small",
                "openai": "text-embedding-3-small",
            }
            self.embedding_model = default_embedding_models.get(
                self.provider, "text-embedding-3-small"
            )


class LLMError(Exception):
    """Base exception for LLM-related errors."""
    pass


class LLMRateLimitError(LLMError):
    """Raised when rate limit is exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """Raised when authentication fails or no credential is configured."""
    pass


class EmbeddingProvider(ABC):
    """Abstract base class for anything that turns text into vectors."""

    # Identifier reported by the memory facade
    name: str = "none"

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
        """
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            Embedding vectors in the same order as the input
        """
        pass


class LLMProvider(EmbeddingProvider):
    """Abstract base class for LLM providers with chat and embeddings."""

    def __init__(self, config: LLMConfig):
        """
        Initialize the LLM provider.

        Args:
            config: Configuration for the provider.
        """
        self.config = config

    @abstractmethod
    async def chat(
        self,
        messages: List[LLMMessage],
        **kwargs,
    ) -> str:
        """
        Generate a completion for the given messages.

        Args:
            messages: List of messages in the conversation.
            **kwargs: Additional provider-specific options.

        Returns:
            The generated text.
        """
        pass
