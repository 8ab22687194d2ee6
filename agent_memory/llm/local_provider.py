"""
Local embedding providers.

Embeddings computed in-process, without network calls or credentials.
"""

import asyncio
import hashlib
import logging
import re
from typing import List, Optional

import numpy as np

from .base import EmbeddingProvider

logger = logging.getLogger(__name__)


class HashingEmbedding(EmbeddingProvider):
    """
    Feature-hashing embedding provider.

    Lightweight and deterministic: each word is hashed to a bucket with a
    hashed sign, weighted by term frequency and L2 normalized. Captures
    word overlap only, not meaning. Useful offline and in tests.
    """

    name = "hashing"

    DIMENSION = 128

    _WORD_RE = re.compile(r"[a-z0-9]+")

    def __init__(self, dimension: int = DIMENSION):
        """
        Initialize the embedding provider.

        Args:
            dimension: Embedding vector dimension
        """
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        """Get the embedding dimension."""
        return self._dimension

    def embed_sync(self, text: str) -> List[float]:
        """Generate an embedding without suspending."""
        vector = np.zeros(self._dimension)
        words = self._tokenize(text)
        if not words:
            return vector.tolist()

        for word in words:
            digest = hashlib.md5(word.encode()).digest()
            index = int.from_bytes(digest[:8], "big") % self._dimension
            sign = 1.0 if digest[8] % 2 == 0 else -1.0
            vector[index] += sign / len(words)

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    async def embed(self, text: str) -> List[float]:
        return self.embed_sync(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed_sync(text) for text in texts]

    def _tokenize(self, text: str) -> List[str]:
        """Lowercase alphanumeric words longer than two characters."""
        return [w for w in self._WORD_RE.findall((text or "").lower()) if len(w) > 2]


class SentenceTransformerEmbedding(EmbeddingProvider):
    """
    Sentence-transformers based embedding provider.

    Provides semantic embeddings from a pre-trained transformer model.
    Requires the ``local`` extra (sentence-transformers). Encoding runs in
    a worker thread so the event loop is not blocked.
    """

    name = "sentence-transformers"

    # Default model for efficiency
    DEFAULT_MODEL = "all-MiniLM-L6-v2"

    def __init__(self, model_name: Optional[str] = None):
        """
        Initialize with a sentence-transformers model.

        Args:
            model_name: Name of the model to use. Defaults to MiniLM.
        """
        self.model_name = model_name or self.DEFAULT_MODEL
        self._model = None

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
            logger.info(f"Loaded embedding model: {self.model_name}")
        return self._model

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        embeddings = await asyncio.to_thread(self._encode, list(texts))
        return [e.tolist() for e in embeddings]

    def _encode(self, texts: List[str]):
        """Load the model if needed and encode; runs in a worker thread."""
        return self.model.encode(texts, convert_to_numpy=True)
