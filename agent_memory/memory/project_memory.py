"""
Project Memory - the single entry point to a project's long-term memory.

Chooses a storage backend (Redis when reachable, SQLite otherwise) and an
embedding provider once, at creation, and exposes one API on top of them.

Example usage:
    config = load_config(project_id="my-service")
    async with await ProjectMemory.create(config) as memory:
        await memory.store_decision("Using PostgreSQL for JSONB support", tags=["db"])
        context = await memory.get_context_for_query("which database?")
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from redis.exceptions import RedisError

from ..llm.base import EmbeddingProvider
from ..llm.factory import EmbeddingBackend, LLMFactory
from .redis_storage import RedisStorage
from .sqlite_storage import SQLiteStorage
from .storage import MemoryStorage, RetentionPolicy
from .types import (
    DEFAULT_IMPORTANCE,
    MemoryDraft,
    MemoryEntry,
    MemorySearchOptions,
    MemoryType,
    MemoryUpdate,
    StorageKind,
    type_value,
)

if TYPE_CHECKING:
    from ..config import EmbeddingConfig, MemoryConfig


logger = logging.getLogger(__name__)


class ProjectMemory:
    """
    Long-term memory for one project.

    The backend and embedding provider are bound for the lifetime of the
    instance. Embedding failures never fail a store or a search: stores
    proceed without a vector and searches fall back to keyword matching.
    """

    # Result sizes composed by get_context_for_query
    CONTEXT_RELEVANT_LIMIT = 5
    CONTEXT_IMPORTANT_LIMIT = 3

    def __init__(
        self,
        storage: MemoryStorage,
        storage_kind: StorageKind,
        project_id: str,
        embedder: Optional[EmbeddingProvider] = None,
    ):
        """
        Bind a facade to an already constructed backend.

        Most callers should use ``ProjectMemory.create``.
        """
        self._storage = storage
        self._storage_kind = storage_kind
        self._project_id = project_id
        self._embedder = embedder

    @classmethod
    async def create(
        cls,
        config: "MemoryConfig",
        *,
        embedder: Optional[EmbeddingProvider] = None,
        redis_client: Optional[Any] = None,
    ) -> "ProjectMemory":
        """
        Create a facade: pick an embedding provider, then a backend.

        Args:
            config: Validated memory configuration.
            embedder: Embedding provider to use instead of the configured one.
            redis_client: Pre-built asyncio Redis client for the primary backend.

        Returns:
            A ready ProjectMemory.

        Raises:
            ConfigurationError: If the configuration has no project id or
                the SQLite path is unusable.
        """
        config.validate()

        if embedder is None:
            embedder = cls._select_embedder(config.embedding)

        retention = config.retention.to_policy()

        if config.redis.configured or redis_client is not None:
            storage = await cls._connect_primary(config, retention, redis_client)
            if storage is not None:
                logger.info(f"Using Redis storage for project: {config.project_id}")
                return cls(storage, StorageKind.PRIMARY, config.project_id, embedder)

        storage = SQLiteStorage(
            config.project_id,
            db_path=config.sqlite_path,
            retention=retention,
        )
        logger.info(f"Using SQLite storage for project: {config.project_id}")
        return cls(storage, StorageKind.SECONDARY, config.project_id, embedder)

    @staticmethod
    def _select_embedder(embedding: "EmbeddingConfig") -> Optional[EmbeddingProvider]:
        """Try the configured embedding providers in order."""
        for backend in embedding.candidates():
            # A configured model name is only meaningful for the provider it was chosen for
            model = None
            if embedding.provider is not None or backend == EmbeddingBackend.GITHUB_MODELS:
                model = embedding.model

            try:
                embedder = LLMFactory.create_embedder(
                    backend,
                    model=model,
                    api_key=embedding.credential_for(backend),
                )
            except Exception as e:
                logger.warning(f"{backend.value} embeddings unavailable: {e}")
                continue

            if embedder is not None:
                logger.info(f"Using {embedder.name} for embeddings")
            return embedder

        if embedding.enabled:
            logger.warning("No embedding provider available, semantic search disabled")
        return None

    @staticmethod
    async def _connect_primary(
        config: "MemoryConfig",
        retention: RetentionPolicy,
        redis_client: Optional[Any],
    ) -> Optional[RedisStorage]:
        """Build the Redis backend and probe it, or return None."""
        redis_config = config.redis
        try:
            storage = RedisStorage(
                config.project_id,
                url=redis_config.url,
                host=redis_config.host,
                port=redis_config.port,
                password=redis_config.password,
                db=redis_config.db,
                key_prefix=redis_config.key_prefix,
                retention=retention,
                connect_timeout=redis_config.connect_timeout,
                client=redis_client,
            )
        except (RedisError, ValueError) as e:
            logger.warning(f"Redis connection failed, falling back to SQLite: {e}")
            return None

        if await storage.wait_for_connection() and await storage.is_available():
            return storage

        logger.warning("Redis not available, falling back to SQLite")
        await storage.close()
        return None

    # ========== Properties ==========

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def storage(self) -> MemoryStorage:
        """Get the bound storage backend."""
        return self._storage

    @property
    def storage_type(self) -> StorageKind:
        """Which backend this instance is bound to."""
        return self._storage_kind

    @property
    def embedding_provider(self) -> str:
        """Identifier of the bound embedding provider, or "none"."""
        if self._embedder is None:
            return EmbeddingBackend.NONE.value
        return self._embedder.name

    # ========== Embeddings ==========

    async def _embed(self, text: str) -> Optional[List[float]]:
        """Embed text, returning None if no provider is bound or it fails."""
        if self._embedder is None:
            return None
        try:
            return await self._embedder.embed(text)
        except Exception as e:
            logger.warning(f"Failed to generate embedding: {e}")
            return None

    async def _embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        if self._embedder is None or not texts:
            return [None] * len(texts)
        try:
            vectors = await self._embedder.embed_batch(texts)
        except Exception as e:
            logger.warning(f"Failed to generate embeddings: {e}")
            return [None] * len(texts)

        if len(vectors) != len(texts):
            logger.warning(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
            return [None] * len(texts)
        return list(vectors)

    # ========== Storing ==========

    async def store(
        self,
        content: str,
        memory_type: MemoryType,
        importance: float = 0.5,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> str:
        """
        Store project knowledge.

        Args:
            content: The knowledge to remember
            memory_type: Kind of knowledge; not validated here
            importance: Priority score, clamped to [0, 1]
            metadata: Opaque data stored with the entry
            tags: Labels for tag lookups

        Returns:
            The ID of the stored entry
        """
        embedding = await self._embed(content)
        return await self._storage.store(MemoryDraft(
            project_id=self._project_id,
            content=content,
            memory_type=memory_type,
            importance=importance,
            embedding=embedding,
            metadata=metadata,
            tags=tags,
        ))

    async def store_many(self, items: Iterable[Dict[str, Any]]) -> List[str]:
        """
        Store several entries, embedding them in one batch.

        Args:
            items: Dicts with ``content`` and ``type``, and optionally
                ``importance``, ``metadata`` and ``tags``

        Returns:
            IDs of the stored entries, in input order
        """
        items = list(items)
        vectors = await self._embed_batch([item["content"] for item in items])

        ids = []
        for item, vector in zip(items, vectors):
            ids.append(await self._storage.store(MemoryDraft(
                project_id=self._project_id,
                content=item["content"],
                memory_type=item["type"],
                importance=item.get("importance", 0.5),
                embedding=vector,
                metadata=item.get("metadata"),
                tags=item.get("tags"),
            )))
        return ids

    async def _store_typed(self, memory_type: MemoryType, content: str, tags: Optional[List[str]]) -> str:
        return await self.store(
            content,
            memory_type,
            importance=DEFAULT_IMPORTANCE[memory_type],
            tags=tags,
        )

    async def store_context(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store general project context."""
        return await self._store_typed(MemoryType.CONTEXT, content, tags)

    async def store_architecture(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store an architecture note."""
        return await self._store_typed(MemoryType.ARCHITECTURE, content, tags)

    async def store_pattern(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store a pattern or convention."""
        return await self._store_typed(MemoryType.PATTERN, content, tags)

    async def store_decision(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store a decision record."""
        return await self._store_typed(MemoryType.DECISION, content, tags)

    async def store_dependency(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store a dependency or tool note."""
        return await self._store_typed(MemoryType.DEPENDENCY, content, tags)

    async def store_config(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store configuration details."""
        return await self._store_typed(MemoryType.CONFIG, content, tags)

    async def store_todo(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store a task."""
        return await self._store_typed(MemoryType.TODO, content, tags)

    async def store_issue(self, content: str, tags: Optional[List[str]] = None) -> str:
        """Store a known issue."""
        return await self._store_typed(MemoryType.ISSUE, content, tags)

    # ========== Retrieval ==========

    async def search(
        self,
        query: str,
        options: Optional[MemorySearchOptions] = None,
    ) -> List[MemoryEntry]:
        """
        Search memories, semantically when possible.

        Falls back to keyword matching when no embedding provider is bound
        or embedding the query fails.
        """
        embedding = await self._embed(query)
        if embedding is not None:
            return await self._storage.search_by_embedding(embedding, options)
        return await self._storage.search_by_keyword(query, options)

    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        return await self._storage.get(entry_id)

    async def get_by_type(self, memory_type: MemoryType, limit: int = 10) -> List[MemoryEntry]:
        return await self._storage.get_by_type(memory_type, limit)

    async def get_by_tags(self, tags: List[str], limit: int = 10) -> List[MemoryEntry]:
        return await self._storage.get_by_tags(tags, limit)

    async def get_recent(self, limit: int = 10) -> List[MemoryEntry]:
        return await self._storage.get_recent(limit)

    async def get_important(self, limit: int = 10) -> List[MemoryEntry]:
        return await self._storage.get_important(limit)

    async def get_context_for_query(self, query: str) -> str:
        """
        Compose prompt context from relevant and important knowledge.

        Relevant entries come first; an entry that is both is listed once.

        Returns:
            A header line followed by one bullet per entry, or an empty
            string when there is nothing to show
        """
        relevant = await self.search(
            query, MemorySearchOptions(limit=self.CONTEXT_RELEVANT_LIMIT)
        )
        important = await self.get_important(self.CONTEXT_IMPORTANT_LIMIT)

        seen = set()
        entries = []
        for entry in relevant + important:
            if entry.id not in seen:
                seen.add(entry.id)
                entries.append(entry)

        if not entries:
            return ""

        lines = [f'Project knowledge for "{self._project_id}":']
        for entry in entries:
            tags = f" [{', '.join(entry.tags)}]" if entry.tags else ""
            lines.append(f"- [{type_value(entry.memory_type)}]{tags} {entry.content}")
        return "\n".join(lines)

    # ========== Mutation ==========

    async def update(
        self,
        entry_id: str,
        content: Optional[str] = None,
        importance: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> bool:
        """
        Update fields of an entry. Fields left as None are unchanged.

        The stored embedding is not recomputed when content changes.

        Returns:
            True if the entry exists and was updated
        """
        return await self._storage.update(entry_id, MemoryUpdate(
            content=content,
            importance=importance,
            metadata=metadata,
            tags=tags,
        ))

    async def delete(self, entry_id: str) -> bool:
        return await self._storage.delete(entry_id)

    async def get_count(self) -> int:
        return await self._storage.get_count()

    async def clear(self) -> None:
        """Delete every entry of the project."""
        await self._storage.clear()

    async def close(self) -> None:
        await self._storage.close()

    async def is_available(self) -> bool:
        return await self._storage.is_available()

    async def __aenter__(self) -> "ProjectMemory":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
