"""
Memory storage backends.

Defines the storage capability shared by the Redis (primary) and SQLite
(secondary) backends, and the retention policy both of them enforce.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from .types import (
    HIGH_IMPORTANCE_THRESHOLD,
    MemoryDraft,
    MemoryEntry,
    MemorySearchOptions,
    MemoryType,
    MemoryUpdate,
)


logger = logging.getLogger(__name__)


# Size of the pre-ranking pool for similarity search. Recall over the
# whole history is not promised.
SIMILARITY_CANDIDATE_POOL = 100

# How many recent entries a keyword scan looks at on backends without
# a query engine
KEYWORD_SCAN_LIMIT = 500


class MemoryStoreError(Exception):
    """Base exception for memory storage errors."""
    pass


class ConfigurationError(MemoryStoreError):
    """Raised when no usable configuration or storage location exists."""
    pass


@dataclass
class RetentionPolicy:
    """
    Count and age limits applied after every store.

    Attributes:
        max_memories: Maximum live entries per project
        ttl_days: Age after which entries below the high-importance
            threshold are expired
        eviction_batch: Extra entries removed when the count limit is
            exceeded, so cleanup does not run on every store
    """

    max_memories: int = 10000
    ttl_days: Optional[int] = 90
    eviction_batch: int = 100

    def eviction_margin(self) -> int:
        """Batch margin, capped so small limits never empty a project."""
        return max(0, min(self.eviction_batch, self.max_memories // 10))

    def eviction_count(self, count: int) -> int:
        """Number of entries to evict for a project holding `count` entries."""
        if count <= self.max_memories:
            return 0
        return count - self.max_memories + self.eviction_margin()

    def expiry_cutoff(self, now: datetime) -> Optional[datetime]:
        """Entries created before this moment are eligible for expiry."""
        if not self.ttl_days:
            return None
        return now - timedelta(days=self.ttl_days)

    def is_expirable(self, entry: MemoryEntry, now: datetime) -> bool:
        """Whether the age rule removes this entry."""
        cutoff = self.expiry_cutoff(now)
        if cutoff is None:
            return False
        return (
            entry.created_at < cutoff
            and entry.importance < HIGH_IMPORTANCE_THRESHOLD
        )

    @property
    def ttl_seconds(self) -> Optional[int]:
        """Retention window in seconds, for backends with native expiry."""
        if not self.ttl_days:
            return None
        return int(self.ttl_days * 24 * 60 * 60)


def eviction_order_key(entry: MemoryEntry):
    """Sort key putting the first entry to evict first."""
    return (entry.importance, entry.access_count, entry.created_at)


def matches_options(entry: MemoryEntry, options: MemorySearchOptions) -> bool:
    """Check an entry against the type, importance and tag filters."""
    if options.memory_type is not None and entry.memory_type != options.memory_type:
        return False
    if options.min_importance and entry.importance < options.min_importance:
        return False
    if options.tags and not set(options.tags) & set(entry.tags or []):
        return False
    return True


class MemoryStorage(ABC):
    """
    Abstract base class for memory storage backends.

    A backend is bound to a single project at construction; every
    operation is scoped to that project. Missing ids are never an error:
    lookups return None and mutations are no-ops.
    """

    def __init__(self, project_id: str, retention: Optional[RetentionPolicy] = None):
        self.project_id = project_id
        self.retention = retention or RetentionPolicy()

    @abstractmethod
    async def store(self, draft: MemoryDraft) -> str:
        """
        Store a new entry, update indexes and apply the retention policy.

        Args:
            draft: The entry content, without identity or timestamps

        Returns:
            The ID assigned to the stored entry
        """
        pass

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        """Retrieve an entry by ID. Does not count as an access."""
        pass

    @abstractmethod
    async def search_by_embedding(
        self,
        embedding: List[float],
        options: Optional[MemorySearchOptions] = None,
    ) -> List[MemoryEntry]:
        """
        Rank entries by cosine similarity to an embedding.

        Only a bounded candidate pool is ranked. Each returned entry has
        its access count incremented.
        """
        pass

    @abstractmethod
    async def search_by_keyword(
        self,
        query: str,
        options: Optional[MemorySearchOptions] = None,
    ) -> List[MemoryEntry]:
        """
        Case-insensitive substring search over entry content.

        Results are ordered by importance, access count, then recency.
        Each returned entry has its access count incremented.
        """
        pass

    @abstractmethod
    async def get_by_type(self, memory_type: MemoryType, limit: int = 10) -> List[MemoryEntry]:
        """Get entries of one type."""
        pass

    @abstractmethod
    async def get_by_tags(self, tags: List[str], limit: int = 10) -> List[MemoryEntry]:
        """Get entries carrying any of the given tags."""
        pass

    @abstractmethod
    async def get_recent(self, limit: int = 10) -> List[MemoryEntry]:
        """Get the most recently created entries."""
        pass

    @abstractmethod
    async def get_important(self, limit: int = 10) -> List[MemoryEntry]:
        """Get entries by importance, access count breaking ties."""
        pass

    @abstractmethod
    async def update(self, entry_id: str, updates: MemoryUpdate) -> bool:
        """
        Apply a partial update.

        Returns:
            True if the entry was updated, False if not found
        """
        pass

    @abstractmethod
    async def increment_access(self, entry_id: str) -> None:
        """Increment the access count and refresh updated_at."""
        pass

    @abstractmethod
    async def delete(self, entry_id: str) -> bool:
        """
        Delete an entry and every index reference to it.

        Returns:
            True if the entry was deleted, False if not found
        """
        pass

    @abstractmethod
    async def get_count(self) -> int:
        """Get the number of live entries for the project."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete every entry of the project."""
        pass

    @abstractmethod
    async def enforce_retention(self) -> int:
        """
        Apply count eviction then age expiry.

        Returns:
            Number of entries removed
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Liveness probe."""
        pass
