"""
Memory system for AI coding assistants.

Long-term project knowledge backed by Redis with a SQLite fallback,
plus a short-term conversation buffer and knowledge extraction.
"""

from .extraction import KnowledgeExtractor
from .project_memory import ProjectMemory
from .redis_storage import RedisStorage
from .registry import ProjectMemoryRegistry
from .short_term import ConversationEntry, ShortTermMemory
from .sqlite_storage import SQLiteStorage
from .storage import (
    ConfigurationError,
    MemoryStorage,
    MemoryStoreError,
    RetentionPolicy,
)
from .types import (
    DEFAULT_IMPORTANCE,
    HIGH_IMPORTANCE_THRESHOLD,
    MemoryDraft,
    MemoryEntry,
    MemorySearchOptions,
    MemoryType,
    MemoryUpdate,
    StorageKind,
)

__all__ = [
    "ConfigurationError",
    "ConversationEntry",
    "DEFAULT_IMPORTANCE",
    "HIGH_IMPORTANCE_THRESHOLD",
    "KnowledgeExtractor",
    "MemoryDraft",
    "MemoryEntry",
    "MemorySearchOptions",
    "MemoryStorage",
    "MemoryStoreError",
    "MemoryType",
    "MemoryUpdate",
    "ProjectMemory",
    "ProjectMemoryRegistry",
    "RedisStorage",
    "RetentionPolicy",
    "SQLiteStorage",
    "ShortTermMemory",
    "StorageKind",
]
