"""
Memory type definitions for the project memory store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.

    Handles ISO format strings including 'Z' suffix for UTC. Naive values
    are assumed to be UTC.

    Args:
        value: String or datetime to parse

    Returns:
        Parsed datetime or None
    """
    if value is None:
        return None
    if isinstance(value, str):
        # Handle 'Z' suffix for UTC
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    return None


def format_datetime(value: datetime) -> str:
    """Render a timestamp as fixed-width ISO-8601 so strings sort chronologically."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class MemoryType(str, Enum):
    """Kinds of project knowledge."""

    CONTEXT = "context"
    ARCHITECTURE = "architecture"
    DEPENDENCY = "dependency"
    CONFIG = "config"
    PATTERN = "pattern"
    DECISION = "decision"
    TODO = "todo"
    ISSUE = "issue"


class StorageKind(str, Enum):
    """Which backend a facade is bound to."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


# Editorial weighting of knowledge types used by the per-type store helpers
DEFAULT_IMPORTANCE: Dict[MemoryType, float] = {
    MemoryType.ARCHITECTURE: 0.8,
    MemoryType.DECISION: 0.8,
    MemoryType.PATTERN: 0.7,
    MemoryType.CONTEXT: 0.7,
    MemoryType.DEPENDENCY: 0.6,
    MemoryType.CONFIG: 0.6,
    MemoryType.TODO: 0.5,
    MemoryType.ISSUE: 0.7,
}

# Entries at or above this importance never expire by age
HIGH_IMPORTANCE_THRESHOLD = 0.8


def clamp_importance(value: float) -> float:
    """Clamp an importance score into [0, 1]."""
    return min(1.0, max(0.0, float(value)))


def coerce_memory_type(
    value: Any,
    default: MemoryType = MemoryType.CONTEXT,
) -> MemoryType:
    """
    Validate an untrusted type value, falling back to a default.

    Storage backends trust the type they are given; this is for the
    layers that accept input from users or language models.
    """
    if isinstance(value, MemoryType):
        return value
    try:
        return MemoryType(str(value).strip().lower())
    except ValueError:
        return default


def type_value(memory_type: Union[MemoryType, str]) -> str:
    """Get the persisted string form of a memory type."""
    if isinstance(memory_type, MemoryType):
        return memory_type.value
    return str(memory_type)


def parse_type(value: str) -> Union[MemoryType, str]:
    """Rehydrate a persisted type, keeping values outside the enum verbatim."""
    try:
        return MemoryType(value)
    except ValueError:
        return value


@dataclass
class MemoryDraft:
    """
    An entry as handed to a storage backend, before it has an identity.

    The backend assigns the id, timestamps and access count.
    """

    project_id: str
    content: str
    memory_type: MemoryType
    importance: float = 0.5
    embedding: Optional[List[float]] = None
    metadata: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None


@dataclass
class MemoryEntry:
    """
    A single unit of persisted project knowledge.

    Attributes:
        id: Unique identifier, assigned by the storage backend
        project_id: Namespace key; every query is scoped to one project
        content: Free text, the only field keyword search looks at
        memory_type: Kind of knowledge
        importance: Priority score in [0, 1] used for ranking and eviction
        embedding: Optional dense vector for similarity search
        metadata: Opaque key-value data, round-tripped verbatim
        tags: Optional labels used for tag lookups
        created_at: Creation time, immutable
        updated_at: Time of the last mutation or access touch
        access_count: Number of times a search surfaced this entry
    """

    id: str
    project_id: str
    content: str
    memory_type: MemoryType
    importance: float = 0.5
    embedding: Optional[List[float]] = None
    metadata: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    access_count: int = 0

    def __post_init__(self):
        """Initialize defaults after creation."""
        if self.updated_at is None:
            self.updated_at = self.created_at

    @classmethod
    def from_draft(
        cls,
        draft: MemoryDraft,
        entry_id: str,
        now: datetime,
    ) -> "MemoryEntry":
        """Materialize a draft with its backend-assigned identity."""
        return cls(
            id=entry_id,
            project_id=draft.project_id,
            content=draft.content,
            memory_type=draft.memory_type,
            importance=clamp_importance(draft.importance),
            embedding=list(draft.embedding) if draft.embedding else None,
            metadata=draft.metadata,
            tags=list(draft.tags) if draft.tags is not None else None,
            created_at=now,
            updated_at=now,
            access_count=0,
        )

    def to_dict(self, include_embedding: bool = True) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "content": self.content,
            "type": type_value(self.memory_type),
            "importance": self.importance,
            "metadata": self.metadata,
            "tags": self.tags,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "access_count": self.access_count,
        }
        if include_embedding:
            data["embedding"] = self.embedding
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            project_id=data.get("project_id", ""),
            content=data.get("content", ""),
            memory_type=parse_type(data.get("type", MemoryType.CONTEXT.value)),
            importance=data.get("importance", 0.5),
            embedding=data.get("embedding"),
            metadata=data.get("metadata"),
            tags=data.get("tags"),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")),
            access_count=data.get("access_count", 0),
        )

    def touch(self, now: Optional[datetime] = None):
        """Update access time and count."""
        self.access_count += 1
        self.updated_at = now or utc_now()


@dataclass
class MemorySearchOptions:
    """
    Filters for search and listing operations.

    Attributes:
        limit: Maximum number of results
        memory_type: Restrict to one kind of knowledge
        tags: Restrict to entries carrying any of these tags
        min_importance: Minimum importance score
    """

    limit: int = 10
    memory_type: Optional[MemoryType] = None
    tags: Optional[List[str]] = None
    min_importance: Optional[float] = None


@dataclass
class MemoryUpdate:
    """Partial update of an entry. Fields left as None are not touched."""

    content: Optional[str] = None
    importance: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None

    def apply(self, entry: MemoryEntry, now: datetime) -> MemoryEntry:
        """Apply the supplied fields to an entry in place."""
        if self.content is not None:
            entry.content = self.content
        if self.importance is not None:
            entry.importance = clamp_importance(self.importance)
        if self.metadata is not None:
            entry.metadata = self.metadata
        if self.tags is not None:
            entry.tags = list(self.tags)
        entry.updated_at = now
        return entry
