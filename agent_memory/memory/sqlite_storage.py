"""
SQLite storage backend.

The guaranteed-available fallback: a single local table scoped by
project id. SQLite has no key expiry, so the retention policy runs as an
explicit sweep after each store.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple

from .similarity import rank_by_similarity
from .storage import (
    SIMILARITY_CANDIDATE_POOL,
    ConfigurationError,
    MemoryStorage,
    RetentionPolicy,
)
from .types import (
    HIGH_IMPORTANCE_THRESHOLD,
    MemoryDraft,
    MemoryEntry,
    MemorySearchOptions,
    MemoryType,
    MemoryUpdate,
    clamp_importance,
    format_datetime,
    parse_datetime,
    parse_type,
    type_value,
    utc_now,
)


logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return (
        value.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def _tag_predicate(tags: List[str]) -> Tuple[str, List[str]]:
    """
    Build an OR'd match against the serialized tag list.

    Each tag is compared as its JSON-quoted token, so "auth" does not
    match a stored "authentication".
    """
    clauses = ["instr(tags, ?) > 0" for _ in tags]
    params = [json.dumps(tag) for tag in tags]
    return f"({' OR '.join(clauses)})", params


class SQLiteStorage(MemoryStorage):
    """
    SQLite-based memory storage.

    Assumes a single process owns the database file. Queries run on the
    event loop thread; they are local and bounded by the retention limit.
    """

    # Default database location
    DEFAULT_DB_PATH = "./data/project-memory.db"

    # Schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        project_id: str,
        db_path: Optional[str] = None,
        retention: Optional[RetentionPolicy] = None,
        clock: Callable[[], Any] = utc_now,
    ):
        """
        Initialize SQLite storage.

        Args:
            project_id: Project every operation is scoped to.
            db_path: Path to the database file, or ":memory:".
            retention: Count and age limits.
            clock: Source of the current time.

        Raises:
            ConfigurationError: If the database cannot be created.
        """
        super().__init__(project_id, retention)
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self._clock = clock
        self._connection: Optional[sqlite3.Connection] = None

        try:
            self._ensure_db_exists()
            self._ensure_schema()
        except (OSError, sqlite3.Error) as e:
            raise ConfigurationError(
                f"Cannot open SQLite memory store at {self.db_path}: {e}"
            ) from e

    def _ensure_db_exists(self):
        """Ensure the database directory exists."""
        if self.db_path == ":memory:":
            return
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get the database connection, opening it on first use."""
        if self._connection is None:
            self._connection = sqlite3.connect(self.db_path)
            self._connection.row_factory = sqlite3.Row
            # LIKE only folds ASCII; lowercase both sides with Python instead
            self._connection.create_function("py_lower", 1, str.lower, deterministic=True)
        return self._connection

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database transactions."""
        cursor = self._conn.cursor()
        try:
            yield cursor
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    def _ensure_schema(self):
        """Create the database schema if needed."""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            cursor.execute("SELECT MAX(version) AS version FROM schema_version")
            row = cursor.fetchone()
            current_version = row["version"] if row and row["version"] else 0

            if current_version < self.SCHEMA_VERSION:
                self._apply_migrations(cursor, current_version)

    def _apply_migrations(self, cursor: sqlite3.Cursor, from_version: int):
        """Apply schema migrations."""
        if from_version < 1:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS project_memories (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    type TEXT NOT NULL,
                    importance REAL DEFAULT 0.5,
                    embedding TEXT,
                    metadata TEXT,
                    tags TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    access_count INTEGER DEFAULT 0
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_project_memories_project_id
                ON project_memories(project_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_project_memories_type
                ON project_memories(type)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_project_memories_importance
                ON project_memories(importance DESC)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_project_memories_created_at
                ON project_memories(created_at DESC)
            """)

        cursor.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,)
        )

    def _row_to_entry(self, row: sqlite3.Row) -> MemoryEntry:
        """Convert a database row to a MemoryEntry."""
        return MemoryEntry(
            id=row["id"],
            project_id=row["project_id"],
            content=row["content"],
            memory_type=parse_type(row["type"]),
            importance=row["importance"],
            embedding=json.loads(row["embedding"]) if row["embedding"] else None,
            metadata=json.loads(row["metadata"]) if row["metadata"] is not None else None,
            tags=json.loads(row["tags"]) if row["tags"] is not None else None,
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            access_count=row["access_count"],
        )

    def _select(self, sql: str, params: List[Any]) -> List[MemoryEntry]:
        """Run a SELECT and convert every row."""
        with self._transaction() as cursor:
            cursor.execute(sql, params)
            return [self._row_to_entry(row) for row in cursor.fetchall()]

    def _filters(self, options: MemorySearchOptions) -> Tuple[str, List[Any]]:
        """Build WHERE fragments for the optional search filters."""
        sql = ""
        params: List[Any] = []

        if options.memory_type is not None:
            sql += " AND type = ?"
            params.append(type_value(options.memory_type))

        if options.min_importance:
            sql += " AND importance >= ?"
            params.append(options.min_importance)

        if options.tags:
            predicate, tag_params = _tag_predicate(options.tags)
            sql += f" AND {predicate}"
            params.extend(tag_params)

        return sql, params

    async def store(self, draft: MemoryDraft) -> str:
        """Store a new entry, then apply the retention policy."""
        entry = MemoryEntry.from_draft(draft, str(uuid.uuid4()), self._clock())
        entry.project_id = self.project_id

        with self._transaction() as cursor:
            cursor.execute("""
                INSERT INTO project_memories (
                    id, project_id, content, type, importance, embedding,
                    metadata, tags, created_at, updated_at, access_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
            """, (
                entry.id,
                entry.project_id,
                entry.content,
                type_value(entry.memory_type),
                entry.importance,
                json.dumps(entry.embedding) if entry.embedding else None,
                json.dumps(entry.metadata) if entry.metadata is not None else None,
                json.dumps(entry.tags) if entry.tags is not None else None,
                format_datetime(entry.created_at),
                format_datetime(entry.updated_at),
            ))

        logger.debug(f"Stored memory entry: {entry.id}")

        await self.enforce_retention()
        return entry.id

    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        """Retrieve an entry of this project by ID."""
        rows = self._select(
            "SELECT * FROM project_memories WHERE id = ? AND project_id = ?",
            [entry_id, self.project_id],
        )
        return rows[0] if rows else None

    async def search_by_embedding(
        self,
        embedding: List[float],
        options: Optional[MemorySearchOptions] = None,
    ) -> List[MemoryEntry]:
        """Rank the most important embedded entries by similarity."""
        options = options or MemorySearchOptions()
        filters, params = self._filters(options)

        candidates = self._select(
            "SELECT * FROM project_memories"
            " WHERE project_id = ? AND embedding IS NOT NULL"
            f"{filters}"
            " ORDER BY importance DESC, access_count DESC LIMIT ?",
            [self.project_id, *params, SIMILARITY_CANDIDATE_POOL],
        )

        ranked = rank_by_similarity(
            embedding,
            [(entry, entry.embedding) for entry in candidates],
            options.limit,
        )

        return await self._surface([entry for entry, _ in ranked])

    async def search_by_keyword(
        self,
        query: str,
        options: Optional[MemorySearchOptions] = None,
    ) -> List[MemoryEntry]:
        """Case-insensitive substring match on content."""
        options = options or MemorySearchOptions()
        filters, params = self._filters(options)

        results = self._select(
            "SELECT * FROM project_memories"
            " WHERE project_id = ? AND py_lower(content) LIKE ? ESCAPE '\\'"
            f"{filters}"
            " ORDER BY importance DESC, access_count DESC,"
            " created_at DESC, rowid DESC LIMIT ?",
            [self.project_id, f"%{_escape_like(query.lower())}%", *params, options.limit],
        )

        return await self._surface(results)

    async def _surface(self, entries: List[MemoryEntry]) -> List[MemoryEntry]:
        """Count an access for every entry returned from a search."""
        now = self._clock()
        for entry in entries:
            await self.increment_access(entry.id)
            entry.touch(now)
        return entries

    async def get_by_type(self, memory_type: MemoryType, limit: int = 10) -> List[MemoryEntry]:
        """Get entries of one type, most important first."""
        return self._select(
            "SELECT * FROM project_memories WHERE project_id = ? AND type = ?"
            " ORDER BY importance DESC, created_at DESC LIMIT ?",
            [self.project_id, type_value(memory_type), limit],
        )

    async def get_by_tags(self, tags: List[str], limit: int = 10) -> List[MemoryEntry]:
        """Get entries carrying any of the tags, most important first."""
        if not tags:
            return []

        predicate, params = _tag_predicate(tags)
        return self._select(
            f"SELECT * FROM project_memories WHERE project_id = ? AND {predicate}"
            " ORDER BY importance DESC, created_at DESC LIMIT ?",
            [self.project_id, *params, limit],
        )

    async def get_recent(self, limit: int = 10) -> List[MemoryEntry]:
        """Get the newest entries."""
        return self._select(
            "SELECT * FROM project_memories WHERE project_id = ?"
            " ORDER BY created_at DESC, rowid DESC LIMIT ?",
            [self.project_id, limit],
        )

    async def get_important(self, limit: int = 10) -> List[MemoryEntry]:
        """Get the most important entries."""
        return self._select(
            "SELECT * FROM project_memories WHERE project_id = ?"
            " ORDER BY importance DESC, access_count DESC, created_at DESC LIMIT ?",
            [self.project_id, limit],
        )

    async def update(self, entry_id: str, updates: MemoryUpdate) -> bool:
        """Apply the supplied fields and refresh updated_at."""
        set_parts = ["updated_at = ?"]
        params: List[Any] = [format_datetime(self._clock())]

        if updates.content is not None:
            set_parts.append("content = ?")
            params.append(updates.content)

        if updates.importance is not None:
            set_parts.append("importance = ?")
            params.append(clamp_importance(updates.importance))

        if updates.metadata is not None:
            set_parts.append("metadata = ?")
            params.append(json.dumps(updates.metadata))

        if updates.tags is not None:
            set_parts.append("tags = ?")
            params.append(json.dumps(list(updates.tags)))

        with self._transaction() as cursor:
            cursor.execute(
                f"UPDATE project_memories SET {', '.join(set_parts)}"
                " WHERE id = ? AND project_id = ?",
                [*params, entry_id, self.project_id],
            )
            return cursor.rowcount > 0

    async def increment_access(self, entry_id: str) -> None:
        """Increment the access count."""
        with self._transaction() as cursor:
            cursor.execute("""
                UPDATE project_memories
                SET access_count = access_count + 1, updated_at = ?
                WHERE id = ? AND project_id = ?
            """, (format_datetime(self._clock()), entry_id, self.project_id))

    async def delete(self, entry_id: str) -> bool:
        """Delete an entry."""
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM project_memories WHERE id = ? AND project_id = ?",
                (entry_id, self.project_id),
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted memory entry: {entry_id}")
        return deleted

    async def get_count(self) -> int:
        """Count the project's entries."""
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS count FROM project_memories WHERE project_id = ?",
                (self.project_id,),
            )
            return cursor.fetchone()["count"]

    async def clear(self) -> None:
        """Delete every entry of the project."""
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM project_memories WHERE project_id = ?",
                (self.project_id,),
            )
        logger.warning(f"Cleared all memory entries for project {self.project_id}")

    async def enforce_retention(self) -> int:
        """Evict over-limit entries, then expire old low-importance ones."""
        removed = 0
        to_delete = self.retention.eviction_count(await self.get_count())
        cutoff = self.retention.expiry_cutoff(self._clock())

        with self._transaction() as cursor:
            if to_delete:
                cursor.execute("""
                    DELETE FROM project_memories WHERE id IN (
                        SELECT id FROM project_memories
                        WHERE project_id = ?
                        ORDER BY importance ASC, access_count ASC, created_at ASC, rowid ASC
                        LIMIT ?
                    )
                """, (self.project_id, to_delete))
                removed += cursor.rowcount

            if cutoff is not None:
                cursor.execute("""
                    DELETE FROM project_memories
                    WHERE project_id = ? AND created_at < ? AND importance < ?
                """, (self.project_id, format_datetime(cutoff), HIGH_IMPORTANCE_THRESHOLD))
                removed += cursor.rowcount

        if removed > 0:
            logger.info(f"Pruned {removed} memory entries for project {self.project_id}")
        return removed

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    async def is_available(self) -> bool:
        """Check that the database answers queries."""
        try:
            self._conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False
