"""
Redis storage backend.

Each entry is a JSON record under ``<prefix>:<project>:entry:<id>``; its
vector lives under a separate ``embedding`` key so the hot record stays
small. Sorted-set indexes per project:

- ``index:all``         every live id, scored by insertion time
- ``index:recent``      insertion time
- ``index:importance``  importance x 1000
- ``index:embedded``    importance x 1000, only ids that carry a vector
- ``index:type:<type>`` insertion time
- ``index:tag:<tag>``   insertion time

Records below the high-importance threshold expire with the retention
window. Indexes never expire; they are maintained by explicit deletes,
and ids whose record has vanished are skipped and pruned on read.
"""

import asyncio
import json
import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .similarity import rank_by_similarity
from .storage import (
    KEYWORD_SCAN_LIMIT,
    SIMILARITY_CANDIDATE_POOL,
    MemoryStorage,
    RetentionPolicy,
    eviction_order_key,
    matches_options,
)
from .types import (
    HIGH_IMPORTANCE_THRESHOLD,
    MemoryDraft,
    MemoryEntry,
    MemorySearchOptions,
    MemoryType,
    MemoryUpdate,
    format_datetime,
    type_value,
    utc_now,
)


logger = logging.getLogger(__name__)


def importance_score(importance: float) -> int:
    """Integer-scaled importance used as the sorted-set score."""
    return int(round(importance * 1000))


def _escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters."""
    return re.sub(r"([*?\[\]\\])", r"\\\1", value)


class RedisStorage(MemoryStorage):
    """
    Redis-based memory storage.

    The connection is established lazily; call ``wait_for_connection``
    to find out whether the server is reachable before relying on it.
    """

    DEFAULT_KEY_PREFIX = "memory"
    DEFAULT_CONNECT_TIMEOUT = 3.0

    def __init__(
        self,
        project_id: str,
        url: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        retention: Optional[RetentionPolicy] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        client: Optional[Any] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize Redis storage.

        Args:
            project_id: Project every operation is scoped to.
            url: Redis URL; takes precedence over host/port.
            host: Redis host, defaults to localhost.
            port: Redis port.
            password: Redis password.
            db: Redis database number.
            key_prefix: Namespace for all keys.
            retention: Count and age limits.
            connect_timeout: Seconds to wait for a connection.
            client: Pre-built asyncio Redis client to use instead.
            clock: Source of the current time.
        """
        super().__init__(project_id, retention)
        self.connect_timeout = connect_timeout
        self._prefix = f"{key_prefix}:{project_id}"
        self._clock = clock
        self._last_score = 0.0
        self._connected = False

        if client is not None:
            self._redis = client
        elif url:
            self._redis = aioredis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=connect_timeout,
            )
        else:
            self._redis = aioredis.Redis(
                host=host or "localhost",
                port=port,
                password=password,
                db=db,
                decode_responses=True,
                socket_connect_timeout=connect_timeout,
            )

    @property
    def connected(self) -> bool:
        """Whether the last probe reached the server."""
        return self._connected

    async def wait_for_connection(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the server to answer, up to a bound.

        Returns:
            True if connected, False on error or timeout
        """
        timeout = timeout or self.connect_timeout
        try:
            await asyncio.wait_for(self._redis.ping(), timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Redis not reachable within {timeout}s: {e}")
            self._connected = False
            return False

        self._connected = True
        return True

    # ========== Keys ==========

    def _entry_key(self, entry_id: str) -> str:
        return f"{self._prefix}:entry:{entry_id}"

    def _embedding_key(self, entry_id: str) -> str:
        return f"{self._prefix}:embedding:{entry_id}"

    def _index_key(self, name: str) -> str:
        return f"{self._prefix}:index:{name}"

    def _type_index(self, memory_type) -> str:
        return self._index_key(f"type:{type_value(memory_type)}")

    def _tag_index(self, tag: str) -> str:
        return self._index_key(f"tag:{tag}")

    def _master_indexes(self) -> List[str]:
        """Indexes an id can be pruned from without loading its record."""
        return [
            self._index_key("all"),
            self._index_key("recent"),
            self._index_key("importance"),
            self._index_key("embedded"),
        ]

    async def _scan_indexes(self, family: str) -> List[str]:
        """Existing index keys of one family, e.g. every ``type:*`` index."""
        pattern = _escape_glob(self._index_key(f"{family}:")) + "*"
        return [key async for key in self._redis.scan_iter(match=pattern)]

    # ========== Helpers ==========

    def _next_score(self, now: datetime) -> float:
        """Millisecond insertion score, strictly increasing per instance."""
        score = now.timestamp() * 1000
        if score <= self._last_score:
            score = self._last_score + 0.001
        self._last_score = score
        return score

    def _ttl_for(self, entry: MemoryEntry) -> Optional[int]:
        """Seconds left in the entry's retention window, None if exempt."""
        ttl_seconds = self.retention.ttl_seconds
        if ttl_seconds is None or entry.importance >= HIGH_IMPORTANCE_THRESHOLD:
            return None
        expires_at = entry.created_at + timedelta(seconds=ttl_seconds)
        return max(1, int((expires_at - self._clock()).total_seconds()))

    @staticmethod
    def _serialize(entry: MemoryEntry) -> str:
        return json.dumps(entry.to_dict(include_embedding=False))

    def _queue_index_add(self, pipe, entry: MemoryEntry, score: float):
        """Queue the index writes for an entry on a pipeline."""
        pipe.zadd(self._type_index(entry.memory_type), {entry.id: score})
        pipe.zadd(self._index_key("importance"), {entry.id: importance_score(entry.importance)})
        if entry.embedding:
            pipe.zadd(self._index_key("embedded"), {entry.id: importance_score(entry.importance)})
        pipe.zadd(self._index_key("recent"), {entry.id: score})
        for tag in entry.tags or []:
            pipe.zadd(self._tag_index(tag), {entry.id: score})
        pipe.zadd(self._index_key("all"), {entry.id: score})

    def _queue_index_remove(self, pipe, entry: MemoryEntry):
        """Queue removal of an entry from every index it can be in."""
        pipe.zrem(self._type_index(entry.memory_type), entry.id)
        pipe.zrem(self._index_key("importance"), entry.id)
        pipe.zrem(self._index_key("embedded"), entry.id)
        pipe.zrem(self._index_key("recent"), entry.id)
        pipe.zrem(self._index_key("all"), entry.id)
        for tag in entry.tags or []:
            pipe.zrem(self._tag_index(tag), entry.id)

    async def _fetch(
        self,
        ids: List[str],
        extra_indexes: Iterable[str] = (),
        with_embeddings: bool = True,
    ) -> List[MemoryEntry]:
        """
        Load entries in index order, skipping ids whose record is gone.

        Dangling ids are pruned from the master and type indexes and from
        any extra indexes the caller was reading. Sweeps that never look
        at vectors pass ``with_embeddings=False``.
        """
        if not ids:
            return []

        records = await self._redis.mget([self._entry_key(i) for i in ids])

        entries = []
        missing = []
        for entry_id, record in zip(ids, records):
            if record is None:
                missing.append(entry_id)
                continue
            entries.append(MemoryEntry.from_dict(json.loads(record)))

        if missing:
            await self._repair(missing, extra_indexes)
        if with_embeddings:
            await self._attach_embeddings(entries)
        return entries

    async def _attach_embeddings(self, entries: List[MemoryEntry]):
        """Load the vectors of already fetched entries."""
        if not entries:
            return
        vectors = await self._redis.mget([self._embedding_key(e.id) for e in entries])
        for entry, vector in zip(entries, vectors):
            if vector:
                entry.embedding = json.loads(vector)

    async def _repair(self, ids: List[str], extra_indexes: Iterable[str] = ()):
        """Drop dangling ids from indexes."""
        # The record is gone, so its type is unknown; prune every type index
        type_indexes = await self._scan_indexes("type")
        async with self._redis.pipeline(transaction=False) as pipe:
            for key in [*self._master_indexes(), *type_indexes, *extra_indexes]:
                pipe.zrem(key, *ids)
            await pipe.execute()
        logger.debug(f"Pruned {len(ids)} dangling index references")

    async def _remove(self, entry: MemoryEntry):
        """Delete an entry's record, vector and index references atomically."""
        async with self._redis.pipeline(transaction=True) as pipe:
            self._queue_index_remove(pipe, entry)
            pipe.delete(self._entry_key(entry.id), self._embedding_key(entry.id))
            await pipe.execute()

    async def _surface(self, entries: List[MemoryEntry]) -> List[MemoryEntry]:
        """Count an access for every entry returned from a search."""
        now = self._clock()
        for entry in entries:
            await self.increment_access(entry.id)
            entry.touch(now)
        return entries

    # ========== Storage operations ==========

    async def store(self, draft: MemoryDraft) -> str:
        """Store a new entry, then apply the retention policy."""
        now = self._clock()
        entry = MemoryEntry.from_draft(draft, str(uuid.uuid4()), now)
        entry.project_id = self.project_id

        ttl = self._ttl_for(entry)
        score = self._next_score(now)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._entry_key(entry.id), self._serialize(entry), ex=ttl)
            if entry.embedding:
                pipe.set(self._embedding_key(entry.id), json.dumps(entry.embedding), ex=ttl)
            self._queue_index_add(pipe, entry, score)
            await pipe.execute()

        logger.debug(f"Stored memory entry: {entry.id}")

        await self.enforce_retention()
        return entry.id

    async def get(self, entry_id: str) -> Optional[MemoryEntry]:
        """Retrieve an entry by ID."""
        entries = await self._fetch([entry_id])
        return entries[0] if entries else None

    async def search_by_embedding(
        self,
        embedding: List[float],
        options: Optional[MemorySearchOptions] = None,
    ) -> List[MemoryEntry]:
        """
        Rank a bounded pool of candidates by similarity.

        The pool holds the most important vectored entries that match the
        filters. It is filled page by page from the embedded index, so
        entries without a vector or outside the filters never crowd it out.
        """
        options = options or MemorySearchOptions()
        index = self._index_key("embedded")
        min_score = importance_score(options.min_importance or 0.0)

        candidates: List[MemoryEntry] = []
        offset = 0
        while len(candidates) < SIMILARITY_CANDIDATE_POOL:
            ids = await self._redis.zrevrangebyscore(
                index, "+inf", min_score, start=offset, num=SIMILARITY_CANDIDATE_POOL
            )
            if not ids:
                break
            page = await self._fetch(ids)
            # Dangling ids were pruned from the index, shifting later members up
            offset += len(page)
            candidates.extend(
                entry for entry in page
                if entry.embedding and matches_options(entry, options)
            )
            if len(ids) < SIMILARITY_CANDIDATE_POOL:
                break

        candidates.sort(key=lambda e: (e.importance, e.access_count), reverse=True)
        candidates = candidates[:SIMILARITY_CANDIDATE_POOL]

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
        """Scan recent entries for a case-insensitive substring."""
        options = options or MemorySearchOptions()

        if options.memory_type is not None:
            index = self._type_index(options.memory_type)
        else:
            index = self._index_key("recent")
        ids = await self._redis.zrevrange(index, 0, KEYWORD_SCAN_LIMIT - 1)

        needle = query.lower()
        matches = [
            entry for entry in await self._fetch(ids, with_embeddings=False)
            if needle in entry.content.lower() and matches_options(entry, options)
        ]
        matches.sort(
            key=lambda e: (e.importance, e.access_count, e.created_at),
            reverse=True,
        )
        matches = matches[:options.limit]
        await self._attach_embeddings(matches)
        return await self._surface(matches)

    async def get_by_type(self, memory_type: MemoryType, limit: int = 10) -> List[MemoryEntry]:
        """Get the newest entries of one type."""
        ids = await self._redis.zrevrange(self._type_index(memory_type), 0, limit - 1)
        return await self._fetch(ids)

    async def get_by_tags(self, tags: List[str], limit: int = 10) -> List[MemoryEntry]:
        """Get the newest entries carrying any of the tags."""
        scores = {}
        indexes = [self._tag_index(tag) for tag in tags]
        for index in indexes:
            for member, score in await self._redis.zrevrange(index, 0, limit - 1, withscores=True):
                scores[member] = max(score, scores.get(member, score))

        ids = sorted(scores, key=scores.get, reverse=True)[:limit]
        return await self._fetch(ids, indexes)

    async def get_recent(self, limit: int = 10) -> List[MemoryEntry]:
        """Get the newest entries."""
        ids = await self._redis.zrevrange(self._index_key("recent"), 0, limit - 1)
        return await self._fetch(ids)

    async def get_important(self, limit: int = 10) -> List[MemoryEntry]:
        """Get entries by importance, access count breaking ties."""
        index = self._index_key("importance")
        top = await self._redis.zrevrange(index, 0, limit - 1, withscores=True)
        if not top:
            return []

        # Pull in every entry tied with the last one so the access-count
        # tiebreak is applied over the whole tie group
        boundary = top[-1][1]
        ties = await self._redis.zrangebyscore(index, boundary, boundary)
        ids = list(dict.fromkeys([member for member, _ in top] + list(ties)))

        entries = await self._fetch(ids)
        entries.sort(
            key=lambda e: (e.importance, e.access_count, e.created_at),
            reverse=True,
        )
        return entries[:limit]

    async def update(self, entry_id: str, updates: MemoryUpdate) -> bool:
        """Apply a partial update, rebuilding tag indexes if tags change."""
        entry = await self.get(entry_id)
        if entry is None:
            return False

        old_tags = list(entry.tags or [])
        updates.apply(entry, self._clock())

        score = None
        if updates.tags is not None:
            score = await self._redis.zscore(self._index_key("recent"), entry_id)
            if score is None:
                score = self._next_score(entry.created_at)

        async with self._redis.pipeline(transaction=True) as pipe:
            # XX: never recreate a record that expired since it was read
            pipe.set(self._entry_key(entry_id), self._serialize(entry), keepttl=True, xx=True)
            if updates.importance is not None:
                new_score = importance_score(entry.importance)
                pipe.zadd(self._index_key("importance"), {entry_id: new_score})
                if entry.embedding:
                    pipe.zadd(self._index_key("embedded"), {entry_id: new_score})
            if updates.tags is not None:
                for tag in old_tags:
                    pipe.zrem(self._tag_index(tag), entry_id)
                for tag in entry.tags:
                    pipe.zadd(self._tag_index(tag), {entry_id: score})
            results = await pipe.execute()

        if not results[0]:
            tag_indexes = [self._tag_index(tag) for tag in {*old_tags, *(entry.tags or [])}]
            await self._repair([entry_id], tag_indexes)
            return False

        if updates.importance is not None:
            await self._sync_expiry(entry)
        return True

    async def _sync_expiry(self, entry: MemoryEntry):
        """Re-apply key expiry after an importance change."""
        ttl = self._ttl_for(entry)
        for key in (self._entry_key(entry.id), self._embedding_key(entry.id)):
            if ttl is None:
                await self._redis.persist(key)
            else:
                await self._redis.expire(key, ttl)

    async def increment_access(self, entry_id: str) -> None:
        """Increment the access count, keeping the record's expiry."""
        key = self._entry_key(entry_id)
        data = await self._redis.get(key)
        if data is None:
            return

        record = json.loads(data)
        record["access_count"] = record.get("access_count", 0) + 1
        record["updated_at"] = format_datetime(self._clock())
        await self._redis.set(key, json.dumps(record), keepttl=True, xx=True)

    async def delete(self, entry_id: str) -> bool:
        """Delete an entry and its index references."""
        entry = await self.get(entry_id)
        if entry is None:
            return False

        await self._remove(entry)
        logger.debug(f"Deleted memory entry: {entry_id}")
        return True

    async def get_count(self) -> int:
        """Count ids in the master index."""
        return await self._redis.zcard(self._index_key("all"))

    async def clear(self) -> None:
        """Delete every key belonging to the project."""
        ids = await self._redis.zrange(self._index_key("all"), 0, -1)
        keys = [self._entry_key(i) for i in ids] + [self._embedding_key(i) for i in ids]
        keys.extend(self._master_indexes())
        keys.extend(await self._scan_indexes("type"))
        keys.extend(await self._scan_indexes("tag"))

        if keys:
            await self._redis.delete(*keys)
        logger.warning(f"Cleared all memory entries for project {self.project_id}")

    async def enforce_retention(self) -> int:
        """Evict over-limit entries, then expire old low-importance ones."""
        removed = 0
        if self.retention.eviction_count(await self.get_count()):
            removed += await self._evict()
        removed += await self._expire_old()

        if removed > 0:
            logger.info(f"Pruned {removed} memory entries for project {self.project_id}")
        return removed

    async def _evict(self) -> int:
        """Remove the lowest (importance, access count, age) entries."""
        to_delete = self.retention.eviction_count(await self.get_count())
        index = self._index_key("importance")

        lowest = await self._redis.zrange(index, 0, to_delete - 1, withscores=True)
        if not lowest:
            return 0

        boundary = lowest[-1][1]
        ties = await self._redis.zrangebyscore(index, boundary, boundary)
        ids = list(dict.fromkeys([member for member, _ in lowest] + list(ties)))

        # Loading prunes dangling ids, which may already bring the count down
        candidates = await self._fetch(ids, with_embeddings=False)
        candidates.sort(key=eviction_order_key)
        excess = self.retention.eviction_count(await self.get_count())

        for entry in candidates[:excess]:
            await self._remove(entry)
        return min(excess, len(candidates))

    async def _expire_old(self) -> int:
        """Delete entries past the retention window unless highly important."""
        now = self._clock()
        cutoff = self.retention.expiry_cutoff(now)
        if cutoff is None:
            return 0

        old_ids = await self._redis.zrangebyscore(
            self._index_key("recent"), "-inf", cutoff.timestamp() * 1000
        )
        if not old_ids:
            return 0

        # Only records below the threshold are loaded; exempt ones stay put
        async with self._redis.pipeline(transaction=False) as pipe:
            for entry_id in old_ids:
                pipe.zscore(self._index_key("importance"), entry_id)
            scores = await pipe.execute()
        threshold = importance_score(HIGH_IMPORTANCE_THRESHOLD)
        ids = [
            entry_id for entry_id, score in zip(old_ids, scores)
            if score is None or score < threshold
        ]

        expired = [
            entry for entry in await self._fetch(ids, with_embeddings=False)
            if self.retention.is_expirable(entry, now)
        ]
        for entry in expired:
            await self._remove(entry)
        return len(expired)

    async def close(self) -> None:
        """Close the connection."""
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Error closing Redis connection: {e}")
        self._connected = False

    async def is_available(self) -> bool:
        """Ping the server."""
        try:
            await self._redis.ping()
        except (RedisError, OSError) as e:
            logger.warning(f"Redis health check failed: {e}")
            self._connected = False
            return False

        self._connected = True
        return True
