"""
Tests for the storage contract, run against both backends.
"""

import pytest

from agent_memory.memory.storage import (
    SIMILARITY_CANDIDATE_POOL,
    ConfigurationError,
    MemoryStoreError,
    RetentionPolicy,
)
from agent_memory.memory.types import MemorySearchOptions, MemoryType, MemoryUpdate


class TestStoreAndGet:
    """Test storing and fetching entries."""

    @pytest.mark.asyncio
    async def test_round_trip(self, storage, draft):
        """Test all caller-supplied fields survive a store and get."""
        entry_id = await storage.store(draft(
            "Using PostgreSQL for JSONB support",
            MemoryType.DECISION,
            importance=0.75,
            embedding=[0.1, 0.2, 0.3],
            metadata={"source": "adr-7", "reviewers": 2, "extra": {"links": ["a", "b"]}},
            tags=["database", "postgres"],
        ))

        entry = await storage.get(entry_id)

        assert entry.id == entry_id
        assert entry.project_id == "test-project"
        assert entry.content == "Using PostgreSQL for JSONB support"
        assert entry.memory_type == MemoryType.DECISION
        assert entry.importance == 0.75
        assert entry.embedding == [0.1, 0.2, 0.3]
        assert entry.metadata == {"source": "adr-7", "reviewers": 2, "extra": {"links": ["a", "b"]}}
        assert entry.tags == ["database", "postgres"]
        assert entry.access_count == 0
        assert entry.created_at is not None
        assert entry.updated_at == entry.created_at

    @pytest.mark.asyncio
    async def test_optional_fields_absent(self, storage, draft):
        """Test an entry without embedding, metadata or tags."""
        entry_id = await storage.store(draft("Plain note"))

        entry = await storage.get(entry_id)

        assert entry.embedding is None
        assert entry.metadata is None
        assert entry.tags is None

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, storage, draft):
        """Test every store assigns a new id."""
        ids = {await storage.store(draft(f"note {i}")) for i in range(5)}
        assert len(ids) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("given,stored", [(1.5, 1.0), (-0.3, 0.0), (0.42, 0.42)])
    async def test_importance_is_clamped(self, storage, draft, given, stored):
        """Test importance is clamped into [0, 1]."""
        entry_id = await storage.store(draft("Clamped", importance=given))

        entry = await storage.get(entry_id)
        assert entry.importance == stored

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, storage):
        """Test get of an unknown id."""
        assert await storage.get("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_type_is_not_validated(self, storage, draft):
        """Test the storage keeps a type value outside the known set."""
        entry_id = await storage.store(draft("Runbook link", memory_type="runbook"))

        entry = await storage.get(entry_id)
        assert entry.memory_type == "runbook"

    @pytest.mark.asyncio
    async def test_projects_are_isolated(self, storage_factory, draft):
        """Test entries of one project are invisible to another."""
        first = storage_factory(project_id="project-a")
        second = storage_factory(project_id="project-b")

        entry_id = await first.store(draft("Only in A", project_id="project-a"))
        await second.store(draft("Only in B", project_id="project-b"))

        assert await second.get(entry_id) is None
        assert await first.get_count() == 1
        assert await second.get_count() == 1
        assert [e.content for e in await second.get_recent()] == ["Only in B"]

    @pytest.mark.asyncio
    async def test_get_count(self, storage, draft):
        """Test counting entries."""
        assert await storage.get_count() == 0
        for i in range(3):
            await storage.store(draft(f"note {i}"))
        assert await storage.get_count() == 3


class TestKeywordSearch:
    """Test substring search."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["postgresql", "POSTGRESQL", "PostgreSQL", "jsonb sup"])
    async def test_case_insensitive_match(self, storage, draft, query):
        """Test keyword search ignores case."""
        entry_id = await storage.store(draft("Using PostgreSQL for JSONB support"))
        await storage.store(draft("Redis is the cache"))

        results = await storage.search_by_keyword(query)

        assert [e.id for e in results] == [entry_id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["über-service", "ÜBER-SERVICE", "ärger"])
    async def test_case_insensitive_beyond_ascii(self, storage, draft, query):
        """Test case folding also covers non-ASCII letters."""
        entry_id = await storage.store(draft("Über-Service handles Ärger"))
        await storage.store(draft("Redis is the cache"))

        results = await storage.search_by_keyword(query)

        assert [e.id for e in results] == [entry_id]

    @pytest.mark.asyncio
    async def test_no_match(self, storage, draft):
        """Test keyword search without hits."""
        await storage.store(draft("Redis is the cache"))
        assert await storage.search_by_keyword("kafka") == []

    @pytest.mark.asyncio
    async def test_wildcards_match_literally(self, storage, draft):
        """Test pattern characters in the query are not wildcards."""
        entry_id = await storage.store(draft("Coverage must stay at 100%"))
        await storage.store(draft("Coverage is tracked in CI"))
        await storage.store(draft("snake_case for modules"))

        assert [e.id for e in await storage.search_by_keyword("%")] == [entry_id]
        assert len(await storage.search_by_keyword("_")) == 1

    @pytest.mark.asyncio
    async def test_orders_by_importance(self, storage, draft):
        """Test more important matches come first."""
        low = await storage.store(draft("api uses REST", importance=0.2))
        high = await storage.store(draft("api gateway terminates TLS", importance=0.9))
        mid = await storage.store(draft("api versioning in the path", importance=0.5))

        results = await storage.search_by_keyword("api")

        assert [e.id for e in results] == [high, mid, low]

    @pytest.mark.asyncio
    async def test_respects_limit(self, storage, draft):
        """Test the result limit."""
        for i in range(5):
            await storage.store(draft(f"service {i}"))

        results = await storage.search_by_keyword("service", MemorySearchOptions(limit=2))
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_filters(self, storage, draft):
        """Test type, importance and tag filters."""
        decision = await storage.store(draft(
            "db: PostgreSQL", MemoryType.DECISION, importance=0.8, tags=["db"]
        ))
        await storage.store(draft("db: tune pool size", MemoryType.TODO, importance=0.5, tags=["db"]))
        await storage.store(draft("db: flaky migration", MemoryType.ISSUE, importance=0.3, tags=["ci"]))

        by_type = await storage.search_by_keyword(
            "db", MemorySearchOptions(memory_type=MemoryType.DECISION)
        )
        by_importance = await storage.search_by_keyword(
            "db", MemorySearchOptions(min_importance=0.6)
        )
        by_tag = await storage.search_by_keyword("db", MemorySearchOptions(tags=["ci"]))

        assert [e.id for e in by_type] == [decision]
        assert [e.id for e in by_importance] == [decision]
        assert [e.content for e in by_tag] == ["db: flaky migration"]

    @pytest.mark.asyncio
    async def test_counts_access(self, storage, draft):
        """Test every returned entry has its access count incremented."""
        entry_id = await storage.store(draft("Deploys go through ArgoCD"))

        results = await storage.search_by_keyword("argocd")
        assert results[0].access_count == 1

        await storage.search_by_keyword("argocd")
        entry = await storage.get(entry_id)
        assert entry.access_count == 2
        assert entry.updated_at > entry.created_at


class TestEmbeddingSearch:
    """Test similarity search."""

    @pytest.mark.asyncio
    async def test_ranks_by_similarity(self, storage, draft):
        """Test the closer vector ranks strictly ahead."""
        first = await storage.store(draft("first", embedding=[1.0, 0.0]))
        second = await storage.store(draft("second", embedding=[0.0, 1.0]))

        results = await storage.search_by_embedding([1.0, 0.0])

        assert [e.id for e in results] == [first, second]

    @pytest.mark.asyncio
    async def test_ignores_entries_without_embedding(self, storage, draft):
        """Test entries without vectors are not candidates."""
        embedded = await storage.store(draft("embedded", embedding=[0.6, 0.8]))
        await storage.store(draft("plain"))

        results = await storage.search_by_embedding([0.6, 0.8])

        assert [e.id for e in results] == [embedded]

    @pytest.mark.asyncio
    async def test_type_filter_and_limit(self, storage, draft):
        """Test filters apply to similarity search."""
        await storage.store(draft("a", MemoryType.PATTERN, embedding=[1.0, 0.0]))
        wanted = await storage.store(draft("b", MemoryType.ISSUE, embedding=[0.9, 0.1]))
        await storage.store(draft("c", MemoryType.ISSUE, embedding=[0.0, 1.0]))

        results = await storage.search_by_embedding(
            [1.0, 0.0],
            MemorySearchOptions(memory_type=MemoryType.ISSUE, limit=1),
        )

        assert [e.id for e in results] == [wanted]

    @pytest.mark.asyncio
    async def test_unvectored_entries_do_not_fill_the_pool(self, storage, draft):
        """Test important entries without vectors leave room for vectored ones."""
        for i in range(SIMILARITY_CANDIDATE_POOL):
            await storage.store(draft(f"plain {i}", importance=0.9))
        target = await storage.store(draft("vectored", importance=0.2, embedding=[1.0, 0.0]))

        results = await storage.search_by_embedding([1.0, 0.0])

        assert [e.id for e in results] == [target]

    @pytest.mark.asyncio
    async def test_other_types_do_not_fill_the_pool(self, storage, draft):
        """Test a type filter still finds less important entries of that type."""
        for i in range(SIMILARITY_CANDIDATE_POOL):
            await storage.store(draft(f"decision {i}", MemoryType.DECISION, importance=0.9, embedding=[1.0, 0.0]))
        target = await storage.store(draft("todo", MemoryType.TODO, importance=0.2, embedding=[1.0, 0.0]))

        results = await storage.search_by_embedding(
            [1.0, 0.0], MemorySearchOptions(memory_type=MemoryType.TODO)
        )

        assert [e.id for e in results] == [target]

    @pytest.mark.asyncio
    async def test_counts_access(self, storage, draft):
        """Test similarity hits count as accesses."""
        entry_id = await storage.store(draft("vector", embedding=[1.0, 0.0]))

        await storage.search_by_embedding([1.0, 0.0])

        entry = await storage.get(entry_id)
        assert entry.access_count == 1


class TestListings:
    """Test listing operations."""

    @pytest.mark.asyncio
    async def test_get_by_type(self, storage, draft):
        """Test only entries of the requested type are returned."""
        await storage.store(draft("REST API", MemoryType.ARCHITECTURE))
        todo = await storage.store(draft("Add rate limiting", MemoryType.TODO))

        results = await storage.get_by_type(MemoryType.TODO)

        assert [e.id for e in results] == [todo]

    @pytest.mark.asyncio
    async def test_get_by_tags_is_a_union(self, storage, draft):
        """Test entries with any of the tags are returned."""
        auth = await storage.store(draft("JWT in cookies", tags=["auth"]))
        security = await storage.store(draft("CSP headers", tags=["security"]))
        await storage.store(draft("Grafana dashboards", tags=["observability"]))

        results = await storage.get_by_tags(["auth", "security"])

        assert {e.id for e in results} == {auth, security}

    @pytest.mark.asyncio
    async def test_get_by_tags_matches_whole_tags(self, storage, draft):
        """Test a tag does not match a longer tag containing it."""
        await storage.store(draft("OAuth provider", tags=["authentication"]))
        await storage.store(draft("Document store", tags=["mongo"]))
        exact = await storage.store(draft("Session tokens", tags=["auth", "go"]))

        assert [e.id for e in await storage.get_by_tags(["auth"])] == [exact]
        assert [e.id for e in await storage.get_by_tags(["go"])] == [exact]

    @pytest.mark.asyncio
    async def test_get_by_tags_no_duplicates(self, storage, draft):
        """Test an entry matching several tags is returned once."""
        entry_id = await storage.store(draft("Shared", tags=["a", "b"]))

        results = await storage.get_by_tags(["a", "b"])

        assert [e.id for e in results] == [entry_id]

    @pytest.mark.asyncio
    async def test_get_recent_newest_first(self, storage, draft):
        """Test recency order and limit."""
        ids = [await storage.store(draft(f"note {i}")) for i in range(4)]

        results = await storage.get_recent(3)

        assert [e.id for e in results] == list(reversed(ids))[:3]

    @pytest.mark.asyncio
    async def test_get_important_order(self, storage, draft):
        """Test importance order with access count breaking ties."""
        await storage.store(draft("minor", importance=0.2))
        tied_a = await storage.store(draft("tied alpha", importance=0.7))
        tied_b = await storage.store(draft("tied bravo", importance=0.7))
        top = await storage.store(draft("top", importance=0.95))

        await storage.search_by_keyword("bravo")

        results = await storage.get_important(3)

        assert [e.id for e in results] == [top, tied_b, tied_a]

    @pytest.mark.asyncio
    async def test_listings_do_not_count_access(self, storage, draft):
        """Test only searches increment access counts."""
        entry_id = await storage.store(draft("note", MemoryType.CONFIG, tags=["x"]))

        await storage.get(entry_id)
        await storage.get_by_type(MemoryType.CONFIG)
        await storage.get_by_tags(["x"])
        await storage.get_recent()
        await storage.get_important()

        entry = await storage.get(entry_id)
        assert entry.access_count == 0


class TestUpdateAndDelete:
    """Test mutation operations."""

    @pytest.mark.asyncio
    async def test_partial_update(self, storage, draft):
        """Test only supplied fields change."""
        entry_id = await storage.store(draft(
            "Old content", importance=0.4, metadata={"k": "v"}, tags=["t"]
        ))

        assert await storage.update(entry_id, MemoryUpdate(content="New content")) is True

        entry = await storage.get(entry_id)
        assert entry.content == "New content"
        assert entry.importance == 0.4
        assert entry.metadata == {"k": "v"}
        assert entry.tags == ["t"]
        assert entry.updated_at > entry.created_at

    @pytest.mark.asyncio
    async def test_update_clamps_importance(self, storage, draft):
        """Test updated importance is clamped."""
        entry_id = await storage.store(draft("note"))

        await storage.update(entry_id, MemoryUpdate(importance=3.0))

        assert (await storage.get(entry_id)).importance == 1.0

    @pytest.mark.asyncio
    async def test_update_importance_reorders(self, storage, draft):
        """Test importance changes are reflected in get_important."""
        first = await storage.store(draft("first", importance=0.9))
        second = await storage.store(draft("second", importance=0.1))

        await storage.update(second, MemoryUpdate(importance=0.95))

        results = await storage.get_important(2)
        assert [e.id for e in results] == [second, first]

    @pytest.mark.asyncio
    async def test_update_tags_rebuilds_tag_lookup(self, storage, draft):
        """Test old tags stop matching and new tags match."""
        entry_id = await storage.store(draft("Retry policy", tags=["old"]))

        await storage.update(entry_id, MemoryUpdate(tags=["new", "resilience"]))

        assert await storage.get_by_tags(["old"]) == []
        assert [e.id for e in await storage.get_by_tags(["new"])] == [entry_id]
        assert (await storage.get(entry_id)).tags == ["new", "resilience"]

    @pytest.mark.asyncio
    async def test_update_missing(self, storage):
        """Test updating an unknown id is a no-op."""
        assert await storage.update("missing", MemoryUpdate(content="x")) is False

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, storage, draft):
        """Test deleting twice is safe."""
        entry_id = await storage.store(draft("Temporary", MemoryType.TODO, tags=["tmp"]))

        assert await storage.delete(entry_id) is True
        assert await storage.delete(entry_id) is False

        assert await storage.get(entry_id) is None
        assert await storage.get_count() == 0
        assert await storage.get_by_tags(["tmp"]) == []
        assert await storage.get_by_type(MemoryType.TODO) == []
        assert await storage.get_recent() == []
        assert await storage.get_important() == []

    @pytest.mark.asyncio
    async def test_increment_access_missing(self, storage):
        """Test incrementing an unknown id does nothing."""
        await storage.increment_access("missing")

    @pytest.mark.asyncio
    async def test_clear_only_affects_project(self, storage_factory, draft):
        """Test clear leaves other projects alone."""
        mine = storage_factory(project_id="mine")
        theirs = storage_factory(project_id="theirs")
        await mine.store(draft("a", project_id="mine", tags=["x"]))
        await mine.store(draft("b", project_id="mine", embedding=[1.0, 0.0]))
        await theirs.store(draft("c", project_id="theirs", tags=["x"]))

        await mine.clear()

        assert await mine.get_count() == 0
        assert await mine.get_by_tags(["x"]) == []
        assert await theirs.get_count() == 1
        assert [e.content for e in await theirs.get_by_tags(["x"])] == ["c"]

    @pytest.mark.asyncio
    async def test_is_available(self, storage):
        """Test the liveness probe."""
        assert await storage.is_available() is True


class TestRetention:
    """Test count eviction and age expiry."""

    @pytest.mark.asyncio
    async def test_eviction_keeps_most_important(self, storage_factory, draft):
        """Test storing past the limit keeps the highest-importance entries."""
        storage = storage_factory(RetentionPolicy(max_memories=10, eviction_batch=0))

        for i in range(15):
            await storage.store(draft(f"entry {i}", importance=(i + 1) / 20))

        assert await storage.get_count() == 10
        important = await storage.get_important(10)
        assert [e.importance for e in important] == [(i + 1) / 20 for i in range(14, 4, -1)]

    @pytest.mark.asyncio
    async def test_eviction_margin(self, storage_factory, draft):
        """Test eviction removes a batch beyond the overflow."""
        storage = storage_factory(RetentionPolicy(max_memories=20, eviction_batch=100))

        for i in range(21):
            await storage.store(draft(f"entry {i}", importance=0.5))

        # margin is capped at a tenth of the limit
        assert await storage.get_count() == 18

    @pytest.mark.asyncio
    async def test_eviction_prefers_least_accessed_oldest(self, storage_factory, draft):
        """Test ties on importance are broken by access count, then age."""
        storage = storage_factory(RetentionPolicy(max_memories=3, eviction_batch=0))

        alpha = await storage.store(draft("alpha service"))
        bravo = await storage.store(draft("bravo service"))
        charlie = await storage.store(draft("charlie service"))
        await storage.search_by_keyword("alpha")

        delta = await storage.store(draft("delta service"))

        assert await storage.get(bravo) is None
        for entry_id in (alpha, charlie, delta):
            assert await storage.get(entry_id) is not None

    @pytest.mark.asyncio
    async def test_expiry_exempts_high_importance(self, storage, draft, clock):
        """Test old entries expire unless highly important."""
        keep = await storage.store(draft("Core architecture", importance=0.9))
        drop = await storage.store(draft("Passing remark", importance=0.3))

        clock.advance(days=91)
        removed = await storage.enforce_retention()

        assert removed == 1
        assert await storage.get(keep) is not None
        assert await storage.get(drop) is None
        assert await storage.get_count() == 1

    @pytest.mark.asyncio
    async def test_expiry_runs_after_store(self, storage, draft, clock):
        """Test a store sweeps expired entries."""
        old = await storage.store(draft("stale", importance=0.5))

        clock.advance(days=120)
        fresh = await storage.store(draft("fresh", importance=0.5))

        assert await storage.get(old) is None
        assert await storage.get(fresh) is not None

    @pytest.mark.asyncio
    async def test_recent_entries_do_not_expire(self, storage, draft, clock):
        """Test entries inside the window survive."""
        entry_id = await storage.store(draft("recent", importance=0.1))

        clock.advance(days=89)
        assert await storage.enforce_retention() == 0
        assert await storage.get(entry_id) is not None

    @pytest.mark.asyncio
    async def test_no_ttl_disables_expiry(self, storage_factory, draft, clock):
        """Test expiry can be turned off."""
        storage = storage_factory(RetentionPolicy(ttl_days=None))
        entry_id = await storage.store(draft("forever", importance=0.1))

        clock.advance(days=1000)
        await storage.enforce_retention()

        assert await storage.get(entry_id) is not None


class TestErrors:
    """Test the storage error hierarchy."""

    def test_only_configuration_errors_are_raised(self):
        """Test an unreachable backend is not an exception of its own."""
        assert issubclass(ConfigurationError, MemoryStoreError)
        assert MemoryStoreError.__subclasses__() == [ConfigurationError]
