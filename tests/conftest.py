"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import List

import fakeredis
import pytest
import pytest_asyncio

from agent_memory.config import MemoryConfig, RedisConfig, RetentionConfig, EmbeddingConfig
from agent_memory.llm.base import EmbeddingProvider
from agent_memory.memory.redis_storage import RedisStorage
from agent_memory.memory.sqlite_storage import SQLiteStorage
from agent_memory.memory.types import MemoryDraft, MemoryType


class FakeClock:
    """Deterministic clock that moves forward a millisecond per reading."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(milliseconds=1)
        return current

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StaticEmbedder(EmbeddingProvider):
    """Embedder returning preset vectors, counting calls."""

    name = "static"

    def __init__(self, vectors=None, default=None):
        self.vectors = dict(vectors or {})
        self.default = default if default is not None else [0.0, 0.0]
        self.calls: List[str] = []
        self.batch_calls: List[List[str]] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return self.vectors.get(text, self.default)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.batch_calls.append(list(texts))
        return [self.vectors.get(text, self.default) for text in texts]


class FailingEmbedder(EmbeddingProvider):
    """Embedder whose every call fails."""

    name = "failing"

    async def embed(self, text: str) -> List[float]:
        raise RuntimeError("embedding service down")

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        raise RuntimeError("embedding service down")


@pytest.fixture
def static_embedder():
    """Factory for embedders with preset vectors."""
    return StaticEmbedder


@pytest.fixture
def failing_embedder():
    return FailingEmbedder()


@pytest.fixture
def draft():
    """Factory for drafts with test defaults."""
    def build(content: str, memory_type=MemoryType.CONTEXT, project_id: str = "test-project", **kwargs) -> MemoryDraft:
        return MemoryDraft(project_id=project_id, content=content, memory_type=memory_type, **kwargs)
    return build


@pytest.fixture
def clock():
    """A fake clock shared by the storage under test."""
    return FakeClock()


@pytest.fixture
def redis_server():
    """An isolated in-memory Redis server."""
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    """Async client connected to the fake server."""
    return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)


@pytest.fixture(params=["sqlite", "redis"])
def backend_kind(request):
    """Run a test against both storage backends."""
    return request.param


@pytest_asyncio.fixture
async def storage_factory(backend_kind, tmp_path, clock, redis_server):
    """Build storage instances of the parametrized kind, closing them after the test."""
    created = []

    def build(retention=None, project_id="test-project"):
        if backend_kind == "sqlite":
            storage = SQLiteStorage(
                project_id,
                db_path=str(tmp_path / "memory.db"),
                retention=retention,
                clock=clock,
            )
        else:
            client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
            storage = RedisStorage(
                project_id,
                client=client,
                retention=retention,
                clock=clock,
            )
        created.append(storage)
        return storage

    yield build

    for storage in created:
        await storage.close()


@pytest_asyncio.fixture
async def storage(storage_factory):
    """A storage backend with the default retention policy."""
    return storage_factory()


@pytest_asyncio.fixture
async def sqlite_storage(tmp_path, clock):
    """A SQLite backend on a temporary file."""
    storage = SQLiteStorage("test-project", db_path=str(tmp_path / "memory.db"), clock=clock)
    yield storage
    await storage.close()


@pytest_asyncio.fixture
async def redis_storage(redis_client, clock):
    """A Redis backend on a fake server."""
    storage = RedisStorage("test-project", client=redis_client, clock=clock)
    yield storage
    await storage.close()


@pytest.fixture
def memory_config(tmp_path):
    """A configuration using SQLite only, with embeddings disabled."""
    return MemoryConfig(
        project_id="test-project",
        redis=RedisConfig(),
        sqlite_path=str(tmp_path / "memory.db"),
        retention=RetentionConfig(),
        embedding=EmbeddingConfig(enabled=False),
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove environment variables that influence configuration."""
    for name in [
        "AGENT_MEMORY_PROJECT",
        "AGENT_MEMORY_SQLITE_PATH",
        "AGENT_MEMORY_MAX_MEMORIES",
        "AGENT_MEMORY_TTL_DAYS",
        "AGENT_MEMORY_EMBEDDINGS",
        "REDIS_URL",
        "REDIS_HOST",
        "REDIS_PORT",
        "REDIS_PASSWORD",
        "REDIS_DB",
        "GITHUB_TOKEN",
        "OPENAI_API_KEY",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
