"""
Tests for the per-project registry.
"""

import asyncio

import pytest

from agent_memory.memory.registry import ProjectMemoryRegistry
from agent_memory.memory.types import StorageKind


class TestProjectMemoryRegistry:
    """Test cases for ProjectMemoryRegistry."""

    @pytest.mark.asyncio
    async def test_get_creates_once(self, memory_config):
        """Test the same facade is returned for a project."""
        async with ProjectMemoryRegistry(memory_config) as registry:
            first = await registry.get("alpha")
            second = await registry.get("alpha")

            assert first is second
            assert first.project_id == "alpha"
            assert "alpha" in registry
            assert registry.project_ids == ["alpha"]

    @pytest.mark.asyncio
    async def test_concurrent_get(self, memory_config):
        """Test concurrent first use creates a single facade."""
        async with ProjectMemoryRegistry(memory_config) as registry:
            memories = await asyncio.gather(*[registry.get("alpha") for _ in range(5)])

        assert len({id(m) for m in memories}) == 1

    @pytest.mark.asyncio
    async def test_projects_are_isolated(self, memory_config):
        """Test facades of different projects do not share entries."""
        async with ProjectMemoryRegistry(memory_config) as registry:
            alpha = await registry.get("alpha")
            beta = await registry.get("beta")
            await alpha.store_context("alpha only")

            assert await alpha.get_count() == 1
            assert await beta.get_count() == 0

    @pytest.mark.asyncio
    async def test_shared_redis_client(self, memory_config, redis_client, static_embedder):
        """Test the shared client and embedder reach every facade."""
        embedder = static_embedder()
        async with ProjectMemoryRegistry(
            memory_config, embedder=embedder, redis_client=redis_client
        ) as registry:
            memory = await registry.get("alpha")

            assert memory.storage_type == StorageKind.PRIMARY
            assert memory.embedding_provider == "static"

    @pytest.mark.asyncio
    async def test_close_one(self, memory_config):
        registry = ProjectMemoryRegistry(memory_config)
        await registry.get("alpha")

        assert await registry.close("alpha") is True
        assert await registry.close("alpha") is False
        assert "alpha" not in registry

    @pytest.mark.asyncio
    async def test_close_all(self, memory_config):
        """Test close_all closes and forgets every facade."""
        registry = ProjectMemoryRegistry(memory_config)
        alpha = await registry.get("alpha")
        await registry.get("beta")

        await registry.close_all()

        assert registry.project_ids == []
        assert alpha.storage._connection is None
