"""
Registry of open ProjectMemory instances, one per project.

Owned by the process entry point and passed to whatever handles requests,
so facades are created on first use and closed explicitly at shutdown.
"""

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..llm.base import EmbeddingProvider
from .project_memory import ProjectMemory

if TYPE_CHECKING:
    from ..config import MemoryConfig


logger = logging.getLogger(__name__)


class ProjectMemoryRegistry:
    """
    Creates and caches one ProjectMemory per project id.

    Example usage:
        async with ProjectMemoryRegistry(config) as registry:
            memory = await registry.get("my-service")
            await memory.store_context("Deployed on Fly.io")
    """

    def __init__(
        self,
        base_config: "MemoryConfig",
        *,
        embedder: Optional[EmbeddingProvider] = None,
        redis_client: Optional[Any] = None,
    ):
        """
        Initialize the registry.

        Args:
            base_config: Configuration shared by all projects; its
                project_id is replaced per project.
            embedder: Embedding provider shared by all facades.
            redis_client: Asyncio Redis client shared by all facades.
        """
        self._base_config = base_config
        self._embedder = embedder
        self._redis_client = redis_client
        self._memories: Dict[str, ProjectMemory] = {}
        self._lock = asyncio.Lock()

    async def get(self, project_id: str) -> ProjectMemory:
        """Get the facade for a project, creating it on first use."""
        async with self._lock:
            memory = self._memories.get(project_id)
            if memory is None:
                config = dataclasses.replace(self._base_config, project_id=project_id)
                memory = await ProjectMemory.create(
                    config,
                    embedder=self._embedder,
                    redis_client=self._redis_client,
                )
                self._memories[project_id] = memory
                logger.debug(f"Opened project memory: {project_id}")
            return memory

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._memories

    @property
    def project_ids(self) -> List[str]:
        return list(self._memories)

    async def close(self, project_id: str) -> bool:
        """
        Close and forget one project's facade.

        Returns:
            True if the project was open
        """
        async with self._lock:
            memory = self._memories.pop(project_id, None)
        if memory is None:
            return False
        await memory.close()
        return True

    async def close_all(self) -> None:
        """Close every open facade."""
        async with self._lock:
            memories = list(self._memories.values())
            self._memories.clear()
        for memory in memories:
            await memory.close()
        if memories:
            logger.info(f"Closed {len(memories)} project memories")

    async def __aenter__(self) -> "ProjectMemoryRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
