"""
Agent Memory - persistent project knowledge for AI coding assistants.
"""

from .config import MemoryConfig, load_config
from .memory import (
    ConfigurationError,
    MemoryEntry,
    MemorySearchOptions,
    MemoryType,
    ProjectMemory,
    ProjectMemoryRegistry,
    ShortTermMemory,
    StorageKind,
)

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "MemoryConfig",
    "MemoryEntry",
    "MemorySearchOptions",
    "MemoryType",
    "ProjectMemory",
    "ProjectMemoryRegistry",
    "ShortTermMemory",
    "StorageKind",
    "load_config",
]
