"""Persistence layer: repository protocols plus in-memory and SQL implementations.

The SQL implementations live in ``repos.sql`` and are imported explicitly so
that using the in-memory store never requires a database driver.
"""

from .interfaces import CheckpointRepository, DecisionRepository, ExecutionRepository, UsageRepository
from .memory import (
    InMemoryCheckpointRepository,
    InMemoryDecisionRepository,
    InMemoryExecutionRepository,
    InMemoryRepoBundle,
    InMemoryUsageRepository,
    build_memory_repos,
)

__all__ = [
    "CheckpointRepository",
    "DecisionRepository",
    "ExecutionRepository",
    "UsageRepository",
    "InMemoryCheckpointRepository",
    "InMemoryDecisionRepository",
    "InMemoryExecutionRepository",
    "InMemoryRepoBundle",
    "InMemoryUsageRepository",
    "build_memory_repos",
]
