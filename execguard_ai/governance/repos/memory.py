from __future__ import annotations

"""In-memory repository implementations.

These are the default persistence layer for library use and tests. Records are
deep-copied on the way in and on the way out so callers never share mutable
state with the store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..schemas.domain import Checkpoint, DecisionRecord, Execution, ExecutionState, UsageRecord


@dataclass
class InMemoryExecutionRepository:
    _items: Dict[str, Execution] = field(default_factory=dict)

    async def save(self, execution: Execution) -> None:
        self._items[execution.id] = execution.model_copy(deep=True)

    async def get(self, execution_id: str) -> Optional[Execution]:
        item = self._items.get(execution_id)
        return item.model_copy(deep=True) if item is not None else None

    async def list(
        self, state: Optional[ExecutionState] = None, limit: int = 100, offset: int = 0
    ) -> list[Execution]:
        items = [e for e in self._items.values() if state is None or e.state == state]
        items.sort(key=lambda e: e.started_at, reverse=True)
        return [e.model_copy(deep=True) for e in items[offset : offset + limit]]


@dataclass
class InMemoryCheckpointRepository:
    _items: Dict[str, Checkpoint] = field(default_factory=dict)

    async def add(self, checkpoint: Checkpoint) -> None:
        self._items[checkpoint.id] = checkpoint.model_copy(deep=True)

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        item = self._items.get(checkpoint_id)
        return item.model_copy(deep=True) if item is not None else None

    async def list(self, execution_id: str) -> list[Checkpoint]:
        items = [c for c in self._items.values() if c.execution_id == execution_id]
        items.sort(key=lambda c: (c.step_number, c.created_at))
        return [c.model_copy(deep=True) for c in items]

    async def update(self, checkpoint: Checkpoint) -> None:
        if checkpoint.id in self._items:
            self._items[checkpoint.id] = checkpoint.model_copy(deep=True)

    async def delete(self, checkpoint_id: str) -> None:
        self._items.pop(checkpoint_id, None)


@dataclass
class InMemoryDecisionRepository:
    _items: List[DecisionRecord] = field(default_factory=list)

    async def append(self, record: DecisionRecord) -> None:
        self._items.append(record.model_copy(deep=True))

    async def list(self, execution_id: str) -> list[DecisionRecord]:
        return [r.model_copy(deep=True) for r in self._items if r.execution_id == execution_id]


@dataclass
class InMemoryUsageRepository:
    _items: List[UsageRecord] = field(default_factory=list)

    async def append(self, record: UsageRecord) -> None:
        self._items.append(record.model_copy(deep=True))

    async def totals(
        self, scope: str, *, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Tuple[int, int]:
        tokens = 0
        cents = 0
        for r in self._items:
            if r.scope != scope:
                continue
            if since is not None and r.recorded_at < since:
                continue
            if until is not None and r.recorded_at >= until:
                continue
            tokens += r.tokens
            cents += r.cost_cents
        return tokens, cents


@dataclass(frozen=True)
class InMemoryRepoBundle:
    """Bundle of in-memory repositories sharing one process lifetime."""

    executions: InMemoryExecutionRepository = field(default_factory=InMemoryExecutionRepository)
    checkpoints: InMemoryCheckpointRepository = field(default_factory=InMemoryCheckpointRepository)
    decisions: InMemoryDecisionRepository = field(default_factory=InMemoryDecisionRepository)
    usage: InMemoryUsageRepository = field(default_factory=InMemoryUsageRepository)


def build_memory_repos() -> InMemoryRepoBundle:
    return InMemoryRepoBundle()
