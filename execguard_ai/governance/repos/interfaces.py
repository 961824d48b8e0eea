from __future__ import annotations

"""Repository interface contracts.

The governance core depends on these Protocols instead of concrete
persistence implementations.

Contract guidelines
-------------------

- All methods are async.
- ``ExecutionRepository.save`` is called after every state transition and
  must be durable when it returns (crash-consistent writes).
- Decision history and the usage ledger are append-only.
- Implementations must hand out copies; mutating a returned record never
  changes the stored one.
"""

from datetime import datetime
from typing import Optional, Protocol, Tuple

from ..schemas.domain import Checkpoint, DecisionRecord, Execution, ExecutionState, UsageRecord


class ExecutionRepository(Protocol):
    """Persist and query executions, including their full step log."""

    async def save(self, execution: Execution) -> None:
        """
        Insert or replace an execution snapshot.

        Args:
            execution: The execution to persist.
        """
        ...

    async def get(self, execution_id: str) -> Optional[Execution]:
        """
        Retrieve an execution by its ID.

        Args:
            execution_id: The execution identifier.

        Returns:
            The Execution if found, else None.
        """
        ...

    async def list(
        self, state: Optional[ExecutionState] = None, limit: int = 100, offset: int = 0
    ) -> list[Execution]:
        """
        List executions, newest first, optionally filtered by state.

        Args:
            state: Optional state to filter by.
            limit: Max number of records to return.
            offset: Pagination offset.
        """
        ...


class CheckpointRepository(Protocol):
    """Persist checkpoints of an execution's step sequence."""

    async def add(self, checkpoint: Checkpoint) -> None:
        """Persist a new checkpoint."""
        ...

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        """Retrieve a checkpoint by ID, or None."""
        ...

    async def list(self, execution_id: str) -> list[Checkpoint]:
        """
        List checkpoints of an execution in chronological order.

        Args:
            execution_id: The execution identifier.

        Returns:
            Checkpoints ordered by ``step_number`` ascending.
        """
        ...

    async def update(self, checkpoint: Checkpoint) -> None:
        """Persist a changed description or origin of an existing checkpoint."""
        ...

    async def delete(self, checkpoint_id: str) -> None:
        """Delete a checkpoint. Unknown ids are a no-op."""
        ...


class DecisionRepository(Protocol):
    """Append-only audit log of confirmation decisions."""

    async def append(self, record: DecisionRecord) -> None:
        """Append a decision record."""
        ...

    async def list(self, execution_id: str) -> list[DecisionRecord]:
        """List decisions for an execution, oldest first."""
        ...


class UsageRepository(Protocol):
    """Append-only usage ledger the Budget Tracker derives its status from."""

    async def append(self, record: UsageRecord) -> None:
        """Append a usage record."""
        ...

    async def totals(
        self, scope: str, *, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Tuple[int, int]:
        """
        Sum usage of a scope in the half-open window ``[since, until)``.

        Args:
            scope: The budget scope.
            since: Inclusive lower bound, or None for the beginning of time.
            until: Exclusive upper bound, or None for no upper bound.

        Returns:
            A ``(tokens, cost_cents)`` tuple.
        """
        ...
