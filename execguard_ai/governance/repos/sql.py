from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a SQL-backed persistence implementation for the
repository interfaces defined in ``execguard_ai.governance.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev; production uses the
  Alembic migrations).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Every persisted artifact is durable when the method returns, which is
what the state machine relies on after each transition.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..schemas.domain import (
    Checkpoint,
    ConfirmationAction,
    ConfirmationDecision,
    DecisionRecord,
    Execution,
    ExecutionState,
    UsageRecord,
)
from .interfaces import CheckpointRepository, DecisionRepository, ExecutionRepository, UsageRepository
from .models import Base, CheckpointRow, DecisionRow, ExecutionRow, UsageRow


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Postgres URLs are normalized to the async driver, e.g. ``postgresql://``
    becomes ``postgresql+asyncpg://``. Other URLs (such as
    ``sqlite+aiosqlite://``) are used as given.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata (tests and local development)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; values are always written in UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class SqlExecutionRepository(ExecutionRepository):
    """SQL implementation of ``ExecutionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def save(self, execution: Execution) -> None:
        """
        Insert or replace the execution snapshot.

        Args:
            execution: The execution to persist.
        """
        snapshot = execution.model_dump(mode="json")
        async with self.session_factory() as s:
            row = await s.get(ExecutionRow, execution.id)
            if row is None:
                row = ExecutionRow(id=execution.id, started_at=execution.started_at)
                s.add(row)
            row.agent_type = execution.agent_type
            row.state = execution.state.value
            row.halt_reason = execution.halt_reason.value if execution.halt_reason is not None else None
            row.step_count = len(execution.steps)
            row.snapshot = snapshot
            row.last_activity_at = execution.last_activity_at
            await s.commit()

    async def get(self, execution_id: str) -> Optional[Execution]:
        async with self.session_factory() as s:
            row = await s.get(ExecutionRow, execution_id)
            if row is None:
                return None
            return Execution.model_validate(row.snapshot)

    async def list(
        self, state: Optional[ExecutionState] = None, limit: int = 100, offset: int = 0
    ) -> list[Execution]:
        """
        List executions, newest first.

        Args:
            state: Optional state to filter by.
            limit: Max number of records to return.
            offset: Pagination offset.
        """
        async with self.session_factory() as s:
            stmt = select(ExecutionRow)
            if state is not None:
                stmt = stmt.where(ExecutionRow.state == state.value)
            stmt = stmt.order_by(ExecutionRow.started_at.desc()).offset(offset).limit(limit)
            result = await s.execute(stmt)
            return [Execution.model_validate(row.snapshot) for row in result.scalars().all()]


@dataclass(frozen=True)
class SqlCheckpointRepository(CheckpointRepository):
    """SQL implementation of ``CheckpointRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def add(self, checkpoint: Checkpoint) -> None:
        async with self.session_factory() as s:
            s.add(
                CheckpointRow(
                    id=checkpoint.id,
                    execution_id=checkpoint.execution_id,
                    step_number=checkpoint.step_number,
                    description=checkpoint.description,
                    automatic=checkpoint.automatic,
                    created_at=checkpoint.created_at,
                )
            )
            await s.commit()

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        async with self.session_factory() as s:
            row = await s.get(CheckpointRow, checkpoint_id)
            return _checkpoint_from_row(row) if row is not None else None

    async def list(self, execution_id: str) -> list[Checkpoint]:
        async with self.session_factory() as s:
            stmt = (
                select(CheckpointRow)
                .where(CheckpointRow.execution_id == execution_id)
                .order_by(CheckpointRow.step_number.asc(), CheckpointRow.created_at.asc())
            )
            result = await s.execute(stmt)
            return [_checkpoint_from_row(row) for row in result.scalars().all()]

    async def update(self, checkpoint: Checkpoint) -> None:
        async with self.session_factory() as s:
            row = await s.get(CheckpointRow, checkpoint.id)
            if row is None:
                return
            row.description = checkpoint.description
            row.automatic = checkpoint.automatic
            await s.commit()

    async def delete(self, checkpoint_id: str) -> None:
        async with self.session_factory() as s:
            await s.execute(delete(CheckpointRow).where(CheckpointRow.id == checkpoint_id))
            await s.commit()


def _checkpoint_from_row(row: CheckpointRow) -> Checkpoint:
    return Checkpoint(
        id=row.id,
        execution_id=row.execution_id,
        step_number=row.step_number,
        description=row.description,
        automatic=row.automatic,
        created_at=_as_utc(row.created_at),
    )


@dataclass(frozen=True)
class SqlDecisionRepository(DecisionRepository):
    """SQL implementation of ``DecisionRepository`` (append-only)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, record: DecisionRecord) -> None:
        async with self.session_factory() as s:
            s.add(
                DecisionRow(
                    id=record.id,
                    execution_id=record.execution_id,
                    decision=record.decision.value,
                    decided_by=record.decided_by,
                    action=record.action.model_dump(mode="json"),
                    decided_at=record.decided_at,
                )
            )
            await s.commit()

    async def list(self, execution_id: str) -> list[DecisionRecord]:
        async with self.session_factory() as s:
            stmt = (
                select(DecisionRow)
                .where(DecisionRow.execution_id == execution_id)
                .order_by(DecisionRow.decided_at.asc())
            )
            result = await s.execute(stmt)
            return [
                DecisionRecord(
                    id=row.id,
                    execution_id=row.execution_id,
                    action=ConfirmationAction.model_validate(row.action),
                    decision=ConfirmationDecision(row.decision),
                    decided_by=row.decided_by,
                    decided_at=_as_utc(row.decided_at),
                )
                for row in result.scalars().all()
            ]


@dataclass(frozen=True)
class SqlUsageRepository(UsageRepository):
    """SQL implementation of ``UsageRepository`` (append-only ledger)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, record: UsageRecord) -> None:
        async with self.session_factory() as s:
            s.add(
                UsageRow(
                    id=record.id,
                    scope=record.scope,
                    execution_id=record.execution_id,
                    tokens=record.tokens,
                    cost_cents=record.cost_cents,
                    recorded_at=record.recorded_at,
                )
            )
            await s.commit()

    async def totals(
        self, scope: str, *, since: Optional[datetime] = None, until: Optional[datetime] = None
    ) -> Tuple[int, int]:
        """
        Sum tokens and cents for a scope in ``[since, until)``.

        Args:
            scope: The budget scope.
            since: Inclusive lower bound.
            until: Exclusive upper bound.
        """
        async with self.session_factory() as s:
            stmt = select(
                func.coalesce(func.sum(UsageRow.tokens), 0),
                func.coalesce(func.sum(UsageRow.cost_cents), 0),
            ).where(UsageRow.scope == scope)
            if since is not None:
                stmt = stmt.where(UsageRow.recorded_at >= since)
            if until is not None:
                stmt = stmt.where(UsageRow.recorded_at < until)
            tokens, cents = (await s.execute(stmt)).one()
            return int(tokens), int(cents)


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    executions: SqlExecutionRepository
    checkpoints: SqlCheckpointRepository
    decisions: SqlDecisionRepository
    usage: SqlUsageRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        executions=SqlExecutionRepository(session_factory=session_factory),
        checkpoints=SqlCheckpointRepository(session_factory=session_factory),
        decisions=SqlDecisionRepository(session_factory=session_factory),
        usage=SqlUsageRepository(session_factory=session_factory),
    )
