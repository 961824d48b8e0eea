from __future__ import annotations

"""SQLAlchemy ORM models for governance persistence.

These ORM models define the SQL schema used by the repository implementation
in ``execguard_ai.governance.repos.sql``.

Design
------

- Executions are stored as one row per execution. Frequently queried fields
  (state, agent type, halt reason) are real columns; the full snapshot,
  including the ordered step log, lives in a JSON document.
- Checkpoints, decisions and usage records are plain rows.
- JSON columns use JSONB on Postgres and generic JSON elsewhere.

Table names are prefixed with ``eg_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class ExecutionRow(Base):
    """Row model for ``eg_executions``.

    Key fields:

    - ``state``: current state of the execution state machine.
    - ``snapshot``: the full ``Execution`` document, steps included.
    """

    __tablename__ = "eg_executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    agent_type: Mapped[str] = mapped_column(String(64))
    state: Mapped[str] = mapped_column(String(32), index=True)
    halt_reason: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    step_count: Mapped[int] = mapped_column(Integer, default=0)

    snapshot: Mapped[Dict[str, Any]] = mapped_column(JsonDocument)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CheckpointRow(Base):
    """Row model for ``eg_checkpoints``. One checkpoint per step number per execution."""

    __tablename__ = "eg_checkpoints"
    __table_args__ = (UniqueConstraint("execution_id", "step_number", name="uq_eg_checkpoints_step"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(64), index=True)
    step_number: Mapped[int] = mapped_column(Integer)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    automatic: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class DecisionRow(Base):
    """Row model for ``eg_decisions``, the append-only confirmation audit log."""

    __tablename__ = "eg_decisions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    execution_id: Mapped[str] = mapped_column(String(64), index=True)
    decision: Mapped[str] = mapped_column(String(16))
    decided_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    action: Mapped[Dict[str, Any]] = mapped_column(JsonDocument)
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class UsageRow(Base):
    """Row model for ``eg_usage_ledger``."""

    __tablename__ = "eg_usage_ledger"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    scope: Mapped[str] = mapped_column(String(128), index=True)
    execution_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tokens: Mapped[int] = mapped_column(Integer, default=0)
    cost_cents: Mapped[int] = mapped_column(Integer, default=0)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
