"""Initial governance schema for ExecGuard-AI

Revision ID: 20260301_000000
Revises: None
Create Date: 2026-03-01 00:00:00.000000

Creates the tables used by the SQL repositories:
- eg_executions (one row per execution, full snapshot in a JSON document)
- eg_checkpoints (one checkpoint per step number per execution)
- eg_decisions (append-only confirmation audit log)
- eg_usage_ledger (token and cost usage per budget scope)

Revision format: YYYYMMDD_HHMMSS_description

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20260301_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonDocument = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    """Create all governance tables."""

    op.create_table(
        "eg_executions",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("agent_type", sa.String(64), nullable=False),
        sa.Column("state", sa.String(32), nullable=False),
        sa.Column("halt_reason", sa.String(64), nullable=True),
        sa.Column("step_count", sa.Integer(), nullable=False),
        sa.Column("snapshot", JsonDocument, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_eg_executions_state", "eg_executions", ["state"])

    op.create_table(
        "eg_checkpoints",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("execution_id", sa.String(64), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("automatic", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("execution_id", "step_number", name="uq_eg_checkpoints_step"),
    )
    op.create_index("ix_eg_checkpoints_execution_id", "eg_checkpoints", ["execution_id"])

    op.create_table(
        "eg_decisions",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("execution_id", sa.String(64), nullable=False),
        sa.Column("decision", sa.String(16), nullable=False),
        sa.Column("decided_by", sa.String(128), nullable=True),
        sa.Column("action", JsonDocument, nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_eg_decisions_execution_id", "eg_decisions", ["execution_id"])

    op.create_table(
        "eg_usage_ledger",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("scope", sa.String(128), nullable=False),
        sa.Column("execution_id", sa.String(64), nullable=True),
        sa.Column("tokens", sa.Integer(), nullable=False),
        sa.Column("cost_cents", sa.Integer(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_eg_usage_ledger_scope", "eg_usage_ledger", ["scope"])
    op.create_index("ix_eg_usage_ledger_recorded_at", "eg_usage_ledger", ["recorded_at"])


def downgrade() -> None:
    """Drop all governance tables."""
    op.drop_index("ix_eg_usage_ledger_recorded_at", table_name="eg_usage_ledger")
    op.drop_index("ix_eg_usage_ledger_scope", table_name="eg_usage_ledger")
    op.drop_table("eg_usage_ledger")
    op.drop_index("ix_eg_decisions_execution_id", table_name="eg_decisions")
    op.drop_table("eg_decisions")
    op.drop_index("ix_eg_checkpoints_execution_id", table_name="eg_checkpoints")
    op.drop_table("eg_checkpoints")
    op.drop_index("ix_eg_executions_state", table_name="eg_executions")
    op.drop_table("eg_executions")
