from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionState(str, Enum):
    planning = "planning"
    executing = "executing"
    paused = "paused"
    awaiting_approval = "awaiting_approval"
    halted = "halted"
    completed = "completed"
    failed = "failed"


TERMINAL_STATES = frozenset({ExecutionState.completed, ExecutionState.failed})


class StepStatus(str, Enum):
    pending = "pending"
    executing = "executing"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class HaltReason(str, Enum):
    """Machine-checkable reason codes attached to halted or failed executions."""

    goal_invalidated = "goal_invalidated"
    scope_expanded = "scope_expanded"
    uncertainty_exceeded = "uncertainty_exceeded"
    budget_exhausted = "budget_exhausted"
    dependency_unmet = "dependency_unmet"
    step_failed = "step_failed"
    step_limit_reached = "step_limit_reached"
    stopping_conditions_unmet = "stopping_conditions_unmet"
    user_rejected = "user_rejected"
    user_requested = "user_requested"
    action_blocked = "action_blocked"
    rollback_failed = "rollback_failed"


class WarningLevel(str, Enum):
    none = "none"
    low = "low"
    medium = "medium"
    high = "high"
    exceeded = "exceeded"


class ConfirmationDecision(str, Enum):
    approved = "approved"
    rejected = "rejected"


class Goal(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str = Field(min_length=1)
    success_criteria: List[str] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    stopping_conditions: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    validated_at: Optional[datetime] = None


class PreCheckResult(BaseSchema):
    """Outcome of the guard evaluation performed before a step runs.

    Every guard is always recorded. ``first_failure`` names the guard that
    decides the execution's reaction, or is ``None`` when all guards pass.
    """

    goal_still_valid: bool
    scope_unchanged: bool
    uncertainty_level: int = Field(ge=0, le=100)
    budget_remaining: bool
    dependencies_met: bool
    first_failure: Optional[HaltReason] = None

    @property
    def passed(self) -> bool:
        return self.first_failure is None


class StepResult(BaseSchema):
    success: bool
    output: Optional[Any] = None
    error: Optional[str] = None
    changes_applied: List[str] = Field(default_factory=list)
    rollback_available: bool = True
    tokens_used: int = Field(default=0, ge=0)
    cost_cents: int = Field(default=0, ge=0)


class ProposedStep(BaseSchema):
    """A step the agent runtime would like to run next.

    ``action`` is the concrete operation string matched against safety rules,
    e.g. ``"git push origin main"`` or ``"edit:src/app/config.py"``.
    """

    description: str
    action: str
    resources: List[str] = Field(default_factory=list)
    depends_on: List[int] = Field(default_factory=list)
    estimated_tokens: int = Field(default=0, ge=0)
    estimated_cost_cents: int = Field(default=0, ge=0)
    risk_hint: Optional[RiskLevel] = None


class Step(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    step_number: int = Field(ge=1)
    description: str
    action: str
    resources: List[str] = Field(default_factory=list)
    depends_on: List[int] = Field(default_factory=list)
    status: StepStatus = StepStatus.pending
    pre_checks: PreCheckResult
    risk_level: RiskLevel = RiskLevel.low
    result: Optional[StepResult] = None
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class ConfirmationAction(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    execution_id: str
    step_id: Optional[str] = None
    type: str
    description: str
    risk_level: RiskLevel
    reason: str
    details: Dict[str, Any] = Field(default_factory=dict)
    agent_type: Optional[str] = None
    requires_typed_confirmation: bool = False
    created_at: datetime = Field(default_factory=_utc_now)


class Execution(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_type: str
    goal: Goal
    state: ExecutionState = ExecutionState.planning

    max_steps: int = Field(default=50, ge=1)
    uncertainty_threshold: int = Field(default=70, ge=0, le=100)
    allow_scope_expansion: bool = False
    require_approval_for_changes: bool = True
    auto_checkpoint: bool = True
    scope: List[str] = Field(default_factory=list)
    budget_scope: str = "default"
    max_total_tokens: Optional[int] = Field(default=None, ge=1)
    max_cost_cents: Optional[int] = Field(default=None, ge=1)

    steps: List[Step] = Field(default_factory=list)
    current_step_index: int = Field(default=0, ge=0)
    total_tokens_used: int = Field(default=0, ge=0)
    total_cost_cents: int = Field(default=0, ge=0)

    started_at: datetime = Field(default_factory=_utc_now)
    last_activity_at: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None

    halt_reason: Optional[HaltReason] = None
    halt_details: Dict[str, Any] = Field(default_factory=dict)
    pending_action: Optional[ConfirmationAction] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def step_by_number(self, step_number: int) -> Optional[Step]:
        if 1 <= step_number <= len(self.steps):
            return self.steps[step_number - 1]
        return None

    def highest_completed_step(self) -> int:
        completed = [s.step_number for s in self.steps if s.status == StepStatus.completed]
        return max(completed, default=0)


class Checkpoint(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    execution_id: str
    step_number: int = Field(ge=1)
    description: Optional[str] = None
    automatic: bool = False
    created_at: datetime = Field(default_factory=_utc_now)


class RollbackPreview(BaseSchema):
    checkpoint_id: str
    target_step_number: int
    steps_to_revert: int
    checkpoints_to_remove: int
    changes_to_revert: List[str] = Field(default_factory=list)
    blocking_steps: List[int] = Field(default_factory=list)

    @property
    def can_rollback(self) -> bool:
        return not self.blocking_steps


class DecisionRecord(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    execution_id: str
    action: ConfirmationAction
    decision: ConfirmationDecision
    decided_by: Optional[str] = None
    decided_at: datetime = Field(default_factory=_utc_now)


class UsageRecord(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    scope: str
    execution_id: Optional[str] = None
    tokens: int = Field(default=0, ge=0)
    cost_cents: int = Field(default=0, ge=0)
    recorded_at: datetime = Field(default_factory=_utc_now)


class BudgetStatus(BaseSchema):
    scope: str
    daily_limit: Optional[int] = None
    monthly_limit: Optional[int] = None
    daily_used: int = 0
    monthly_used: int = 0
    daily_remaining: Optional[int] = None
    monthly_remaining: Optional[int] = None
    daily_tokens_used: int = 0
    monthly_tokens_used: int = 0
    is_over_daily_limit: bool = False
    is_over_monthly_limit: bool = False
    warning_level: WarningLevel = WarningLevel.none

    @property
    def is_over_limit(self) -> bool:
        return self.is_over_daily_limit or self.is_over_monthly_limit


class UsageSummary(BaseSchema):
    scope: str
    today_cents: int = 0
    today_tokens: int = 0
    this_month_cents: int = 0
    this_month_tokens: int = 0
    all_time_cents: int = 0
    all_time_tokens: int = 0


class Judgment(BaseSchema):
    """Judgment provider's assessment of a proposed step.

    How these values are produced (LLM call, heuristic) is up to the provider.
    """

    goal_still_valid: bool = True
    uncertainty_level: int = Field(default=0, ge=0, le=100)
    rationale: Optional[str] = None
