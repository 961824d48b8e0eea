"""Execution governance core.

This package decides, for every step an agent wants to take, whether it may
proceed, must wait for a human, or must stop.

Design overview
---------------

- ``PreFlightCheckEngine`` evaluates the guards (goal validity, scope,
  uncertainty, budget, dependencies) before each step.
- ``ConfirmationGate`` classifies the risk of the step against the
  ``SafetyPolicy`` rules and raises confirmation actions for risky work.
- ``ExecutionEngine`` is a LangGraph state machine that processes exactly one
  step per pass; ``ExecutionActor`` serializes steps and control commands for
  one execution.
- ``CheckpointManager`` records checkpoints after completed steps and rolls
  back through the agent's inverse operations.
- ``BudgetTracker`` accounts spend per scope in daily and monthly buckets.
- ``ProgressStream`` fans out ``state`` and ``step`` events to readers.

Typical usage
-------------

Build a service with ``build_governance_service(runtime=..., judgment=...)``,
then call ``start_execution`` and follow the execution through ``subscribe``.
"""

from .config import BudgetLimits, ExecutionConfig, GovernanceConfig, TokenPricing
from .errors import (
    ActionNotFound,
    BudgetExceeded,
    CheckpointNotFound,
    ConfirmationPhraseMismatch,
    ExecutionNotFound,
    GovernanceError,
    GuardFailure,
    InvalidOperation,
    NotFoundError,
    RollbackFailure,
    RuntimeFailure,
)
from .factory import build_engine, build_governance_service
from .runtime.models import AgentRuntime, JudgmentProvider
from .schemas.domain import (
    Execution,
    ExecutionState,
    Goal,
    HaltReason,
    Judgment,
    ProposedStep,
    RiskLevel,
    Step,
    StepResult,
    StepStatus,
)
from .service import GovernanceService, GovernanceServiceDeps

__all__ = [
    "ActionNotFound",
    "AgentRuntime",
    "BudgetExceeded",
    "BudgetLimits",
    "CheckpointNotFound",
    "ConfirmationPhraseMismatch",
    "Execution",
    "ExecutionConfig",
    "ExecutionNotFound",
    "ExecutionState",
    "Goal",
    "GovernanceConfig",
    "GovernanceError",
    "GovernanceService",
    "GovernanceServiceDeps",
    "GuardFailure",
    "HaltReason",
    "InvalidOperation",
    "Judgment",
    "JudgmentProvider",
    "NotFoundError",
    "ProposedStep",
    "RiskLevel",
    "RollbackFailure",
    "RuntimeFailure",
    "Step",
    "StepResult",
    "StepStatus",
    "TokenPricing",
    "build_engine",
    "build_governance_service",
]
