"""Schemas and DTOs for the governance core."""

from .domain import (
    BudgetStatus,
    Checkpoint,
    ConfirmationAction,
    ConfirmationDecision,
    DecisionRecord,
    Execution,
    ExecutionState,
    Goal,
    HaltReason,
    Judgment,
    PreCheckResult,
    ProposedStep,
    RiskLevel,
    RollbackPreview,
    Step,
    StepResult,
    StepStatus,
    TERMINAL_STATES,
    UsageRecord,
    UsageSummary,
    WarningLevel,
)

__all__ = [
    "BudgetStatus",
    "Checkpoint",
    "ConfirmationAction",
    "ConfirmationDecision",
    "DecisionRecord",
    "Execution",
    "ExecutionState",
    "Goal",
    "HaltReason",
    "Judgment",
    "PreCheckResult",
    "ProposedStep",
    "RiskLevel",
    "RollbackPreview",
    "Step",
    "StepResult",
    "StepStatus",
    "TERMINAL_STATES",
    "UsageRecord",
    "UsageSummary",
    "WarningLevel",
]
