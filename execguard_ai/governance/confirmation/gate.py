"""Confirmation Gate.

Blocks a step until a human decides on it. An action is raised either because
the step's risk is at least ``medium`` or because a soft pre-flight guard
(scope, uncertainty) failed. ``critical`` actions additionally require the
approver to type the configured confirmation phrase verbatim.

At most one action may be outstanding per execution. Every decision is
appended to the decision history for audit.
"""

from __future__ import annotations

from typing import Optional

from execguard_ai.core.logging_config import get_logger

from ..errors import ActionNotFound, ConfirmationPhraseMismatch, InvalidOperation
from ..policy.models import PolicyDecision, max_risk
from ..policy.safety import SafetyPolicy
from ..preflight.engine import GUARD_MESSAGES
from ..repos.interfaces import DecisionRepository
from ..schemas.domain import (
    ConfirmationAction,
    ConfirmationDecision,
    DecisionRecord,
    Execution,
    ExecutionState,
    HaltReason,
    ProposedStep,
    RiskLevel,
    Step,
)

logger = get_logger(__name__)

ACTION_TYPE_RISKY = "risky_action"
ACTION_TYPE_GUARD = "guard_override"


class ConfirmationGate:
    """Raise, verify and resolve confirmation actions for one engine."""

    def __init__(self, policy: SafetyPolicy, decisions: DecisionRepository, *, confirmation_phrase: str = "CONFIRM") -> None:
        self._policy = policy
        self._decisions = decisions
        self._phrase = confirmation_phrase

    @property
    def confirmation_phrase(self) -> str:
        return self._phrase

    def classify(self, execution: Execution, step: ProposedStep) -> PolicyDecision:
        """Classify a proposed step under the execution's approval flag."""
        return self._policy.decide(step, require_approval_for_changes=execution.require_approval_for_changes)

    @staticmethod
    def would_require_confirmation(risk: RiskLevel) -> bool:
        return risk != RiskLevel.low

    @staticmethod
    def requires_typed_confirmation(risk: RiskLevel) -> bool:
        return risk == RiskLevel.critical

    def build_risky_action(self, execution: Execution, step: Step, decision: PolicyDecision) -> ConfirmationAction:
        rule = decision.matched_rule
        reason = rule.description if rule is not None else f"{decision.risk.value} risk action requires approval"
        details = {"action": step.action, "resources": list(step.resources)}
        if rule is not None:
            details["rule_id"] = rule.id
        return ConfirmationAction(
            execution_id=execution.id,
            step_id=step.id,
            type=ACTION_TYPE_RISKY,
            description=step.description,
            risk_level=decision.risk,
            reason=reason,
            details=details,
            agent_type=execution.agent_type,
            requires_typed_confirmation=self.requires_typed_confirmation(decision.risk),
        )

    def build_guard_action(self, execution: Execution, step: Step, guard: HaltReason) -> ConfirmationAction:
        """Build the action asking a human to override a failed soft guard.

        Overriding a guard is at least a ``medium`` risk decision.
        """
        risk = max_risk(step.risk_level, RiskLevel.medium)
        return ConfirmationAction(
            execution_id=execution.id,
            step_id=step.id,
            type=ACTION_TYPE_GUARD,
            description=step.description,
            risk_level=risk,
            reason=GUARD_MESSAGES[guard],
            details={
                "guard": guard.value,
                "action": step.action,
                "uncertainty_level": step.pre_checks.uncertainty_level,
                "uncertainty_threshold": execution.uncertainty_threshold,
            },
            agent_type=execution.agent_type,
            requires_typed_confirmation=self.requires_typed_confirmation(risk),
        )

    def raise_action(self, execution: Execution, action: ConfirmationAction) -> None:
        """
        Attach ``action`` as the execution's single outstanding action.

        Raises:
            InvalidOperation: If another action is already pending.
        """
        if execution.pending_action is not None:
            raise InvalidOperation(
                "A confirmation action is already pending for this execution",
                details={"pending_action_id": execution.pending_action.id},
            )
        execution.pending_action = action
        logger.info(
            f"Confirmation requested for execution {execution.id}: "
            f"{action.type} risk={action.risk_level.value} reason={action.reason!r}"
        )

    def verify(
        self, execution: Execution, action_id: str, *, approved: bool, typed_phrase: Optional[str] = None
    ) -> ConfirmationAction:
        """
        Validate a decision without changing any state.

        Raises:
            ActionNotFound: If ``action_id`` is not the execution's pending action.
            InvalidOperation: If the execution is not awaiting approval.
            ConfirmationPhraseMismatch: If a critical action is approved with the wrong phrase.
        """
        pending = execution.pending_action
        if pending is None or pending.id != action_id:
            raise ActionNotFound(action_id)
        if execution.state != ExecutionState.awaiting_approval:
            raise InvalidOperation(
                f"Execution {execution.id} is not awaiting approval (state={execution.state.value})",
                details={"state": execution.state.value},
            )
        if approved and pending.requires_typed_confirmation and typed_phrase != self._phrase:
            raise ConfirmationPhraseMismatch(
                f'Critical actions require typing "{self._phrase}" to approve',
                details={"action_id": action_id},
            )
        return pending

    async def resolve(
        self, execution: Execution, action: ConfirmationAction, *, approved: bool, decided_by: Optional[str] = None
    ) -> DecisionRecord:
        """Record the decision in the history and clear the pending action."""
        record = DecisionRecord(
            execution_id=execution.id,
            action=action,
            decision=ConfirmationDecision.approved if approved else ConfirmationDecision.rejected,
            decided_by=decided_by,
        )
        await self._decisions.append(record)
        execution.pending_action = None
        logger.info(f"Confirmation {action.id} for execution {execution.id} {record.decision.value}")
        return record

    async def history(self, execution_id: str) -> list[DecisionRecord]:
        return await self._decisions.list(execution_id)
