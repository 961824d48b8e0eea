"""Pre-Flight Check Engine.

Evaluates the fixed set of guard conditions before a step may run. The
evaluation is a pure function of the execution, the proposed step, the
judgment provider's assessment and the current budget status; it never
touches the repositories or the agent runtime.

Guards, in evaluation order:

1. ``goal_still_valid``  (hard)  -> ``goal_invalidated``
2. ``scope_unchanged``   (soft)  -> ``scope_expanded``
3. ``uncertainty_level`` (soft)  -> ``uncertainty_exceeded``
4. ``budget_remaining``  (hard)  -> ``budget_exhausted``
5. ``dependencies_met``  (hard)  -> ``dependency_unmet``

Hard failures halt the execution. Soft failures ask a human for approval when
the execution requires approval for changes, and halt otherwise. A budget
failure decides the outcome regardless of the other guards; after it, the
other hard guards are reported before the soft ones.
"""

from __future__ import annotations

from typing import List, Optional

from execguard_ai.core.logging_config import get_logger

from ..policy.safety import matches_pattern
from ..schemas.domain import (
    BudgetStatus,
    Execution,
    HaltReason,
    Judgment,
    PreCheckResult,
    ProposedStep,
    StepStatus,
)

logger = get_logger(__name__)

HARD_GUARDS = frozenset({HaltReason.goal_invalidated, HaltReason.budget_exhausted, HaltReason.dependency_unmet})
SOFT_GUARDS = frozenset({HaltReason.scope_expanded, HaltReason.uncertainty_exceeded})

GUARD_MESSAGES = {
    HaltReason.goal_invalidated: "The goal is no longer achievable given the actions taken so far.",
    HaltReason.scope_expanded: "The next step touches resources outside the declared scope.",
    HaltReason.uncertainty_exceeded: "The agent's uncertainty exceeds the configured threshold.",
    HaltReason.budget_exhausted: "The budget is exhausted; no further steps may run.",
    HaltReason.dependency_unmet: "A prerequisite step has not completed.",
}


def is_hard_failure(reason: Optional[HaltReason]) -> bool:
    return reason in HARD_GUARDS


def out_of_scope_resources(execution: Execution, step: ProposedStep) -> List[str]:
    """Return the resources of ``step`` not covered by the execution's scope globs.

    An empty declared scope means the execution is unrestricted.
    """
    if not execution.scope:
        return []
    return [r for r in step.resources if not any(matches_pattern(r, pattern) for pattern in execution.scope)]


def unmet_dependencies(execution: Execution, step: ProposedStep) -> List[int]:
    unmet: List[int] = []
    for number in step.depends_on:
        dep = execution.step_by_number(number)
        if dep is None or dep.status != StepStatus.completed:
            unmet.append(number)
    return unmet


def budget_allows(execution: Execution, step: ProposedStep, status: BudgetStatus, *, hard_limits: bool = True) -> bool:
    """
    Decide the ``budget_remaining`` guard.

    False when the scope is already over its daily or monthly limit, when a
    hard scope limit would be crossed by the step's estimated cost, or when
    the execution's own token/cost ceilings would be exceeded after the step.
    """
    if status.is_over_limit:
        return False
    if hard_limits:
        if status.daily_limit is not None and status.daily_used + step.estimated_cost_cents > status.daily_limit:
            return False
        if status.monthly_limit is not None and status.monthly_used + step.estimated_cost_cents > status.monthly_limit:
            return False
    if execution.max_total_tokens is not None:
        if execution.total_tokens_used + step.estimated_tokens > execution.max_total_tokens:
            return False
    if execution.max_cost_cents is not None:
        if execution.total_cost_cents + step.estimated_cost_cents > execution.max_cost_cents:
            return False
    return True


class PreFlightCheckEngine:
    """Evaluate guard conditions for a proposed step."""

    def evaluate(
        self,
        execution: Execution,
        step: ProposedStep,
        judgment: Judgment,
        budget: BudgetStatus,
        *,
        hard_budget_limits: bool = True,
    ) -> PreCheckResult:
        """
        Evaluate every guard and record all of them.

        Args:
            execution: The execution the step belongs to.
            step: The step the agent runtime proposes to run next.
            judgment: Goal validity and uncertainty from the judgment provider.
            budget: The current status of the execution's budget scope.
            hard_budget_limits: Whether the scope's limits are hard stops.

        Returns:
            An immutable PreCheckResult; ``first_failure`` names the deciding guard.
        """
        goal_ok = judgment.goal_still_valid
        scope_ok = execution.allow_scope_expansion or not out_of_scope_resources(execution, step)
        uncertainty_ok = judgment.uncertainty_level <= execution.uncertainty_threshold
        budget_ok = budget_allows(execution, step, budget, hard_limits=hard_budget_limits)
        deps_ok = not unmet_dependencies(execution, step)

        first_failure: Optional[HaltReason] = None
        if not budget_ok:
            first_failure = HaltReason.budget_exhausted
        else:
            # Hard guards are reported before soft ones.
            for ok, reason in (
                (goal_ok, HaltReason.goal_invalidated),
                (deps_ok, HaltReason.dependency_unmet),
                (scope_ok, HaltReason.scope_expanded),
                (uncertainty_ok, HaltReason.uncertainty_exceeded),
            ):
                if not ok:
                    first_failure = reason
                    break

        result = PreCheckResult(
            goal_still_valid=goal_ok,
            scope_unchanged=scope_ok,
            uncertainty_level=judgment.uncertainty_level,
            budget_remaining=budget_ok,
            dependencies_met=deps_ok,
            first_failure=first_failure,
        )
        if first_failure is not None:
            logger.info(f"Pre-flight for execution {execution.id} failed: {first_failure.value}")
        return result
