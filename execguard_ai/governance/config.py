"""Configuration objects threaded explicitly through the governance core.

Nothing in ``execguard_ai.governance`` reads process-wide settings. The HTTP
server builds a ``GovernanceConfig`` from its pydantic-settings model and
passes it down; library users construct one directly.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import Field

from .policy.models import SafetyRule
from .schemas.base import BaseSchema


class BudgetLimits(BaseSchema):
    """
    Spending limits for one budget scope, in integer cents.

    ``hard=True`` makes the tracker report ``exceeded`` as soon as usage
    reaches a limit; soft limits only escalate to ``exceeded`` at 110%.
    """

    daily_limit_cents: Optional[int] = Field(default=None, ge=0)
    monthly_limit_cents: Optional[int] = Field(default=None, ge=0)
    hard: bool = True


class TokenPricing(BaseSchema):
    """Per-1K-token prices used by ``BudgetTracker.calculate_cost``.

    Prices are fractional cents; the calculated total is rounded up to a
    whole cent.
    """

    input_cents_per_1k: float = Field(default=0.15, ge=0.0)
    output_cents_per_1k: float = Field(default=0.2, ge=0.0)


class ExecutionConfig(BaseSchema):
    """Per-execution governance settings supplied to ``start_execution``."""

    agent_type: str = "generic"
    max_steps: int = Field(default=50, ge=1)
    uncertainty_threshold: int = Field(default=70, ge=0, le=100)
    allow_scope_expansion: bool = False
    require_approval_for_changes: bool = True
    auto_checkpoint: bool = True
    scope: List[str] = Field(
        default_factory=list,
        description="Glob patterns of resources the execution may touch. Empty means unrestricted.",
    )
    budget_scope: str = "default"
    max_total_tokens: Optional[int] = Field(default=None, ge=1)
    max_cost_cents: Optional[int] = Field(default=None, ge=1)


class GovernanceConfig(BaseSchema):
    """
    Engine-wide configuration.

    Attributes:
        step_timeout_seconds: Wall-clock budget for one ``execute_step`` call.
        confirmation_phrase: Phrase an approver must type for critical actions.
        budgets: Limits per budget scope.
        default_budget: Limits applied to scopes missing from ``budgets``.
        pricing: Token prices used for cost estimates.
        custom_rules: Safety rules evaluated before the built-in defaults.
        stream_queue_size: Per-subscriber buffer of the progress stream.
    """

    step_timeout_seconds: float = Field(default=300.0, gt=0.0)
    confirmation_phrase: str = Field(default="CONFIRM", min_length=1)
    budgets: Dict[str, BudgetLimits] = Field(default_factory=dict)
    default_budget: BudgetLimits = Field(default_factory=BudgetLimits)
    pricing: TokenPricing = Field(default_factory=TokenPricing)
    custom_rules: List[SafetyRule] = Field(default_factory=list)
    stream_queue_size: int = Field(default=100, ge=1)

    def limits_for(self, scope: str) -> BudgetLimits:
        return self.budgets.get(scope, self.default_budget)
