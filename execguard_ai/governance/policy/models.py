from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import RiskLevel


class RuleType(str, Enum):
    """
    What happens when a safety rule matches an action.

    Attributes:
        allow: Explicitly allowed, no confirmation.
        confirm: Allowed only after a human confirms it.
        deny: Never allowed; the execution halts.
    """

    allow = "allow"
    confirm = "confirm"
    deny = "deny"


class RuleCategory(str, Enum):
    file = "file"
    terminal = "terminal"
    network = "network"
    system = "system"
    custom = "custom"


class SafetyRule(BaseSchema):
    """
    A glob-pattern rule matched against a proposed action string.

    ``**`` matches anything, ``*`` matches anything except ``/`` and ``?``
    matches a single character. Matching is case-insensitive.
    """

    id: str
    type: RuleType
    pattern: str = Field(min_length=1)
    description: str
    category: RuleCategory = RuleCategory.custom


@dataclass(frozen=True)
class PolicyDecision:
    """
    Result of a safety evaluation for a proposed action.

    Attributes:
        risk: The assessed risk level of the action.
        require_approval: Whether human approval is needed before execution.
        block: Whether the action is denied outright.
        block_reason: Human-readable reason if the action is blocked.
        matched_rule: The rule that decided the outcome, if any.
    """

    risk: RiskLevel
    require_approval: bool
    block: bool
    block_reason: Optional[str]
    matched_rule: Optional[SafetyRule] = None


_RISK_ORDER = {RiskLevel.low: 0, RiskLevel.medium: 1, RiskLevel.high: 2, RiskLevel.critical: 3}


def risk_ge(a: RiskLevel, b: RiskLevel) -> bool:
    """Check if risk level 'a' is greater than or equal to 'b'."""
    return _RISK_ORDER[a] >= _RISK_ORDER[b]


def max_risk(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    return a if risk_ge(a, b) else b


def risk_requires_approval(risk: RiskLevel, *, require_approval_for_changes: bool) -> bool:
    """
    Determine if approval is required for an action of the given risk.

    Args:
        risk: The assessed risk level of the action.
        require_approval_for_changes: The execution's approval flag.

    Returns:
        True if the action must go through the confirmation gate.
    """
    if not require_approval_for_changes:
        return False
    return risk_ge(risk, RiskLevel.medium)
