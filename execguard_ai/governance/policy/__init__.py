"""Safety rules and risk classification for proposed steps."""

from .models import PolicyDecision, RuleCategory, RuleType, SafetyRule, max_risk, risk_ge, risk_requires_approval
from .rules import DEFAULT_RULES, get_default_rules, get_rules_by_category
from .safety import SafetyPolicy, determine_risk, matches_pattern

__all__ = [
    "DEFAULT_RULES",
    "PolicyDecision",
    "RuleCategory",
    "RuleType",
    "SafetyPolicy",
    "SafetyRule",
    "determine_risk",
    "get_default_rules",
    "get_rules_by_category",
    "matches_pattern",
    "max_risk",
    "risk_ge",
    "risk_requires_approval",
]
