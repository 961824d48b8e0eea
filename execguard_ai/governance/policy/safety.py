from __future__ import annotations

"""Safety policy decisions for proposed steps.

``SafetyPolicy`` is the runtime authority the Confirmation Gate uses to decide
how to handle a proposed step:

- match the step's action (and the resources it touches) against glob rules,
- classify the risk of the action into a closed ``RiskLevel``,
- decide whether the step is blocked, needs a human decision, or may run.

Custom rules are evaluated before the built-in defaults; the first matching
rule wins for a given string.
"""

import re
from functools import lru_cache
from typing import List, Optional, Sequence

from ..schemas.domain import ProposedStep, RiskLevel
from .models import PolicyDecision, RuleCategory, RuleType, SafetyRule, max_risk, risk_requires_approval
from .rules import DEFAULT_RULES


@lru_cache(maxsize=512)
def _compile_pattern(pattern: str) -> re.Pattern[str]:
    escaped = re.escape(pattern)
    # re.escape turns "*" into "\*" and "?" into "\?"; rebuild the glob tokens.
    escaped = escaped.replace(r"\*\*", "\x00").replace(r"\*", "[^/]*").replace(r"\?", ".").replace("\x00", ".*")
    return re.compile(f"^{escaped}$", re.IGNORECASE | re.DOTALL)


def matches_pattern(value: str, pattern: str) -> bool:
    """Return True if ``value`` matches the glob ``pattern`` as a whole."""
    return _compile_pattern(pattern).match(value) is not None


def determine_risk(action: str, rule: Optional[SafetyRule]) -> RiskLevel:
    """
    Classify the risk of an action given the rule that matched it.

    Args:
        action: The action string that was checked.
        rule: The matched rule, or None when no rule matched.

    Returns:
        The RiskLevel for the action.
    """
    if rule is None:
        return RiskLevel.low
    if rule.category == RuleCategory.system:
        return RiskLevel.critical
    if "rm -rf" in action:
        return RiskLevel.critical
    if "--force" in action:
        return RiskLevel.high
    if rule.category == RuleCategory.terminal and rule.type == RuleType.deny:
        return RiskLevel.high
    if rule.type == RuleType.confirm:
        return RiskLevel.medium
    return RiskLevel.low


class SafetyPolicy:
    """Evaluate proposed steps against safety rules.

    The rule list is fixed at construction time: ``custom_rules`` first, then
    the built-in defaults (unless ``include_defaults`` is False).
    """

    def __init__(self, custom_rules: Sequence[SafetyRule] = (), *, include_defaults: bool = True) -> None:
        self._rules: List[SafetyRule] = list(custom_rules)
        if include_defaults:
            self._rules.extend(DEFAULT_RULES)

    @property
    def rules(self) -> List[SafetyRule]:
        return list(self._rules)

    def match(self, value: str) -> Optional[SafetyRule]:
        """Return the first rule whose pattern matches ``value``."""
        for rule in self._rules:
            if matches_pattern(value, rule.pattern):
                return rule
        return None

    def check(self, value: str) -> PolicyDecision:
        """
        Check a single action or resource string.

        The returned decision's ``require_approval`` reflects only the rule
        type; execution-level approval flags are applied in ``decide``.
        """
        rule = self.match(value)
        risk = determine_risk(value, rule)
        if rule is not None and rule.type == RuleType.deny:
            return PolicyDecision(risk=risk, require_approval=False, block=True, block_reason=rule.description, matched_rule=rule)
        if rule is not None and rule.type == RuleType.confirm:
            return PolicyDecision(risk=risk, require_approval=True, block=False, block_reason=None, matched_rule=rule)
        return PolicyDecision(risk=RiskLevel.low, require_approval=False, block=False, block_reason=None, matched_rule=rule)

    def classify_risk(self, step: ProposedStep) -> RiskLevel:
        """
        Classify the risk level of a proposed step.

        The risk is the highest of:
        1. The risk of the action string itself.
        2. The risk of every resource the step touches.
        3. The runtime's own ``risk_hint``, which can raise but never lower the result.
        """
        risk = RiskLevel.low
        for value in [step.action, *step.resources]:
            risk = max_risk(risk, self.check(value).risk)
        if step.risk_hint is not None:
            risk = max_risk(risk, step.risk_hint)
        return risk

    def decide(self, step: ProposedStep, *, require_approval_for_changes: bool) -> PolicyDecision:
        """
        Compute the policy decision for a proposed step.

        A ``deny`` match on the action or any resource blocks the step. Otherwise
        the step needs approval when its risk is at least medium and the
        execution requires approval for changes.

        Args:
            step: The step proposed by the agent runtime.
            require_approval_for_changes: The execution's approval flag.

        Returns:
            A PolicyDecision with the verdict for the step.
        """
        matched: Optional[SafetyRule] = None
        for value in [step.action, *step.resources]:
            decision = self.check(value)
            if decision.block:
                return decision
            if decision.matched_rule is not None and matched is None:
                matched = decision.matched_rule

        risk = self.classify_risk(step)
        require = risk_requires_approval(risk, require_approval_for_changes=require_approval_for_changes)
        return PolicyDecision(risk=risk, require_approval=require, block=False, block_reason=None, matched_rule=matched)
