"""Pre-flight guard evaluation."""

from .engine import (
    GUARD_MESSAGES,
    HARD_GUARDS,
    SOFT_GUARDS,
    PreFlightCheckEngine,
    budget_allows,
    is_hard_failure,
    out_of_scope_resources,
    unmet_dependencies,
)

__all__ = [
    "GUARD_MESSAGES",
    "HARD_GUARDS",
    "SOFT_GUARDS",
    "PreFlightCheckEngine",
    "budget_allows",
    "is_hard_failure",
    "out_of_scope_resources",
    "unmet_dependencies",
]
