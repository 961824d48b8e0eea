"""Budget tracking: usage ledger, limits and warning levels."""

from .tracker import BudgetTracker, classify_warning, format_cents

__all__ = ["BudgetTracker", "classify_warning", "format_cents"]
