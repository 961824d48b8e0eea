"""Human-in-the-loop confirmation of risky steps."""

from .gate import ACTION_TYPE_GUARD, ACTION_TYPE_RISKY, ConfirmationGate

__all__ = ["ACTION_TYPE_GUARD", "ACTION_TYPE_RISKY", "ConfirmationGate"]
