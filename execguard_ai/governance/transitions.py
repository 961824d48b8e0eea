"""Execution state transition table.

Every state change of an ``Execution`` goes through ``transition`` so the table
below is the single authority on which moves are legal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from execguard_ai.core.logging_config import get_logger

from .errors import InvalidOperation
from .schemas.domain import Execution, ExecutionState, HaltReason

logger = get_logger(__name__)

S = ExecutionState

ALLOWED_TRANSITIONS: Dict[ExecutionState, frozenset[ExecutionState]] = {
    S.planning: frozenset({S.executing, S.halted, S.completed, S.failed}),
    S.executing: frozenset({S.paused, S.awaiting_approval, S.halted, S.completed, S.failed}),
    S.paused: frozenset({S.executing, S.halted}),
    S.awaiting_approval: frozenset({S.executing, S.halted}),
    # halted -> paused happens when a rollback lands on a checkpoint.
    S.halted: frozenset({S.executing, S.paused}),
    S.completed: frozenset(),
    S.failed: frozenset(),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: ExecutionState, target: ExecutionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(
    execution: Execution,
    target: ExecutionState,
    *,
    reason: Optional[HaltReason] = None,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Move ``execution`` to ``target``.

    Halting and failing record the machine ``reason`` code plus a human
    ``message`` in ``halt_details``. Any other move clears a previous halt.

    Raises:
        InvalidOperation: If the transition is not in ``ALLOWED_TRANSITIONS``.
    """
    current = execution.state
    if not can_transition(current, target):
        raise InvalidOperation(
            f"Illegal transition {current.value} -> {target.value} for execution {execution.id}",
            details={"from": current.value, "to": target.value},
        )

    now = _utc_now()
    execution.state = target
    execution.last_activity_at = now
    if target in (S.halted, S.failed):
        execution.halt_reason = reason
        execution.halt_details = {"message": message or "", **(details or {})}
    elif target in (S.executing, S.paused):
        execution.halt_reason = None
        execution.halt_details = {}
    if target in (S.completed, S.failed):
        execution.completed_at = now

    logger.debug(
        f"Execution {execution.id}: {current.value} -> {target.value}"
        + (f" ({reason.value})" if reason is not None else "")
    )
