"""Exception taxonomy of the governance core.

Guard and runtime failures are recorded on the execution and surfaced through
the progress stream; they are raised only inside the engine. ``InvalidOperation``
and ``RollbackFailure`` are raised synchronously to callers of the public API.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class GovernanceError(Exception):
    """Base class for every error raised by the governance core."""

    code: str = "governance_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class GuardFailure(GovernanceError):
    """A pre-flight guard refused to let a step run."""

    code = "guard_failure"

    def __init__(self, guard: str, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details)
        self.guard = guard


class BudgetExceeded(GuardFailure):
    """The budget guard tripped; a hard stop reported distinctly from other guards."""

    code = "budget_exceeded"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("budget_exhausted", message, details=details)


class RuntimeFailure(GovernanceError):
    """The agent runtime failed or timed out while executing a step."""

    code = "runtime_failure"


class RollbackFailure(GovernanceError):
    """A rollback could not be carried out.

    ``reverted`` lists the change ids already reverted before the failure; it is
    empty when the all-or-nothing pre-validation rejected the request.
    """

    code = "rollback_failure"

    def __init__(
        self,
        message: str,
        *,
        blocking_steps: Optional[List[int]] = None,
        reverted: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        merged.setdefault("blocking_steps", list(blocking_steps or []))
        merged.setdefault("reverted", list(reverted or []))
        super().__init__(message, details=merged)
        self.blocking_steps = list(blocking_steps or [])
        self.reverted = list(reverted or [])


class InvalidOperation(GovernanceError):
    """An illegal request, rejected synchronously without mutating state."""

    code = "invalid_operation"


class ConfirmationPhraseMismatch(InvalidOperation):
    code = "confirmation_phrase_mismatch"


class NotFoundError(GovernanceError):
    code = "not_found"


class ExecutionNotFound(NotFoundError):
    code = "execution_not_found"

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution {execution_id} not found", details={"execution_id": execution_id})


class CheckpointNotFound(NotFoundError):
    code = "checkpoint_not_found"

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(f"Checkpoint {checkpoint_id} not found", details={"checkpoint_id": checkpoint_id})


class ActionNotFound(NotFoundError):
    code = "action_not_found"

    def __init__(self, action_id: str) -> None:
        super().__init__(f"No pending confirmation action {action_id}", details={"action_id": action_id})
