"""Checkpoint & Rollback Manager.

Checkpoints mark step boundaries an execution can be rolled back to. A rollback
reverts every change made after the checkpoint through the agent runtime's
inverse operations, newest first, then truncates the step log.

Rollback is all-or-nothing with respect to validation: if any step after the
checkpoint applied changes that cannot be reverted, nothing is reverted and the
execution is left exactly as it was.
"""

from __future__ import annotations

from typing import Awaitable, Callable, List, Optional

from execguard_ai.core.logging_config import get_logger

from ..errors import CheckpointNotFound, InvalidOperation, RollbackFailure
from ..repos.interfaces import CheckpointRepository
from ..schemas.domain import (
    Checkpoint,
    Execution,
    ExecutionState,
    HaltReason,
    RollbackPreview,
    Step,
    StepStatus,
)
from ..transitions import transition

logger = get_logger(__name__)

InverseOperation = Callable[[str], Awaitable[bool]]

ROLLBACK_STATES = frozenset({ExecutionState.paused, ExecutionState.halted})


def _steps_after(execution: Execution, step_number: int) -> List[Step]:
    return [s for s in execution.steps if s.step_number > step_number]


def _changes(step: Step) -> List[str]:
    return list(step.result.changes_applied) if step.result is not None else []


def blocking_steps(execution: Execution, step_number: int) -> List[int]:
    """Step numbers after ``step_number`` holding changes that cannot be reverted."""
    return [
        s.step_number
        for s in _steps_after(execution, step_number)
        if s.result is not None and s.result.changes_applied and not s.result.rollback_available
    ]


class CheckpointManager:
    """Create, list, preview, delete and roll back to checkpoints."""

    def __init__(self, checkpoints: CheckpointRepository) -> None:
        self._checkpoints = checkpoints

    async def get(self, checkpoint_id: str) -> Checkpoint:
        cp = await self._checkpoints.get(checkpoint_id)
        if cp is None:
            raise CheckpointNotFound(checkpoint_id)
        return cp

    async def list(self, execution_id: str) -> list[Checkpoint]:
        return await self._checkpoints.list(execution_id)

    @staticmethod
    def is_active(execution: Execution, checkpoint: Checkpoint) -> bool:
        """The active checkpoint is the one sitting at the current end of the step log."""
        return checkpoint.step_number == len(execution.steps)

    async def create(
        self,
        execution: Execution,
        step_number: int,
        *,
        description: Optional[str] = None,
        automatic: bool = False,
    ) -> Checkpoint:
        """
        Append a checkpoint for a completed step.

        Args:
            execution: The owning execution.
            step_number: The completed step the checkpoint marks.
            description: Optional human label.
            automatic: Whether the checkpoint was created by the auto-checkpoint policy.

        Raises:
            InvalidOperation: If the step is not completed or already has a checkpoint.
        """
        step = execution.step_by_number(step_number)
        if step is None or step.status != StepStatus.completed:
            raise InvalidOperation(
                f"Step {step_number} of execution {execution.id} is not a completed step",
                details={"step_number": step_number},
            )
        existing = await self._checkpoints.list(execution.id)
        if any(cp.step_number == step_number for cp in existing):
            raise InvalidOperation(
                f"Step {step_number} of execution {execution.id} already has a checkpoint",
                details={"step_number": step_number},
            )

        cp = Checkpoint(
            execution_id=execution.id,
            step_number=step_number,
            description=description or f"After step {step_number}: {step.description}",
            automatic=automatic,
        )
        await self._checkpoints.add(cp)
        logger.debug(f"Checkpoint {cp.id} created at step {step_number} of execution {execution.id}")
        return cp

    async def create_latest(self, execution: Execution, *, description: Optional[str] = None) -> Checkpoint:
        """
        Manual checkpoint at the most recent completed step.

        When the step already carries an automatic checkpoint, that checkpoint
        is kept (same id) and turned into a manual one with the new
        description. A step that already has a manual checkpoint is rejected.
        """
        latest = execution.highest_completed_step()
        if latest == 0:
            raise InvalidOperation(f"Execution {execution.id} has no completed step to checkpoint")
        existing = next((cp for cp in await self._checkpoints.list(execution.id) if cp.step_number == latest), None)
        if existing is not None and existing.automatic:
            existing.automatic = False
            if description:
                existing.description = description
            await self._checkpoints.update(existing)
            logger.debug(f"Automatic checkpoint {existing.id} of execution {execution.id} kept as manual")
            return existing
        return await self.create(execution, latest, description=description, automatic=False)

    async def auto_checkpoint(self, execution: Execution, step: Step) -> Optional[Checkpoint]:
        """Checkpoint a freshly completed step when the execution asks for it."""
        if not execution.auto_checkpoint or step.status != StepStatus.completed:
            return None
        existing = await self._checkpoints.list(execution.id)
        if any(cp.step_number == step.step_number for cp in existing):
            return None
        return await self.create(execution, step.step_number, automatic=True)

    async def preview(self, execution: Execution, checkpoint: Checkpoint) -> RollbackPreview:
        """Describe what ``rollback`` would do, without doing it."""
        after = _steps_after(execution, checkpoint.step_number)
        changes: List[str] = []
        for step in sorted(after, key=lambda s: s.step_number, reverse=True):
            changes.extend(reversed(_changes(step)))
        later = [cp for cp in await self._checkpoints.list(execution.id) if cp.step_number > checkpoint.step_number]
        return RollbackPreview(
            checkpoint_id=checkpoint.id,
            target_step_number=checkpoint.step_number,
            steps_to_revert=len(after),
            checkpoints_to_remove=len(later),
            changes_to_revert=changes,
            blocking_steps=blocking_steps(execution, checkpoint.step_number),
        )

    async def previous_checkpoint(self, execution: Execution) -> Checkpoint:
        """The newest checkpoint strictly before the current end of the step log."""
        candidates = [cp for cp in await self._checkpoints.list(execution.id) if cp.step_number < len(execution.steps)]
        if not candidates:
            raise InvalidOperation(f"Execution {execution.id} has no earlier checkpoint to roll back to")
        return candidates[-1]

    async def rollback(self, execution: Execution, checkpoint: Checkpoint, inverse: InverseOperation) -> RollbackPreview:
        """
        Roll ``execution`` back to ``checkpoint``.

        Changes are reverted newest first (descending step number, and within a
        step in reverse application order). On success the step log is
        truncated, later checkpoints are deleted, ``current_step_index`` points
        at the checkpoint and the execution is ``paused``. Token and cost
        totals are not refunded.

        Args:
            execution: The owning execution; mutated in place on success.
            checkpoint: The checkpoint to return to.
            inverse: Reverts one change id; returns False (or raises) on failure.

        Returns:
            The preview describing what was reverted.

        Raises:
            InvalidOperation: If the execution is not paused or halted, or the
                checkpoint is the active one.
            RollbackFailure: If a step's changes cannot be reverted (nothing is
                touched) or an inverse operation fails midway (the execution is
                halted with ``rollback_failed``).
        """
        if checkpoint.execution_id != execution.id:
            raise InvalidOperation(f"Checkpoint {checkpoint.id} does not belong to execution {execution.id}")
        if execution.state not in ROLLBACK_STATES:
            raise InvalidOperation(
                f"Rollback requires a paused or halted execution (state={execution.state.value})",
                details={"state": execution.state.value},
            )
        if self.is_active(execution, checkpoint):
            raise InvalidOperation(
                f"Checkpoint {checkpoint.id} is the active checkpoint; there is nothing to roll back",
                details={"checkpoint_id": checkpoint.id},
            )

        preview = await self.preview(execution, checkpoint)
        if not preview.can_rollback:
            raise RollbackFailure(
                f"Steps {preview.blocking_steps} applied changes that cannot be rolled back",
                blocking_steps=preview.blocking_steps,
            )

        reverted: List[str] = []
        for change_id in preview.changes_to_revert:
            error: Optional[str] = None
            try:
                ok = await inverse(change_id)
            except Exception as e:
                logger.exception(f"Inverse operation for change {change_id} raised")
                ok, error = False, str(e)
            if not ok:
                message = f"Inverse operation for change {change_id} failed"
                details = {"reverted": list(reverted), "failed_change": change_id}
                if execution.state == ExecutionState.halted:
                    execution.halt_reason = HaltReason.rollback_failed
                    execution.halt_details = {"message": message, **details}
                else:
                    transition(
                        execution, ExecutionState.halted, reason=HaltReason.rollback_failed, message=message, details=details
                    )
                raise RollbackFailure(message, reverted=reverted, details={"failed_change": change_id, "error": error})
            reverted.append(change_id)

        del execution.steps[checkpoint.step_number :]
        for cp in await self._checkpoints.list(execution.id):
            if cp.step_number > checkpoint.step_number:
                await self._checkpoints.delete(cp.id)
        execution.current_step_index = checkpoint.step_number
        execution.pending_action = None
        if execution.state != ExecutionState.paused:
            transition(execution, ExecutionState.paused)

        logger.info(
            f"Execution {execution.id} rolled back to step {checkpoint.step_number}: "
            f"{preview.steps_to_revert} steps and {len(reverted)} changes reverted"
        )
        return preview

    async def delete(self, execution: Execution, checkpoint: Checkpoint) -> None:
        """
        Delete a checkpoint.

        Raises:
            InvalidOperation: If it is the active checkpoint.
        """
        if self.is_active(execution, checkpoint):
            raise InvalidOperation(
                f"Checkpoint {checkpoint.id} is the active checkpoint and cannot be deleted",
                details={"checkpoint_id": checkpoint.id},
            )
        await self._checkpoints.delete(checkpoint.id)
