from __future__ import annotations

"""Per-execution actor.

One ``ExecutionActor`` task drives one execution. It is the only code that
mutates the execution: control commands from the API or from stream readers are
put on the actor's queue and applied between steps, never while a step call to
the agent runtime is in flight.

Loop
----

1. Apply every queued command (so a ``halt`` that arrived during a step wins
   over whatever the next step would have done).
2. If the execution is ``executing``, run one step through the engine.
3. Otherwise block until the next command arrives.

A ``halt`` is also flagged the moment it is submitted. The engine checks the
flag before it appends or dispatches a step, so a halt that lands while the
runtime proposes or the guards are evaluated stops the pass before anything
runs.

The actor ends when the execution reaches a terminal state. Commands that are
still queued at that point are applied against the final execution, then the
``on_finished`` callback runs.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from execguard_ai.core.logging_config import get_logger

from ..errors import GovernanceError, InvalidOperation, RollbackFailure
from ..schemas.domain import Checkpoint, Execution, ExecutionState, HaltReason, RollbackPreview, Step, StepStatus
from ..transitions import transition
from .engine import ExecutionEngine

logger = get_logger(__name__)


class CommandKind(str, Enum):
    pause = "pause"
    resume = "resume"
    halt = "halt"
    confirm = "confirm"
    reject = "reject"
    create_checkpoint = "create_checkpoint"
    delete_checkpoint = "delete_checkpoint"
    rollback = "rollback"


@dataclass
class Command:
    kind: CommandKind
    payload: Dict[str, Any] = field(default_factory=dict)
    future: Optional[asyncio.Future] = None


class ExecutionActor:
    """Serialize all mutations of one execution through a command queue."""

    def __init__(
        self,
        engine: ExecutionEngine,
        execution: Execution,
        *,
        on_finished: Optional[Callable[["ExecutionActor"], None]] = None,
    ) -> None:
        self._engine = engine
        self._deps = engine.deps
        self.execution = execution
        self._queue: asyncio.Queue[Command] = asyncio.Queue()
        self._approved = False
        self.halt_requested = False
        self._on_finished = on_finished
        self._task: Optional[asyncio.Task] = None
        self.finished = False
        self._cancelled = False

    @property
    def execution_id(self) -> str:
        return self.execution.id

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"execution-{self.execution.id}")

    async def stop(self) -> None:
        """Cancel the actor task (used on shutdown)."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def submit(self, kind: CommandKind, **payload: Any) -> None:
        """Queue a command without waiting for it to be applied."""
        if kind == CommandKind.halt:
            self.halt_requested = True
        self._queue.put_nowait(Command(kind=kind, payload=payload))

    async def call(self, kind: CommandKind, **payload: Any) -> Any:
        """Queue a command and wait for its result (or exception)."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(Command(kind=kind, payload=payload, future=future))
        return await future

    # -- loop -----------------------------------------------------------------------

    async def _run(self) -> None:
        execution = self.execution
        try:
            if execution.state == ExecutionState.planning:
                await self._engine.begin(execution)
            while not execution.is_terminal:
                await self._drain()
                if execution.is_terminal:
                    break
                if execution.state == ExecutionState.executing:
                    approved, self._approved = self._approved, False
                    await self._engine.run_step(
                        execution, approved=approved, halt_requested=lambda: self.halt_requested
                    )
                    # Let producers enqueue commands between steps.
                    await asyncio.sleep(0)
                    continue
                await self._apply(await self._queue.get())
        except asyncio.CancelledError:
            self._cancelled = True
            raise
        except Exception as e:
            logger.exception(f"Actor for execution {execution.id} crashed")
            if not execution.is_terminal and execution.state != ExecutionState.halted:
                transition(
                    execution,
                    ExecutionState.halted,
                    reason=HaltReason.step_failed,
                    message=f"Internal error while driving the execution: {e}",
                )
                await self._engine.commit(execution)
        finally:
            self.finished = True
            while not self._queue.empty():
                cmd = self._queue.get_nowait()
                if self._cancelled:
                    if cmd.future is not None and not cmd.future.done():
                        cmd.future.cancel()
                else:
                    await self._apply(cmd)
            if execution.is_terminal:
                stream = self._deps.bus.get(execution.id)
                if stream is not None:
                    stream.close()
            if self._on_finished is not None:
                self._on_finished(self)

    async def _drain(self) -> None:
        while not self._queue.empty():
            await self._apply(self._queue.get_nowait())

    async def _apply(self, cmd: Command) -> None:
        handler = getattr(self, f"_cmd_{cmd.kind.value}")
        try:
            result = await handler(**cmd.payload)
        except GovernanceError as e:
            logger.info(f"Command {cmd.kind.value} on execution {self.execution.id} rejected: {e}")
            if cmd.future is not None and not cmd.future.done():
                cmd.future.set_exception(e)
            return
        except Exception as e:
            if cmd.future is not None and not cmd.future.done():
                cmd.future.set_exception(e)
            raise
        if cmd.future is not None and not cmd.future.done():
            cmd.future.set_result(result)

    # -- command handlers -----------------------------------------------------------

    async def _cmd_pause(self) -> Execution:
        execution = self.execution
        if execution.state != ExecutionState.executing:
            raise InvalidOperation(f"Cannot pause execution {execution.id} in state {execution.state.value}")
        transition(execution, ExecutionState.paused)
        await self._engine.commit(execution)
        return execution

    async def _cmd_resume(self) -> Execution:
        execution = self.execution
        if execution.state not in (ExecutionState.paused, ExecutionState.halted):
            raise InvalidOperation(f"Cannot resume execution {execution.id} in state {execution.state.value}")
        transition(execution, ExecutionState.executing)
        await self._engine.commit(execution)
        return execution

    async def _cmd_halt(self) -> Execution:
        execution = self.execution
        self.halt_requested = False
        if execution.is_terminal:
            raise InvalidOperation(f"Execution {execution.id} already finished ({execution.state.value})")
        if execution.state == ExecutionState.halted:
            return execution
        # An approval that has not been dispatched yet does not survive a halt.
        self._approved = False
        execution.pending_action = None
        step = self._pending_step()
        if step is not None:
            step.status = StepStatus.skipped
            execution.current_step_index = step.step_number
        transition(
            execution,
            ExecutionState.halted,
            reason=HaltReason.user_requested,
            message="Execution halted at the user's request.",
        )
        await self._engine.commit(execution, step)
        return execution

    async def _cmd_confirm(
        self, action_id: str, typed_phrase: Optional[str] = None, decided_by: Optional[str] = None
    ) -> Execution:
        execution = self.execution
        gate = self._deps.gate
        action = gate.verify(execution, action_id, approved=True, typed_phrase=typed_phrase)
        await gate.resolve(execution, action, approved=True, decided_by=decided_by)
        transition(execution, ExecutionState.executing)
        self._approved = True
        await self._engine.commit(execution)
        return execution

    async def _cmd_reject(self, action_id: str, decided_by: Optional[str] = None) -> Execution:
        execution = self.execution
        gate = self._deps.gate
        action = gate.verify(execution, action_id, approved=False)
        await gate.resolve(execution, action, approved=False, decided_by=decided_by)
        step = self._pending_step()
        if step is not None:
            step.status = StepStatus.skipped
            execution.current_step_index = step.step_number
        transition(
            execution,
            ExecutionState.halted,
            reason=HaltReason.user_rejected,
            message=f"The user rejected: {action.description}",
            details={"action_id": action.id, "action_type": action.type},
        )
        await self._engine.commit(execution, step)
        return execution

    async def _cmd_create_checkpoint(self, description: Optional[str] = None) -> Checkpoint:
        return await self._deps.checkpoints.create_latest(self.execution, description=description)

    async def _cmd_delete_checkpoint(self, checkpoint_id: str) -> None:
        cp = await self._deps.checkpoints.get(checkpoint_id)
        await self._deps.checkpoints.delete(self.execution, cp)

    async def _cmd_rollback(self, checkpoint_id: str) -> RollbackPreview:
        execution = self.execution
        cp = await self._deps.checkpoints.get(checkpoint_id)
        try:
            preview = await self._deps.checkpoints.rollback(execution, cp, self._deps.runtime.inverse_operation)
        except RollbackFailure:
            if execution.halt_reason == HaltReason.rollback_failed:
                await self._engine.commit(execution)
            raise
        # The approved step, if any, was truncated away with the rest of the log.
        self._approved = False
        await self._engine.commit(execution)
        return preview

    def _pending_step(self) -> Optional[Step]:
        steps = self.execution.steps
        if steps and steps[-1].status == StepStatus.pending:
            return steps[-1]
        return None
