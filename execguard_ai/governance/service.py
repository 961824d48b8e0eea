from __future__ import annotations

"""High-level governance service.

``GovernanceService`` is the public API of the governance core. The HTTP layer,
a CLI or an embedding application talks to it; nothing outside this package
should drive ``ExecutionEngine`` or ``ExecutionActor`` directly.

Workflow
--------

- ``start_execution`` persists a new execution in ``planning`` and starts its
  actor, which moves it to ``executing`` and runs steps.
- Control calls (``pause``, ``resume``, ``halt``, ``confirm``) are validated
  against the live execution synchronously, raising ``InvalidOperation`` on an
  illegal request, and then queued for the actor. They take effect at the next
  step boundary and show up in the progress stream.
- Checkpoint calls and ``rollback`` are also serialized through the actor but
  wait for the actor's answer, so callers get the result or the error.

Executions whose actor is gone (for example after a restart) are reloaded
from the repository and get a fresh actor when a command needs one. An actor
is dropped from the registry as soon as its execution finishes; finished
executions are served from the repository.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from execguard_ai.core.logging_config import get_logger

from .checkpoints.manager import ROLLBACK_STATES
from .config import ExecutionConfig
from .errors import ActionNotFound, ExecutionNotFound, InvalidOperation
from .runtime.actor import CommandKind, ExecutionActor
from .runtime.engine import ExecutionEngine
from .schemas.domain import (
    BudgetStatus,
    Checkpoint,
    DecisionRecord,
    Execution,
    ExecutionState,
    Goal,
    RollbackPreview,
    UsageSummary,
)
from .streaming.models import ControlCommand, ControlCommandType, SubscriptionMode
from .streaming.stream import Subscription

logger = get_logger(__name__)


@dataclass(frozen=True)
class GovernanceServiceDeps:
    """Dependency bundle for ``GovernanceService``."""

    engine: ExecutionEngine
    poll_interval_seconds: float = 1.0


class GovernanceService:
    """Start, observe and steer governed executions."""

    def __init__(self, *, deps: GovernanceServiceDeps) -> None:
        self._engine = deps.engine
        self._deps = deps.engine.deps
        self._poll_interval = deps.poll_interval_seconds
        self._actors: Dict[str, ExecutionActor] = {}
        self._deps.bus.bind_sink(self.submit_command)

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    @property
    def active_executions(self) -> int:
        """Number of executions with a live actor."""
        return len(self._actors)

    # -- lifecycle ------------------------------------------------------------------

    async def start_execution(self, goal: Goal, config: Optional[ExecutionConfig] = None) -> str:
        """
        Create and start a governed execution.

        Args:
            goal: The goal the agent must satisfy.
            config: Per-execution governance settings.

        Returns:
            The new execution id.
        """
        cfg = config or ExecutionConfig()
        execution = Execution(
            agent_type=cfg.agent_type,
            goal=goal.model_copy(deep=True),
            max_steps=cfg.max_steps,
            uncertainty_threshold=cfg.uncertainty_threshold,
            allow_scope_expansion=cfg.allow_scope_expansion,
            require_approval_for_changes=cfg.require_approval_for_changes,
            auto_checkpoint=cfg.auto_checkpoint,
            scope=list(cfg.scope),
            budget_scope=cfg.budget_scope,
            max_total_tokens=cfg.max_total_tokens,
            max_cost_cents=cfg.max_cost_cents,
        )
        await self._engine.commit(execution)
        actor = ExecutionActor(self._engine, execution, on_finished=self._release_actor)
        self._actors[execution.id] = actor
        actor.start()
        logger.info(f"Started execution {execution.id} for agent {execution.agent_type!r}")
        return execution.id

    async def shutdown(self) -> None:
        """Stop every actor. Executions stay persisted in their current state."""
        for actor in list(self._actors.values()):
            await actor.stop()
        self._actors.clear()

    # -- queries --------------------------------------------------------------------

    async def get_execution_state(self, execution_id: str) -> Execution:
        """Return a snapshot of the execution."""
        actor = self._actors.get(execution_id)
        if actor is not None:
            return actor.execution.model_copy(deep=True)
        execution = await self._deps.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        return execution

    async def list_executions(
        self, state: Optional[ExecutionState] = None, limit: int = 100, offset: int = 0
    ) -> list[Execution]:
        return await self._deps.executions.list(state=state, limit=limit, offset=offset)

    async def list_checkpoints(self, execution_id: str) -> list[Checkpoint]:
        await self.get_execution_state(execution_id)
        return await self._deps.checkpoints.list(execution_id)

    async def list_decisions(self, execution_id: str) -> list[DecisionRecord]:
        await self.get_execution_state(execution_id)
        return await self._deps.gate.history(execution_id)

    async def get_budget_status(self, scope: str) -> BudgetStatus:
        return await self._deps.budget.get_status(scope)

    async def get_usage_summary(self, scope: str) -> UsageSummary:
        return await self._deps.budget.usage_summary(scope)

    async def record_usage(
        self,
        scope: str,
        *,
        tokens: int = 0,
        cost_cents: Optional[int] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> BudgetStatus:
        """
        Record usage spent outside governed steps (e.g. planning calls).

        Args:
            scope: The budget scope to charge.
            tokens: Total tokens spent. Defaults to ``input_tokens + output_tokens``.
            cost_cents: Cost in cents. When omitted it is priced from the
                input and output token counts.
            input_tokens: Prompt tokens, used for pricing.
            output_tokens: Completion tokens, used for pricing.
        """
        budget = self._deps.budget
        if cost_cents is None:
            cost_cents = budget.calculate_cost(input_tokens, output_tokens)
        return await budget.record_usage(scope, tokens=tokens or input_tokens + output_tokens, cost_cents=cost_cents)

    # -- control --------------------------------------------------------------------

    async def pause(self, execution_id: str) -> None:
        actor = await self._actor(execution_id)
        state = actor.execution.state
        if state != ExecutionState.executing:
            raise InvalidOperation(
                f"Only an executing execution can be paused (state={state.value})", details={"state": state.value}
            )
        actor.submit(CommandKind.pause)

    async def resume(self, execution_id: str) -> None:
        actor = await self._actor(execution_id)
        state = actor.execution.state
        if state not in (ExecutionState.paused, ExecutionState.halted):
            raise InvalidOperation(
                f"Only a paused or halted execution can be resumed (state={state.value})",
                details={"state": state.value},
            )
        actor.submit(CommandKind.resume)

    async def halt(self, execution_id: str) -> None:
        actor = await self._actor(execution_id)
        if actor.execution.is_terminal:
            raise InvalidOperation(
                f"Execution {execution_id} already finished ({actor.execution.state.value})",
                details={"state": actor.execution.state.value},
            )
        actor.submit(CommandKind.halt)

    async def confirm(
        self,
        action_id: str,
        approved: bool,
        typed_phrase: Optional[str] = None,
        *,
        decided_by: Optional[str] = None,
    ) -> str:
        """
        Approve or reject the pending confirmation action ``action_id``.

        The phrase check for critical actions happens here, synchronously, so a
        mismatch never changes the execution.

        Returns:
            The id of the execution the action belongs to.

        Raises:
            ActionNotFound: If no execution has this pending action.
            ConfirmationPhraseMismatch: If a critical action is approved with the wrong phrase.
        """
        actor = await self._actor_for_action(action_id)
        execution = actor.execution
        self._deps.gate.verify(execution, action_id, approved=approved, typed_phrase=typed_phrase)
        if approved:
            actor.submit(CommandKind.confirm, action_id=action_id, typed_phrase=typed_phrase, decided_by=decided_by)
        else:
            actor.submit(CommandKind.reject, action_id=action_id, decided_by=decided_by)
        return execution.id

    async def submit_command(self, execution_id: str, command: ControlCommand) -> None:
        """Apply a control command coming from a progress stream reader."""
        if command.type == ControlCommandType.pause:
            await self.pause(execution_id)
        elif command.type == ControlCommandType.resume:
            await self.resume(execution_id)
        elif command.type == ControlCommandType.halt:
            await self.halt(execution_id)
        else:
            action_id = command.action_id
            if action_id is None:
                pending = (await self.get_execution_state(execution_id)).pending_action
                if pending is None:
                    raise InvalidOperation(f"Execution {execution_id} has no pending confirmation action")
                action_id = pending.id
            await self.confirm(
                action_id,
                command.type == ControlCommandType.confirm,
                command.typed_phrase,
                decided_by=command.decided_by,
            )

    # -- checkpoints ----------------------------------------------------------------

    async def create_checkpoint(self, execution_id: str, description: Optional[str] = None) -> Checkpoint:
        """Checkpoint the execution's latest completed step."""
        actor = await self._actor(execution_id, allow_terminal=True)
        if actor.finished:
            return await self._deps.checkpoints.create_latest(actor.execution, description=description)
        return await actor.call(CommandKind.create_checkpoint, description=description)

    async def preview_rollback(self, checkpoint_id: str) -> RollbackPreview:
        cp = await self._deps.checkpoints.get(checkpoint_id)
        execution = await self.get_execution_state(cp.execution_id)
        return await self._deps.checkpoints.preview(execution, cp)

    async def rollback(self, checkpoint_id: str) -> RollbackPreview:
        """
        Roll back to a checkpoint.

        Raises:
            InvalidOperation: If the execution is not paused or halted, or the
                checkpoint is the active one.
            RollbackFailure: If the rollback cannot be carried out.
        """
        cp = await self._deps.checkpoints.get(checkpoint_id)
        actor = await self._actor(cp.execution_id)
        self._check_rollback_state(actor.execution)
        return await actor.call(CommandKind.rollback, checkpoint_id=checkpoint_id)

    async def rollback_to_previous(self, execution_id: str) -> RollbackPreview:
        """Roll back to the newest checkpoint before the current end of the step log."""
        actor = await self._actor(execution_id)
        self._check_rollback_state(actor.execution)
        cp = await self._deps.checkpoints.previous_checkpoint(actor.execution)
        return await actor.call(CommandKind.rollback, checkpoint_id=cp.id)

    async def delete_checkpoint(self, checkpoint_id: str) -> None:
        cp = await self._deps.checkpoints.get(checkpoint_id)
        actor = await self._actor(cp.execution_id, allow_terminal=True)
        if actor.finished:
            await self._deps.checkpoints.delete(actor.execution, cp)
            return
        await actor.call(CommandKind.delete_checkpoint, checkpoint_id=checkpoint_id)

    # -- streaming ------------------------------------------------------------------

    async def subscribe(
        self, execution_id: str, mode: SubscriptionMode = "push", *, interval: Optional[float] = None
    ) -> Subscription:
        """
        Subscribe to an execution's progress stream.

        The first event is always the latest ``state`` snapshot.

        Raises:
            InvalidOperation: If a polling interval is given and not positive.
        """
        if interval is not None and interval <= 0:
            raise InvalidOperation(f"Polling interval must be positive, got {interval}", details={"interval": interval})
        execution = await self.get_execution_state(execution_id)
        stream = self._deps.bus.stream(execution_id)
        if stream.latest_state is None:
            stream.publish_state(execution)
        if execution.is_terminal:
            stream.close()
        return stream.subscribe(mode, interval=interval if interval is not None else self._poll_interval)

    async def wait_for_state(
        self, execution_id: str, states: Iterable[ExecutionState], *, timeout: float = 5.0
    ) -> Execution:
        """Wait until the execution reaches one of ``states`` and return that snapshot."""
        wanted = set(states)

        async def _wait() -> Execution:
            sub = await self.subscribe(execution_id)
            try:
                async for event in sub:
                    if event.execution is not None and event.execution.state in wanted:
                        return event.execution
            finally:
                sub.close()
            current = await self.get_execution_state(execution_id)
            if current.state in wanted:
                return current
            raise InvalidOperation(
                f"Execution {execution_id} ended in {current.state.value} without reaching {sorted(s.value for s in wanted)}"
            )

        return await asyncio.wait_for(_wait(), timeout)

    # -- internals ------------------------------------------------------------------

    @staticmethod
    def _check_rollback_state(execution: Execution) -> None:
        if execution.state not in ROLLBACK_STATES:
            raise InvalidOperation(
                f"Rollback requires a paused or halted execution (state={execution.state.value})",
                details={"state": execution.state.value},
            )

    async def _actor(self, execution_id: str, *, allow_terminal: bool = False) -> ExecutionActor:
        """Return the live actor of an execution, reviving one from the repository if needed."""
        actor = self._actors.get(execution_id)
        if actor is not None and (not actor.finished or allow_terminal):
            return actor
        execution = await self._deps.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(execution_id)
        actor = ExecutionActor(self._engine, execution, on_finished=self._release_actor)
        if execution.is_terminal:
            if not allow_terminal:
                raise InvalidOperation(
                    f"Execution {execution_id} already finished ({execution.state.value})",
                    details={"state": execution.state.value},
                )
            actor.finished = True
            return actor
        self._actors[execution_id] = actor
        actor.start()
        return actor

    def _release_actor(self, actor: ExecutionActor) -> None:
        if self._actors.get(actor.execution_id) is actor:
            del self._actors[actor.execution_id]
            logger.debug(f"Released actor of finished execution {actor.execution_id}")

    async def _actor_for_action(self, action_id: str) -> ExecutionActor:
        for actor in self._actors.values():
            pending = actor.execution.pending_action
            if pending is not None and pending.id == action_id:
                return actor
        for execution in await self._deps.executions.list(state=ExecutionState.awaiting_approval, limit=1000):
            if execution.pending_action is not None and execution.pending_action.id == action_id:
                return await self._actor(execution.id)
        raise ActionNotFound(action_id)
