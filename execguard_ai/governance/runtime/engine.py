from __future__ import annotations

"""LangGraph execution state machine.

``ExecutionEngine`` drives one execution step by step. Every call to
``run_step`` runs a compiled LangGraph graph once, processing exactly one step:

1. ``propose``: stop at the step ceiling, otherwise ask the agent runtime for
   the next step. No step left means the agent thinks it is done.
2. ``preflight``: get the judgment provider's assessment and evaluate the
   guards. Hard failures halt; soft failures ask for approval (or halt when
   the execution does not require approval for changes).
3. ``gate``: classify the step's risk. Denied actions halt; risky actions are
   appended as ``pending`` and wait in ``awaiting_approval``.
4. ``dispatch``: mark the step ``executing`` and call the agent runtime under
   the configured wall-clock timeout.
5. ``record``: store the ``StepResult``, account usage, auto-checkpoint and
   halt on failure.

After an approval the graph enters directly at ``dispatch`` with the step that
was gated, as long as that step is still ``pending``. A caller-supplied
``halt_requested`` check ends the pass after ``propose`` or ``preflight`` when a
halt arrived while the runtime or the judgment provider was being awaited.

The engine never waits for humans or control commands; that is the job of the
per-execution actor which calls ``run_step`` between commands.

The execution is persisted and published on the progress stream after every
transition.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from langgraph.graph import END, StateGraph

from execguard_ai.core.logging_config import get_logger

from ..budget.tracker import refusal_reason
from ..errors import BudgetExceeded, GuardFailure, RuntimeFailure
from ..policy.models import PolicyDecision
from ..preflight.engine import GUARD_MESSAGES, is_hard_failure
from ..schemas.domain import (
    ConfirmationAction,
    Execution,
    ExecutionState,
    HaltReason,
    PreCheckResult,
    ProposedStep,
    Step,
    StepResult,
    StepStatus,
)
from ..transitions import transition
from .models import EngineDeps, _GraphState

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionEngine:
    """Run single steps of an execution with guard, gate and persistence handling."""

    def __init__(self, *, deps: EngineDeps) -> None:
        """
        Initialize the ExecutionEngine.

        Args:
            deps: The runtime dependencies (repositories, collaborators, components).
        """
        self._deps = deps
        self._graph = self._build_graph()

    @property
    def deps(self) -> EngineDeps:
        return self._deps

    def _build_graph(self):
        """Build and compile the LangGraph state machine for one step."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("start", self._node_start)
        g.add_node("propose", self._node_propose)
        g.add_node("preflight", self._node_preflight)
        g.add_node("gate", self._node_gate)
        g.add_node("dispatch", self._node_dispatch)
        g.add_node("record", self._node_record)

        g.set_entry_point("start")
        g.add_conditional_edges(
            "start",
            self._route_after_start,
            {"propose": "propose", "dispatch": "dispatch"},
        )
        g.add_conditional_edges("propose", self._route_after_node, {"stop": END, "next": "preflight"})
        g.add_conditional_edges("preflight", self._route_after_node, {"stop": END, "next": "gate"})
        g.add_conditional_edges("gate", self._route_after_gate, {"stop": END, "next": "dispatch"})
        g.add_edge("dispatch", "record")
        g.add_edge("record", END)
        return g.compile()

    # -- public API -----------------------------------------------------------------

    async def commit(self, execution: Execution, step: Optional[Step] = None) -> None:
        """Persist the execution, then publish the step (if any) and a state snapshot."""
        execution.last_activity_at = _utc_now()
        await self._deps.executions.save(execution)
        stream = self._deps.bus.stream(execution.id)
        if step is not None:
            stream.publish_step(step)
        stream.publish_state(execution)

    async def begin(self, execution: Execution) -> None:
        """Move a freshly planned execution into ``executing``."""
        if execution.goal.validated_at is None:
            execution.goal.validated_at = _utc_now()
        transition(execution, ExecutionState.executing)
        await self.commit(execution)

    async def run_step(
        self,
        execution: Execution,
        *,
        approved: bool = False,
        halt_requested: Optional[Callable[[], bool]] = None,
    ) -> Execution:
        """
        Process exactly one step of ``execution``.

        Args:
            execution: The execution, which must be ``executing``.
            approved: Dispatch the pending step a human just approved.
            halt_requested: Polled after proposing and after the guards. When it
                returns True the pass ends without appending or dispatching the
                step, leaving the execution for the caller to halt.

        Returns:
            The same execution object, advanced by at most one step.
        """
        if execution.state != ExecutionState.executing:
            raise ValueError(f"execution {execution.id} is not executing (state={execution.state.value})")
        state: _GraphState = {"execution": execution, "approved": approved}
        if halt_requested is not None:
            state["halt_requested"] = halt_requested
        result = await self._graph.ainvoke(state)
        return result["execution"]

    # -- nodes ----------------------------------------------------------------------

    async def _node_start(self, state: _GraphState) -> _GraphState:
        """Graph entry node. Routing happens in ``_route_after_start``."""
        return state

    async def _node_propose(self, state: _GraphState) -> _GraphState:
        """Enforce the step ceiling and ask the runtime for the next step."""
        execution = state["execution"]

        if len(execution.steps) >= execution.max_steps:
            if await self._deps.judgment.stopping_conditions_met(execution):
                await self._finish(execution, ExecutionState.completed)
            else:
                await self._finish(
                    execution,
                    ExecutionState.failed,
                    reason=HaltReason.step_limit_reached,
                    message=f"Reached the limit of {execution.max_steps} steps before the goal was met.",
                )
            state["_stopped"] = True
            return state

        # An exhausted budget stops the execution before the runtime is asked for anything.
        budget = await self._deps.budget.get_status(execution.budget_scope)
        why = refusal_reason(budget)
        if why is not None:
            exceeded = BudgetExceeded(why, details={"budget": budget.model_dump(mode="json")})
            await self._halt(
                execution, HaltReason.budget_exhausted, GUARD_MESSAGES[HaltReason.budget_exhausted], error=exceeded.to_dict()
            )
            state["_stopped"] = True
            return state

        try:
            proposed = await self._deps.runtime.next_step(execution.model_copy(deep=True))
        except Exception as e:
            logger.exception(f"Agent runtime failed to propose a step for execution {execution.id}")
            failure = RuntimeFailure(f"The agent runtime failed to propose a step: {e}")
            await self._halt(execution, HaltReason.step_failed, failure.message, error=failure.to_dict())
            state["_stopped"] = True
            return state

        if proposed is None:
            if await self._deps.judgment.stopping_conditions_met(execution):
                await self._finish(execution, ExecutionState.completed)
            else:
                await self._finish(
                    execution,
                    ExecutionState.failed,
                    reason=HaltReason.stopping_conditions_unmet,
                    message="The agent reported no further steps but the stopping conditions are not met.",
                )
            state["_stopped"] = True
            return state

        state["proposed"] = proposed
        return state

    async def _node_preflight(self, state: _GraphState) -> _GraphState:
        """Evaluate the guards for the proposed step."""
        execution = state["execution"]
        proposed = state["proposed"]

        try:
            judgment = await self._deps.judgment.assess(execution.model_copy(deep=True), proposed)
        except Exception as e:
            logger.exception(f"Judgment provider failed for execution {execution.id}")
            failure = RuntimeFailure(f"The judgment provider failed to assess the next step: {e}")
            await self._halt(execution, HaltReason.step_failed, failure.message, error=failure.to_dict())
            state["_stopped"] = True
            return state
        state["judgment"] = judgment

        budget = await self._deps.budget.get_status(execution.budget_scope)
        limits = self._deps.budget.limits_for(execution.budget_scope)
        checks = self._deps.preflight.evaluate(execution, proposed, judgment, budget, hard_budget_limits=limits.hard)

        reason = checks.first_failure
        if reason is None:
            state["step"] = self._new_step(execution, proposed, checks)
            return state

        message = GUARD_MESSAGES[reason]
        details: Dict[str, Any] = {
            "pre_checks": checks.model_dump(mode="json"),
            "proposed": proposed.model_dump(mode="json"),
        }
        if reason == HaltReason.budget_exhausted:
            failure: GuardFailure = BudgetExceeded(message, details={"budget": budget.model_dump(mode="json")})
        else:
            failure = GuardFailure(reason.value, message)
        details["error"] = failure.to_dict()

        if is_hard_failure(reason) or not execution.require_approval_for_changes:
            await self._halt(execution, reason, message, **details)
            state["_stopped"] = True
            return state

        decision = self._deps.gate.classify(execution, proposed)
        if decision.block:
            await self._block(execution, proposed, decision)
            state["_stopped"] = True
            return state

        # Soft guard with approval required: the step waits for a human.
        step = self._new_step(execution, proposed, checks)
        step.risk_level = decision.risk
        execution.steps.append(step)
        action = self._deps.gate.build_guard_action(execution, step, reason)
        await self._await_approval(execution, step, action)
        state["_stopped"] = True
        return state

    async def _node_gate(self, state: _GraphState) -> _GraphState:
        """Classify risk and block or gate the step."""
        execution = state["execution"]
        proposed = state["proposed"]
        step = state["step"]

        decision = self._deps.gate.classify(execution, proposed)
        state["decision"] = decision
        step.risk_level = decision.risk

        if decision.block:
            await self._block(execution, proposed, decision)
            state["_stopped"] = True
            return state

        if decision.require_approval:
            execution.steps.append(step)
            action = self._deps.gate.build_risky_action(execution, step, decision)
            await self._await_approval(execution, step, action)
            state["_stopped"] = True
            return state

        execution.steps.append(step)
        return state

    async def _node_dispatch(self, state: _GraphState) -> _GraphState:
        """Mark the step executing and call the agent runtime."""
        execution = state["execution"]
        step = state.get("step")
        if step is None:
            # Entered straight from an approval: run the gated step.
            step = execution.steps[-1]
            state["step"] = step

        step.status = StepStatus.executing
        step.started_at = _utc_now()
        await self.commit(execution, step)

        timeout = self._deps.config.step_timeout_seconds
        try:
            result = await asyncio.wait_for(self._deps.runtime.execute_step(step.model_copy(deep=True)), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Step {step.step_number} of execution {execution.id} timed out after {timeout}s")
            result = StepResult(success=False, error="timeout")
        except Exception as e:
            logger.exception(f"Step {step.step_number} of execution {execution.id} raised")
            result = StepResult(success=False, error=str(e) or e.__class__.__name__)
        step.result = result
        return state

    async def _node_record(self, state: _GraphState) -> _GraphState:
        """Store the result, account usage, checkpoint and halt on failure."""
        execution = state["execution"]
        step = state["step"]
        result = step.result or StepResult(success=False, error="missing result")

        now = _utc_now()
        step.status = StepStatus.completed if result.success else StepStatus.failed
        step.completed_at = now
        step.duration_ms = int((now - step.started_at).total_seconds() * 1000)
        execution.current_step_index = step.step_number
        execution.total_tokens_used += result.tokens_used
        execution.total_cost_cents += result.cost_cents

        if result.tokens_used or result.cost_cents:
            await self._deps.budget.record_usage(
                execution.budget_scope,
                tokens=result.tokens_used,
                cost_cents=result.cost_cents,
                execution_id=execution.id,
            )

        if result.success:
            cp = await self._deps.checkpoints.auto_checkpoint(execution, step)
            if cp is not None:
                logger.debug(f"Auto checkpoint {cp.id} at step {step.step_number}")
            await self.commit(execution, step)
            return state

        failure = RuntimeFailure(
            f"Step {step.step_number} failed: {result.error}",
            details={"step_number": step.step_number, "step_id": step.id},
        )
        logger.info(f"Execution {execution.id}: {failure.message}")
        self._publish_step(execution, step)
        await self._halt(execution, HaltReason.step_failed, failure.message, error=failure.to_dict())
        return state

    # -- routing --------------------------------------------------------------------

    def _route_after_start(self, state: _GraphState) -> str:
        """Enter at ``dispatch`` for an approved pending step, else at ``propose``."""
        steps = state["execution"].steps
        if state.get("approved") and steps and steps[-1].status == StepStatus.pending:
            return "dispatch"
        return "propose"

    def _route_after_node(self, state: _GraphState) -> str:
        """Stop the pass when a node halted, gated or finished the execution, or a halt is pending."""
        if state.get("_stopped") or self._halt_pending(state):
            return "stop"
        return "next"

    def _route_after_gate(self, state: _GraphState) -> str:
        """The gate appends the step itself, so only its own outcome decides here."""
        if state.get("_stopped"):
            return "stop"
        return "next"

    @staticmethod
    def _halt_pending(state: _GraphState) -> bool:
        check = state.get("halt_requested")
        if check is not None and check():
            logger.info(f"Execution {state['execution'].id}: halt requested, the proposed step is dropped")
            return True
        return False

    # -- helpers --------------------------------------------------------------------

    @staticmethod
    def _new_step(execution: Execution, proposed: ProposedStep, checks: PreCheckResult) -> Step:
        return Step(
            step_number=len(execution.steps) + 1,
            description=proposed.description,
            action=proposed.action,
            resources=list(proposed.resources),
            depends_on=list(proposed.depends_on),
            status=StepStatus.pending,
            pre_checks=checks,
        )

    def _publish_step(self, execution: Execution, step: Step) -> None:
        self._deps.bus.stream(execution.id).publish_step(step)

    async def _await_approval(self, execution: Execution, step: Step, action: ConfirmationAction) -> None:
        self._deps.gate.raise_action(execution, action)
        transition(execution, ExecutionState.awaiting_approval)
        await self.commit(execution, step)

    async def _block(self, execution: Execution, proposed: ProposedStep, decision: PolicyDecision) -> None:
        rule_id = decision.matched_rule.id if decision.matched_rule is not None else None
        await self._halt(
            execution,
            HaltReason.action_blocked,
            f"Action blocked by safety rule: {decision.block_reason}",
            proposed=proposed.model_dump(mode="json"),
            rule_id=rule_id,
            risk_level=decision.risk.value,
        )

    async def _halt(self, execution: Execution, reason: HaltReason, message: str, **details: Any) -> None:
        transition(execution, ExecutionState.halted, reason=reason, message=message, details=details)
        logger.info(f"Execution {execution.id} halted: {reason.value} - {message}")
        await self.commit(execution)

    async def _finish(
        self,
        execution: Execution,
        target: ExecutionState,
        *,
        reason: Optional[HaltReason] = None,
        message: Optional[str] = None,
    ) -> None:
        transition(execution, target, reason=reason, message=message)
        logger.info(f"Execution {execution.id} finished: {target.value}")
        await self.commit(execution)
        self._deps.bus.stream(execution.id).close()
