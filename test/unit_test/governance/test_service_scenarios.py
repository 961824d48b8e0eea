from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from execguard_ai.governance.config import BudgetLimits, ExecutionConfig, GovernanceConfig
from execguard_ai.governance.errors import (
    ActionNotFound,
    CheckpointNotFound,
    ConfirmationPhraseMismatch,
    ExecutionNotFound,
    InvalidOperation,
    RollbackFailure,
)
from execguard_ai.governance.factory import build_governance_service
from execguard_ai.governance.schemas.domain import (
    ConfirmationDecision,
    ExecutionState,
    HaltReason,
    RiskLevel,
    StepResult,
    StepStatus,
    WarningLevel,
)
from execguard_ai.governance.streaming.models import ControlCommand, ControlCommandType, StreamEventType

from .fakes import FIXED_NOW, ScriptedJudgment, ScriptedRuntime, new_goal, proposed

S = ExecutionState


async def _start(service, **config) -> str:
    return await service.start_execution(new_goal(), ExecutionConfig(**config))


@pytest.mark.asyncio
async def test_low_uncertainty_step_is_dispatched_and_execution_completes(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    service = make_service(runtime, ScriptedJudgment(uncertainty=45))
    execution_id = await _start(service, uncertainty_threshold=70)

    final = await service.wait_for_state(execution_id, [S.completed])

    assert runtime.executed == [1]
    assert final.steps[0].status == StepStatus.completed
    assert final.steps[0].pre_checks.uncertainty_level == 45
    assert (await service.get_execution_state(execution_id)).state == S.completed


@pytest.mark.asyncio
async def test_high_uncertainty_waits_and_rejection_halts(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    service = make_service(runtime, ScriptedJudgment(uncertainty=85))
    execution_id = await _start(service, uncertainty_threshold=70, require_approval_for_changes=True)

    waiting = await service.wait_for_state(execution_id, [S.awaiting_approval])
    action = waiting.pending_action
    assert action is not None
    assert action.details["guard"] == "uncertainty_exceeded"

    assert await service.confirm(action.id, approved=False, decided_by="reviewer") == execution_id
    halted = await service.wait_for_state(execution_id, [S.halted])

    assert halted.halt_reason == HaltReason.user_rejected
    assert halted.pending_action is None
    assert halted.steps[-1].status == StepStatus.skipped
    assert runtime.executed == []
    decisions = await service.list_decisions(execution_id)
    assert [(d.decision, d.decided_by) for d in decisions] == [(ConfirmationDecision.rejected, "reviewer")]


@pytest.mark.asyncio
async def test_approval_dispatches_the_gated_step(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1, action="npm install left-pad"), proposed(2)])
    service = make_service(runtime)
    execution_id = await _start(service)

    waiting = await service.wait_for_state(execution_id, [S.awaiting_approval])
    assert waiting.pending_action is not None
    await service.confirm(waiting.pending_action.id, approved=True)
    final = await service.wait_for_state(execution_id, [S.completed])

    assert runtime.executed == [1, 2]
    assert [s.step_number for s in final.steps] == [1, 2]
    decisions = await service.list_decisions(execution_id)
    assert decisions[0].decision == ConfirmationDecision.approved


@pytest.mark.asyncio
async def test_critical_action_needs_the_exact_phrase(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1, risk_hint=RiskLevel.critical)])
    service = make_service(runtime)
    execution_id = await _start(service)

    waiting = await service.wait_for_state(execution_id, [S.awaiting_approval])
    action = waiting.pending_action
    assert action is not None and action.requires_typed_confirmation

    with pytest.raises(ConfirmationPhraseMismatch):
        await service.confirm(action.id, approved=True, typed_phrase="confirm")
    still = await service.get_execution_state(execution_id)
    assert still.state == S.awaiting_approval
    assert still.pending_action is not None and still.pending_action.id == action.id
    assert await service.list_decisions(execution_id) == []

    await service.confirm(action.id, approved=True, typed_phrase="CONFIRM")
    await service.wait_for_state(execution_id, [S.completed])
    assert runtime.executed == [1]


@pytest.mark.asyncio
async def test_confirm_unknown_action(make_service) -> None:
    service = make_service(ScriptedRuntime())
    with pytest.raises(ActionNotFound):
        await service.confirm("missing", approved=True)


@pytest.mark.asyncio
async def test_exhausted_budget_halts_before_any_step_runs(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    config = GovernanceConfig(default_budget=BudgetLimits(daily_limit_cents=500))
    service = make_service(runtime, config=config)

    status = await service.record_usage("default", tokens=0, cost_cents=501)
    assert status.is_over_daily_limit
    assert status.warning_level == WarningLevel.exceeded

    execution_id = await _start(service)
    halted = await service.wait_for_state(execution_id, [S.halted])

    assert halted.halt_reason == HaltReason.budget_exhausted
    assert runtime.executed == []
    assert halted.steps == []


@pytest.mark.asyncio
async def test_halt_during_a_step_wins_over_the_next_step(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2)], hold=True)
    service = make_service(runtime)
    execution_id = await _start(service)

    await asyncio.wait_for(runtime.started.wait(), 5)
    await service.halt(execution_id)
    runtime.release.set()  # type: ignore[union-attr]
    halted = await service.wait_for_state(execution_id, [S.halted])

    assert halted.halt_reason == HaltReason.user_requested
    assert runtime.executed == [1]
    assert halted.steps[0].status == StepStatus.completed
    assert len(halted.steps) == 1


@pytest.mark.asyncio
async def test_pause_and_resume_at_step_boundaries(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2)], hold=True)
    service = make_service(runtime)
    execution_id = await _start(service)

    await asyncio.wait_for(runtime.started.wait(), 5)
    await service.pause(execution_id)
    runtime.release.set()  # type: ignore[union-attr]
    paused = await service.wait_for_state(execution_id, [S.paused])
    assert runtime.executed == [1]
    assert paused.current_step_index == 1

    with pytest.raises(InvalidOperation):
        await service.pause(execution_id)

    await service.resume(execution_id)
    await service.wait_for_state(execution_id, [S.completed])
    assert runtime.executed == [1, 2]


@pytest.mark.asyncio
async def test_illegal_control_requests_are_rejected_synchronously(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1)]))
    execution_id = await _start(service)
    await service.wait_for_state(execution_id, [S.completed])

    with pytest.raises(InvalidOperation):
        await service.halt(execution_id)
    with pytest.raises(InvalidOperation):
        await service.resume(execution_id)
    with pytest.raises(InvalidOperation):
        await service.pause(execution_id)
    with pytest.raises(ExecutionNotFound):
        await service.get_execution_state("missing")
    with pytest.raises(ExecutionNotFound):
        await service.pause("missing")


@pytest.mark.asyncio
async def test_step_timeout_halts_the_execution(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1)], execute_delay=1.0)
    service = make_service(runtime, config=GovernanceConfig(step_timeout_seconds=0.05))
    execution_id = await _start(service)

    halted = await service.wait_for_state(execution_id, [S.halted])

    assert halted.halt_reason == HaltReason.step_failed
    assert halted.steps[0].status == StepStatus.failed
    assert halted.steps[0].result is not None and halted.steps[0].result.error == "timeout"


async def _five_steps_then_waiting(service, runtime: ScriptedRuntime) -> str:
    execution_id = await _start(service)
    waiting = await service.wait_for_state(execution_id, [S.awaiting_approval])
    assert runtime.executed == [1, 2, 3, 4, 5]
    assert len(waiting.steps) == 6
    return execution_id


def _five_step_runtime(**kwargs) -> ScriptedRuntime:
    return ScriptedRuntime([*(proposed(n) for n in range(1, 6)), proposed(6, action="npm install left-pad")], **kwargs)


@pytest.mark.asyncio
async def test_rollback_to_checkpoint_after_step_two(make_service) -> None:
    runtime = _five_step_runtime()
    service = make_service(runtime)
    execution_id = await _five_steps_then_waiting(service, runtime)

    with pytest.raises(InvalidOperation):
        await service.rollback_to_previous(execution_id)

    await service.halt(execution_id)
    halted = await service.wait_for_state(execution_id, [S.halted])
    assert halted.steps[-1].status == StepStatus.skipped

    checkpoints = await service.list_checkpoints(execution_id)
    assert [cp.step_number for cp in checkpoints] == [1, 2, 3, 4, 5]
    at_two = checkpoints[1]

    preview = await service.preview_rollback(at_two.id)
    assert preview.steps_to_revert == 4
    assert preview.changes_to_revert == ["change-5", "change-4", "change-3"]

    result = await service.rollback(at_two.id)
    assert result.target_step_number == 2

    after = await service.get_execution_state(execution_id)
    assert len(after.steps) == 2
    assert after.current_step_index == 2
    assert after.state == S.paused
    assert after.pending_action is None
    assert runtime.inverted == ["change-5", "change-4", "change-3"]
    assert [cp.step_number for cp in await service.list_checkpoints(execution_id)] == [1, 2]

    # Resuming re-proposes the reverted work.
    await service.resume(execution_id)
    again = await service.wait_for_state(execution_id, [S.awaiting_approval])
    assert runtime.executed == [1, 2, 3, 4, 5, 3, 4, 5]
    assert [s.step_number for s in again.steps] == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_rollback_to_previous_checkpoint(make_service) -> None:
    runtime = _five_step_runtime()
    service = make_service(runtime)
    execution_id = await _five_steps_then_waiting(service, runtime)
    await service.halt(execution_id)
    await service.wait_for_state(execution_id, [S.halted])

    preview = await service.rollback_to_previous(execution_id)

    assert preview.target_step_number == 5
    after = await service.get_execution_state(execution_id)
    assert len(after.steps) == 5
    assert after.state == S.paused


@pytest.mark.asyncio
async def test_irreversible_step_blocks_rollback(make_service) -> None:
    results = {4: StepResult(success=True, changes_applied=["deploy-1"], rollback_available=False)}
    runtime = _five_step_runtime(results=results)
    service = make_service(runtime)
    execution_id = await _five_steps_then_waiting(service, runtime)
    await service.halt(execution_id)
    before = await service.wait_for_state(execution_id, [S.halted])

    at_two = (await service.list_checkpoints(execution_id))[1]
    with pytest.raises(RollbackFailure) as exc:
        await service.rollback(at_two.id)

    assert exc.value.blocking_steps == [4]
    after = await service.get_execution_state(execution_id)
    assert len(after.steps) == len(before.steps)
    assert after.state == S.halted
    assert runtime.inverted == []


@pytest.mark.asyncio
async def test_failed_inverse_operation_halts_with_rollback_failed(make_service) -> None:
    runtime = _five_step_runtime(inverse_failures=["change-4"])
    service = make_service(runtime)
    execution_id = await _five_steps_then_waiting(service, runtime)
    await service.halt(execution_id)
    await service.wait_for_state(execution_id, [S.halted])

    at_two = (await service.list_checkpoints(execution_id))[1]
    with pytest.raises(RollbackFailure) as exc:
        await service.rollback(at_two.id)

    assert exc.value.reverted == ["change-5"]
    after = await service.get_execution_state(execution_id)
    assert after.state == S.halted
    assert after.halt_reason == HaltReason.rollback_failed


@pytest.mark.asyncio
async def test_rollback_requires_paused_or_halted(make_service) -> None:
    runtime = _five_step_runtime()
    service = make_service(runtime)
    execution_id = await _five_steps_then_waiting(service, runtime)
    at_two = (await service.list_checkpoints(execution_id))[1]

    with pytest.raises(InvalidOperation):
        await service.rollback(at_two.id)
    with pytest.raises(CheckpointNotFound):
        await service.rollback("missing")


@pytest.mark.asyncio
async def test_manual_checkpoints_on_a_finished_execution(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2)])
    service = make_service(runtime)
    execution_id = await _start(service, auto_checkpoint=False)
    await service.wait_for_state(execution_id, [S.completed])
    assert await service.list_checkpoints(execution_id) == []

    cp = await service.create_checkpoint(execution_id, "release candidate")
    assert cp.step_number == 2
    assert cp.description == "release candidate"
    assert not cp.automatic

    with pytest.raises(InvalidOperation):
        await service.delete_checkpoint(cp.id)


@pytest.mark.asyncio
async def test_manual_checkpoint_and_delete_on_a_live_execution(make_service) -> None:
    runtime = _five_step_runtime()
    service = make_service(runtime)
    execution_id = await _five_steps_then_waiting(service, runtime)

    automatic = (await service.list_checkpoints(execution_id))[-1]
    assert automatic.step_number == 5 and automatic.automatic

    manual = await service.create_checkpoint(execution_id, "before the install")
    assert manual.id == automatic.id
    assert not manual.automatic
    assert manual.description == "before the install"
    with pytest.raises(InvalidOperation):
        # Step 5 now carries a manual checkpoint.
        await service.create_checkpoint(execution_id)

    first = (await service.list_checkpoints(execution_id))[0]
    await service.delete_checkpoint(first.id)
    assert [cp.step_number for cp in await service.list_checkpoints(execution_id)] == [2, 3, 4, 5]


@pytest.mark.asyncio
async def test_stream_readers_can_steer_the_execution(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1, action="npm install left-pad")])
    service = make_service(runtime)
    execution_id = await _start(service)
    await service.wait_for_state(execution_id, [S.awaiting_approval])

    sub = await service.subscribe(execution_id)
    events = sub.events()
    first = await anext(events)
    assert first.type == StreamEventType.state
    assert first.execution is not None and first.execution.state == S.awaiting_approval

    await sub.send(ControlCommand(type=ControlCommandType.reject, decided_by="stream-reader"))
    halted = await service.wait_for_state(execution_id, [S.halted])
    await events.aclose()

    assert halted.halt_reason == HaltReason.user_rejected
    decisions = await service.list_decisions(execution_id)
    assert decisions[0].decided_by == "stream-reader"


@pytest.mark.asyncio
async def test_polling_subscription_ends_with_the_execution(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1)]))
    execution_id = await _start(service)
    await service.wait_for_state(execution_id, [S.completed])

    sub = await service.subscribe(execution_id, "poll", interval=0.001)
    events = [e async for e in sub]
    assert events[-1].execution is not None
    assert events[-1].execution.state == S.completed


@pytest.mark.asyncio
async def test_list_executions_by_state(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1, action="npm install left-pad")]))
    waiting_id = await _start(service)
    await service.wait_for_state(waiting_id, [S.awaiting_approval])

    waiting = await service.list_executions(state=S.awaiting_approval)
    assert [e.id for e in waiting] == [waiting_id]
    assert await service.list_executions(state=S.completed) == []


@pytest.mark.asyncio
async def test_halted_execution_is_revived_from_the_repository(repos) -> None:
    runtime = ScriptedRuntime([proposed(1, action="npm install left-pad"), proposed(2)])
    first = build_governance_service(runtime=runtime, judgment=ScriptedJudgment(), repos=repos, clock=lambda: FIXED_NOW)
    execution_id = await _start(first)
    waiting = await first.wait_for_state(execution_id, [S.awaiting_approval])
    await first.shutdown()

    second = build_governance_service(runtime=runtime, judgment=ScriptedJudgment(), repos=repos, clock=lambda: FIXED_NOW)
    try:
        assert waiting.pending_action is not None
        await second.confirm(waiting.pending_action.id, approved=True)
        final = await second.wait_for_state(execution_id, [S.completed])
        assert runtime.executed == [1, 2]
        assert len(final.steps) == 2
    finally:
        await second.shutdown()


async def _pending_other_than(service, execution_id: str, previous_id: Optional[str] = None):
    """Wait for a snapshot whose pending action is not ``previous_id``."""

    async def _wait():
        sub = await service.subscribe(execution_id)
        try:
            async for event in sub:
                execution = event.execution
                if execution is not None and execution.pending_action is not None:
                    if execution.pending_action.id != previous_id:
                        return execution
        finally:
            sub.close()
        raise AssertionError(f"Execution {execution_id} finished without a new pending action")

    return await asyncio.wait_for(_wait(), 5.0)


class _BlockingJudgment(ScriptedJudgment):
    """Blocks inside ``assess`` until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def assess(self, execution, step):
        self.entered.set()
        await self.release.wait()
        return await super().assess(execution, step)


class _ConcurrencyRecordingRuntime(ScriptedRuntime):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.active = 0
        self.max_active = 0

    async def execute_step(self, step):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            return await super().execute_step(step)
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_halt_while_guards_are_evaluated_stops_before_dispatch(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2)])
    judgment = _BlockingJudgment()
    service = make_service(runtime, judgment)
    execution_id = await _start(service)

    await asyncio.wait_for(judgment.entered.wait(), 5)
    await service.halt(execution_id)
    judgment.release.set()
    halted = await service.wait_for_state(execution_id, [S.halted])

    assert halted.halt_reason == HaltReason.user_requested
    assert runtime.executed == []
    assert halted.steps == []
    assert halted.current_step_index == 0


@pytest.mark.asyncio
async def test_approval_followed_by_halt_and_rollback_never_reruns_a_finished_step(make_service) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2), proposed(3, action="npm install left-pad")])
    service = make_service(runtime)
    execution_id = await _start(service)
    waiting = await service.wait_for_state(execution_id, [S.awaiting_approval])
    assert runtime.executed == [1, 2]

    # Both commands are queued before the actor applies either of them.
    await service.confirm(waiting.pending_action.id, approved=True)
    await service.halt(execution_id)
    halted = await service.wait_for_state(execution_id, [S.halted])
    assert runtime.executed == [1, 2]
    assert halted.steps[-1].status == StepStatus.skipped

    at_one = (await service.list_checkpoints(execution_id))[0]
    assert at_one.step_number == 1
    await service.rollback(at_one.id)
    assert runtime.executed == [1, 2]

    await service.resume(execution_id)
    again = await _pending_other_than(service, execution_id, waiting.pending_action.id)

    # Step 2 was reverted and runs again; step 1 is never dispatched twice.
    assert runtime.executed == [1, 2, 2]
    assert [s.step_number for s in again.steps] == [1, 2, 3]
    assert [s.status for s in again.steps] == [StepStatus.completed, StepStatus.completed, StepStatus.pending]


@pytest.mark.asyncio
async def test_steps_of_one_execution_never_overlap(make_service) -> None:
    runtime = _ConcurrencyRecordingRuntime([proposed(n) for n in range(1, 6)], execute_delay=0.01)
    service = make_service(runtime)
    execution_id = await _start(service)

    async def _steer() -> None:
        while True:
            state = (await service.get_execution_state(execution_id)).state
            if state == S.completed:
                return
            try:
                if state == S.executing:
                    await service.pause(execution_id)
                elif state == S.paused:
                    await service.resume(execution_id)
            except InvalidOperation:
                pass
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_steer(), 10)

    assert runtime.max_active == 1
    assert runtime.executed == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_step_numbers_stay_gapless_across_reject_rollback_and_resume(make_service) -> None:
    gated = "npm install left-pad"
    runtime = ScriptedRuntime(
        [proposed(1), proposed(2), proposed(3, action=gated), proposed(4), proposed(5, action=gated), proposed(6)]
    )
    service = make_service(runtime)
    execution_id = await _start(service)

    first = await _pending_other_than(service, execution_id)
    await service.confirm(first.pending_action.id, approved=False)
    await service.wait_for_state(execution_id, [S.halted])

    await service.resume(execution_id)
    second = await _pending_other_than(service, execution_id, first.pending_action.id)
    assert [s.step_number for s in second.steps] == [1, 2, 3, 4, 5]
    await service.halt(execution_id)
    await service.wait_for_state(execution_id, [S.halted])

    at_two = next(cp for cp in await service.list_checkpoints(execution_id) if cp.step_number == 2)
    await service.rollback(at_two.id)
    await service.resume(execution_id)
    third = await _pending_other_than(service, execution_id, second.pending_action.id)
    assert [s.step_number for s in third.steps] == [1, 2, 3]

    await service.confirm(third.pending_action.id, approved=True)
    fourth = await _pending_other_than(service, execution_id, third.pending_action.id)
    await service.confirm(fourth.pending_action.id, approved=True)
    final = await service.wait_for_state(execution_id, [S.completed])

    assert [s.step_number for s in final.steps] == [1, 2, 3, 4, 5, 6]
    assert all(s.status == StepStatus.completed for s in final.steps)
    assert final.current_step_index == 6
    assert runtime.executed == [1, 2, 4, 3, 4, 5, 6]


async def _until_released(service) -> None:
    async def _wait() -> None:
        while service.active_executions:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_wait(), 5)


@pytest.mark.asyncio
async def test_finished_executions_release_their_actor_and_stream(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1)]))
    bus = service.engine.deps.bus
    execution_ids = [await _start(service) for _ in range(5)]
    for execution_id in execution_ids:
        await service.wait_for_state(execution_id, [S.completed])

    await _until_released(service)

    assert service.active_executions == 0
    assert bus.stream_count == 0
    for execution_id in execution_ids:
        assert (await service.get_execution_state(execution_id)).state == S.completed


@pytest.mark.asyncio
async def test_released_execution_can_still_be_observed_and_checkpointed(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1), proposed(2)]))
    bus = service.engine.deps.bus
    execution_id = await _start(service, auto_checkpoint=False)
    await service.wait_for_state(execution_id, [S.completed])
    await _until_released(service)

    events = [e async for e in await service.subscribe(execution_id)]
    assert [e.execution.state for e in events if e.execution is not None] == [S.completed]
    assert bus.get(execution_id) is None

    cp = await service.create_checkpoint(execution_id)
    assert cp.step_number == 2
    assert service.active_executions == 0


@pytest.mark.asyncio
async def test_halted_execution_keeps_its_actor(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1, action="npm install left-pad")]))
    execution_id = await _start(service)
    await service.wait_for_state(execution_id, [S.awaiting_approval])
    await service.halt(execution_id)
    await service.wait_for_state(execution_id, [S.halted])

    assert service.active_executions == 1


@pytest.mark.asyncio
async def test_usage_without_cost_is_priced_from_token_counts(make_service) -> None:
    service = make_service(ScriptedRuntime())

    status = await service.record_usage("team-a", input_tokens=10_000, output_tokens=5_000)

    assert status.daily_used == 3
    assert status.daily_tokens_used == 15_000


@pytest.mark.asyncio
async def test_polling_subscription_requires_positive_interval(make_service) -> None:
    service = make_service(ScriptedRuntime([proposed(1)]))
    execution_id = await _start(service)

    with pytest.raises(InvalidOperation):
        await service.subscribe(execution_id, "poll", interval=0)
