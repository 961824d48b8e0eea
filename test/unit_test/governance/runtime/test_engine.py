from __future__ import annotations

import pytest

from execguard_ai.governance.config import BudgetLimits, GovernanceConfig
from execguard_ai.governance.confirmation.gate import ACTION_TYPE_GUARD, ACTION_TYPE_RISKY
from execguard_ai.governance.schemas.domain import (
    Execution,
    ExecutionState,
    HaltReason,
    RiskLevel,
    Step,
    StepResult,
    StepStatus,
)
from execguard_ai.governance.transitions import transition

from ..fakes import ScriptedJudgment, ScriptedRuntime, new_execution, proposed


async def _started(engine, **overrides) -> Execution:
    execution = new_execution(**overrides)
    await engine.commit(execution)
    await engine.begin(execution)
    return execution


def _approve(execution: Execution) -> None:
    execution.pending_action = None
    transition(execution, ExecutionState.executing)


@pytest.mark.asyncio
async def test_begin_moves_to_executing_and_validates_goal(make_engine, repos) -> None:
    engine = make_engine(ScriptedRuntime())
    execution = await _started(engine)

    assert execution.state == ExecutionState.executing
    assert execution.goal.validated_at is not None
    stored = await repos.executions.get(execution.id)
    assert stored is not None and stored.state == ExecutionState.executing


@pytest.mark.asyncio
async def test_low_risk_step_is_dispatched_and_checkpointed(make_engine, repos) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2)])
    engine = make_engine(runtime)
    execution = await _started(engine)

    await engine.run_step(execution)
    await engine.run_step(execution)

    assert runtime.executed == [1, 2]
    assert [s.step_number for s in execution.steps] == [1, 2]
    assert all(s.status == StepStatus.completed for s in execution.steps)
    assert execution.current_step_index == 2
    step = execution.steps[0]
    assert step.result is not None and step.result.changes_applied == ["change-1"]
    assert step.completed_at is not None and step.duration_ms is not None
    assert step.pre_checks.passed
    assert [cp.step_number for cp in await repos.checkpoints.list(execution.id)] == [1, 2]
    stored = await repos.executions.get(execution.id)
    assert stored == execution


@pytest.mark.asyncio
async def test_no_more_steps_completes_when_stopping_conditions_met(make_engine) -> None:
    engine = make_engine(ScriptedRuntime([proposed(1)]))
    execution = await _started(engine)
    await engine.run_step(execution)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.completed
    assert execution.completed_at is not None
    assert engine.deps.bus.get(execution.id) is None


@pytest.mark.asyncio
async def test_no_more_steps_fails_when_stopping_conditions_unmet(make_engine) -> None:
    engine = make_engine(ScriptedRuntime(), ScriptedJudgment(stopping_met=False))
    execution = await _started(engine)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.failed
    assert execution.halt_reason == HaltReason.stopping_conditions_unmet


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("stopping_met", "state", "reason"),
    [
        (True, ExecutionState.completed, None),
        (False, ExecutionState.failed, HaltReason.step_limit_reached),
    ],
)
async def test_step_ceiling(make_engine, stopping_met: bool, state: ExecutionState, reason) -> None:
    runtime = ScriptedRuntime([proposed(n) for n in range(1, 6)])
    engine = make_engine(runtime, ScriptedJudgment(stopping_met=stopping_met))
    execution = await _started(engine, max_steps=2)

    for _ in range(3):
        await engine.run_step(execution)

    assert execution.state == state
    assert execution.halt_reason == reason
    assert len(execution.steps) == 2
    assert runtime.proposals == 2


@pytest.mark.asyncio
async def test_uncertainty_below_threshold_dispatches(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    engine = make_engine(runtime, ScriptedJudgment(uncertainty=45))
    execution = await _started(engine, uncertainty_threshold=70)
    await engine.run_step(execution)

    assert runtime.executed == [1]
    assert execution.steps[0].pre_checks.uncertainty_level == 45
    assert execution.state == ExecutionState.executing


@pytest.mark.asyncio
async def test_uncertainty_above_threshold_waits_for_approval(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    engine = make_engine(runtime, ScriptedJudgment(uncertainty=85))
    execution = await _started(engine, uncertainty_threshold=70)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.awaiting_approval
    assert runtime.executed == []
    step = execution.steps[-1]
    assert step.status == StepStatus.pending
    assert step.pre_checks.first_failure == HaltReason.uncertainty_exceeded
    action = execution.pending_action
    assert action is not None
    assert action.type == ACTION_TYPE_GUARD
    assert action.step_id == step.id
    assert action.risk_level == RiskLevel.medium


@pytest.mark.asyncio
async def test_soft_guard_halts_when_approvals_are_off(make_engine) -> None:
    engine = make_engine(ScriptedRuntime([proposed(1)]), ScriptedJudgment(uncertainty=85))
    execution = await _started(engine, require_approval_for_changes=False)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.uncertainty_exceeded
    assert execution.steps == []
    assert execution.halt_details["error"]["code"] == "guard_failure"
    assert execution.halt_details["pre_checks"]["uncertainty_level"] == 85


@pytest.mark.asyncio
async def test_scope_expansion_waits_for_approval(make_engine) -> None:
    step = proposed(1, resources=["docs/readme.md"])
    engine = make_engine(ScriptedRuntime([step]))
    execution = await _started(engine, scope=["src/**"])
    await engine.run_step(execution)

    assert execution.state == ExecutionState.awaiting_approval
    assert execution.pending_action is not None
    assert execution.pending_action.details["guard"] == "scope_expanded"


@pytest.mark.asyncio
async def test_hard_guard_halts_without_running(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    engine = make_engine(runtime, ScriptedJudgment(goal_valid=False))
    execution = await _started(engine)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.goal_invalidated
    assert runtime.executed == []
    assert execution.steps == []


@pytest.mark.asyncio
async def test_unmet_dependency_halts(make_engine) -> None:
    engine = make_engine(ScriptedRuntime([proposed(1, depends_on=[4])]))
    execution = await _started(engine)
    await engine.run_step(execution)
    assert execution.halt_reason == HaltReason.dependency_unmet


@pytest.mark.asyncio
async def test_exhausted_budget_halts_before_the_runtime_is_called(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    config = GovernanceConfig(default_budget=BudgetLimits(daily_limit_cents=500))
    engine = make_engine(runtime, config=config)
    await engine.deps.budget.record_usage("default", tokens=0, cost_cents=501)
    execution = await _started(engine)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.budget_exhausted
    assert execution.halt_details["error"]["code"] == "budget_exceeded"
    assert execution.halt_details["error"]["details"]["budget"]["is_over_daily_limit"] is True
    assert runtime.executed == []
    assert runtime.proposals == 0


@pytest.mark.asyncio
async def test_risky_step_is_gated_then_dispatched_after_approval(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1, action="npm install left-pad"), proposed(2)])
    engine = make_engine(runtime)
    execution = await _started(engine)

    await engine.run_step(execution)
    assert execution.state == ExecutionState.awaiting_approval
    assert execution.pending_action is not None
    assert execution.pending_action.type == ACTION_TYPE_RISKY
    assert execution.steps[0].risk_level == RiskLevel.medium
    assert runtime.executed == []

    _approve(execution)
    await engine.run_step(execution, approved=True)

    assert runtime.executed == [1]
    assert execution.steps[0].status == StepStatus.completed
    assert runtime.proposals == 1


@pytest.mark.asyncio
async def test_risky_step_runs_directly_when_approvals_are_off(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1, action="npm install left-pad")])
    engine = make_engine(runtime)
    execution = await _started(engine, require_approval_for_changes=False)
    await engine.run_step(execution)
    assert runtime.executed == [1]
    assert execution.steps[0].risk_level == RiskLevel.medium


@pytest.mark.asyncio
async def test_denied_action_halts_with_action_blocked(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1, action="sudo apt-get install curl")])
    engine = make_engine(runtime)
    execution = await _started(engine)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.action_blocked
    assert execution.halt_details["rule_id"] == "deny-sudo"
    assert runtime.executed == []


@pytest.mark.asyncio
async def test_failed_step_halts_with_step_failed(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)], results={1: StepResult(success=False, error="compile error")})
    engine = make_engine(runtime)
    execution = await _started(engine)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.step_failed
    assert execution.steps[0].status == StepStatus.failed
    assert execution.halt_details["error"]["code"] == "runtime_failure"
    assert "compile error" in execution.halt_details["message"]


@pytest.mark.asyncio
async def test_raising_runtime_is_recorded_as_failed_step(make_engine) -> None:
    def boom(step: Step) -> StepResult:
        raise RuntimeError("agent crashed")

    engine = make_engine(ScriptedRuntime([proposed(1)], results={1: boom}))
    execution = await _started(engine)
    await engine.run_step(execution)

    step = execution.steps[0]
    assert step.status == StepStatus.failed
    assert step.result is not None and step.result.error == "agent crashed"
    assert execution.halt_reason == HaltReason.step_failed


@pytest.mark.asyncio
async def test_step_timeout(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)], execute_delay=1.0)
    engine = make_engine(runtime, config=GovernanceConfig(step_timeout_seconds=0.05))
    execution = await _started(engine)
    await engine.run_step(execution)

    step = execution.steps[0]
    assert step.status == StepStatus.failed
    assert step.result is not None and step.result.error == "timeout"
    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.step_failed


@pytest.mark.asyncio
async def test_usage_is_accounted_on_execution_and_budget(make_engine) -> None:
    result = StepResult(success=True, changes_applied=["c1"], tokens_used=1500, cost_cents=7)
    engine = make_engine(ScriptedRuntime([proposed(1)], results={1: result}))
    execution = await _started(engine, budget_scope="team-a")
    await engine.run_step(execution)

    assert execution.total_tokens_used == 1500
    assert execution.total_cost_cents == 7
    status = await engine.deps.budget.get_status("team-a")
    assert status.daily_used == 7
    assert status.daily_tokens_used == 1500


@pytest.mark.asyncio
async def test_failing_proposal_halts(make_engine) -> None:
    class _Broken(ScriptedRuntime):
        async def next_step(self, execution: Execution):
            raise ConnectionError("model unavailable")

    engine = make_engine(_Broken())
    execution = await _started(engine)
    await engine.run_step(execution)

    assert execution.state == ExecutionState.halted
    assert execution.halt_reason == HaltReason.step_failed
    assert "model unavailable" in execution.halt_details["message"]


@pytest.mark.asyncio
async def test_run_step_requires_executing_state(make_engine) -> None:
    engine = make_engine(ScriptedRuntime())
    execution = new_execution()
    with pytest.raises(ValueError):
        await engine.run_step(execution)


@pytest.mark.asyncio
async def test_every_transition_is_published(make_engine) -> None:
    engine = make_engine(ScriptedRuntime([proposed(1)]))
    execution = new_execution()
    stream = engine.deps.bus.stream(execution.id)
    sub = stream.subscribe()
    await engine.commit(execution)
    await engine.begin(execution)
    await engine.run_step(execution)
    await engine.run_step(execution)

    events = [e async for e in sub]
    states = [e.execution.state for e in events if e.execution is not None]
    assert states[0] == ExecutionState.planning
    assert states[-1] == ExecutionState.completed
    step_statuses = [e.step.status for e in events if e.step is not None]
    assert step_statuses == [StepStatus.executing, StepStatus.completed]
    versions = [e.version for e in events]
    assert versions == sorted(versions)


class _HaltingJudgment(ScriptedJudgment):
    """Raises the halt flag while it assesses, as a control command arriving mid-step would."""

    def __init__(self) -> None:
        super().__init__()
        self.halt = False

    async def assess(self, execution, step):
        self.halt = True
        return await super().assess(execution, step)


@pytest.mark.asyncio
async def test_halt_requested_during_assessment_drops_the_step(make_engine, repos) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    judgment = _HaltingJudgment()
    engine = make_engine(runtime, judgment)
    execution = await _started(engine)

    await engine.run_step(execution, halt_requested=lambda: judgment.halt)

    assert judgment.assessed == ["write:file1.txt"]
    assert runtime.executed == []
    assert execution.steps == []
    assert execution.state == ExecutionState.executing
    stored = await repos.executions.get(execution.id)
    assert stored is not None and stored.steps == []


@pytest.mark.asyncio
async def test_halt_requested_after_proposal_skips_the_guards(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1)])
    judgment = ScriptedJudgment()
    engine = make_engine(runtime, judgment)
    execution = await _started(engine)

    await engine.run_step(execution, halt_requested=lambda: True)

    assert runtime.proposals == 1
    assert judgment.assessed == []
    assert runtime.executed == []


@pytest.mark.asyncio
async def test_gated_step_is_appended_even_if_halt_arrives_later(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1, action="npm install left-pad")])
    engine = make_engine(runtime)
    execution = await _started(engine)
    checks = iter([False, False])

    await engine.run_step(execution, halt_requested=lambda: next(checks, True))

    assert execution.state == ExecutionState.awaiting_approval
    assert [s.status for s in execution.steps] == [StepStatus.pending]
    assert runtime.executed == []


@pytest.mark.asyncio
async def test_stale_approval_does_not_dispatch_a_finished_step(make_engine) -> None:
    runtime = ScriptedRuntime([proposed(1), proposed(2)])
    engine = make_engine(runtime)
    execution = await _started(engine)
    await engine.run_step(execution)

    await engine.run_step(execution, approved=True)

    assert runtime.executed == [1, 2]
    assert [s.step_number for s in execution.steps] == [1, 2]
    assert all(s.status == StepStatus.completed for s in execution.steps)
