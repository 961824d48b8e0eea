from __future__ import annotations

"""Runtime dependency bundle, collaborator protocols and LangGraph state types.

- ``AgentRuntime`` and ``JudgmentProvider`` are the external collaborators the
  engine consumes: the runtime proposes and executes steps, the judgment
  provider assesses them.
- ``EngineDeps`` collects everything the engine needs.
- ``_GraphState`` is the mutable state passed between LangGraph nodes while
  one step is processed.
"""

from dataclasses import dataclass
from typing import Callable, NotRequired, Optional, Protocol, Required, TypedDict

from ..budget.tracker import BudgetTracker
from ..checkpoints.manager import CheckpointManager
from ..config import GovernanceConfig
from ..confirmation.gate import ConfirmationGate
from ..policy.models import PolicyDecision
from ..preflight.engine import PreFlightCheckEngine
from ..repos.interfaces import ExecutionRepository
from ..schemas.domain import Execution, Judgment, ProposedStep, Step, StepResult
from ..streaming.stream import ProgressBus


class AgentRuntime(Protocol):
    """The agent doing the actual work."""

    async def next_step(self, execution: Execution) -> Optional[ProposedStep]:
        """
        Propose the next step, or return None when the agent considers the goal done.

        Args:
            execution: A snapshot of the execution so far.
        """
        ...

    async def execute_step(self, step: Step) -> StepResult:
        """
        Execute a step. May raise; may be cancelled on timeout.

        Args:
            step: The step to execute, already marked ``executing``.

        Returns:
            The result, including the ids of every change applied.
        """
        ...

    async def inverse_operation(self, change_id: str) -> bool:
        """Revert one previously applied change. Returns False on failure."""
        ...


class JudgmentProvider(Protocol):
    """Caller-supplied judgment about goal validity and uncertainty."""

    async def assess(self, execution: Execution, step: ProposedStep) -> Judgment:
        """Assess whether the goal is still valid and how uncertain the next step is."""
        ...

    async def stopping_conditions_met(self, execution: Execution) -> bool:
        """Judge whether the goal's stopping conditions are satisfied."""
        ...


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``ExecutionEngine``.

    Typically constructed by ``build_governance_service``. It holds:

    - the execution repository (saved after every transition),
    - the agent runtime and judgment provider,
    - the governance components (budget, pre-flight, gate, checkpoints),
    - the progress bus the engine publishes to.
    """

    executions: ExecutionRepository
    runtime: AgentRuntime
    judgment: JudgmentProvider
    budget: BudgetTracker
    preflight: PreFlightCheckEngine
    gate: ConfirmationGate
    checkpoints: CheckpointManager
    bus: ProgressBus
    config: GovernanceConfig


class _GraphState(TypedDict):
    """Mutable LangGraph state while one step is processed.

    Required keys:

    - ``execution``: the execution being driven (mutated in place).
    - ``approved``: dispatch the execution's pending step instead of asking
      the runtime for a new one.

    Optional keys:

    - ``proposed`` / ``judgment`` / ``decision``: intermediate results.
    - ``step``: the step being processed.
    - ``_stopped``: set when a node ended the pass (halt, approval, finish).
    - ``halt_requested``: polled between nodes; True drops the proposed step.
    """

    execution: Required[Execution]
    approved: Required[bool]
    proposed: NotRequired[ProposedStep]
    judgment: NotRequired[Judgment]
    decision: NotRequired[PolicyDecision]
    step: NotRequired[Step]
    _stopped: NotRequired[bool]
    halt_requested: NotRequired[Callable[[], bool]]
