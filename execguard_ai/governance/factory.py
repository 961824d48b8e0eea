from __future__ import annotations

"""Convenience factories for wiring the governance core.

This module contains small helpers to build the governance components from a
``GovernanceConfig`` and assemble a ``GovernanceService`` around an agent
runtime and judgment provider.

The intent is to keep application wiring and tests concise, while still
allowing deployments to supply their own repositories (for example the SQL
bundle from ``repos.sql.build_sql_repos``) or clock.
"""

from typing import Optional, Union

from .budget.tracker import BudgetTracker, Clock
from .checkpoints.manager import CheckpointManager
from .config import GovernanceConfig
from .confirmation.gate import ConfirmationGate
from .policy.safety import SafetyPolicy
from .preflight.engine import PreFlightCheckEngine
from .repos.memory import InMemoryRepoBundle, build_memory_repos
from .repos.sql import SqlRepoBundle
from .runtime.engine import ExecutionEngine
from .runtime.models import AgentRuntime, EngineDeps, JudgmentProvider
from .service import GovernanceService, GovernanceServiceDeps
from .streaming.stream import ProgressBus

RepoBundle = Union[InMemoryRepoBundle, SqlRepoBundle]


def build_safety_policy(config: GovernanceConfig) -> SafetyPolicy:
    """Build the ``SafetyPolicy`` with the configured custom rules ahead of the defaults."""
    return SafetyPolicy(config.custom_rules)


def build_engine(
    *,
    runtime: AgentRuntime,
    judgment: JudgmentProvider,
    config: GovernanceConfig,
    repos: RepoBundle,
    clock: Optional[Clock] = None,
) -> ExecutionEngine:
    """Construct an ``ExecutionEngine`` and all of its components."""
    deps = EngineDeps(
        executions=repos.executions,
        runtime=runtime,
        judgment=judgment,
        budget=BudgetTracker(repos.usage, config, clock=clock),
        preflight=PreFlightCheckEngine(),
        gate=ConfirmationGate(
            build_safety_policy(config),
            repos.decisions,
            confirmation_phrase=config.confirmation_phrase,
        ),
        checkpoints=CheckpointManager(repos.checkpoints),
        bus=ProgressBus(queue_size=config.stream_queue_size),
        config=config,
    )
    return ExecutionEngine(deps=deps)


def build_governance_service(
    *,
    runtime: AgentRuntime,
    judgment: JudgmentProvider,
    config: Optional[GovernanceConfig] = None,
    repos: Optional[RepoBundle] = None,
    clock: Optional[Clock] = None,
    poll_interval_seconds: float = 1.0,
) -> GovernanceService:
    """
    Build a ready-to-use ``GovernanceService``.

    Args:
        runtime: The agent runtime that proposes and executes steps.
        judgment: The provider of goal-validity and uncertainty judgments.
        config: Engine-wide configuration. Defaults to ``GovernanceConfig()``.
        repos: Repository bundle. Defaults to fresh in-memory repositories.
        clock: Clock for budget bucketing (tests inject a fixed one).
        poll_interval_seconds: Default interval of polling subscriptions.
    """
    engine = build_engine(
        runtime=runtime,
        judgment=judgment,
        config=config or GovernanceConfig(),
        repos=repos or build_memory_repos(),
        clock=clock,
    )
    return GovernanceService(deps=GovernanceServiceDeps(engine=engine, poll_interval_seconds=poll_interval_seconds))
