from __future__ import annotations

from typing import List, Optional

import pytest
import pytest_asyncio

from execguard_ai.governance.config import GovernanceConfig
from execguard_ai.governance.factory import build_engine, build_governance_service
from execguard_ai.governance.repos.memory import InMemoryRepoBundle, build_memory_repos
from execguard_ai.governance.runtime.engine import ExecutionEngine
from execguard_ai.governance.service import GovernanceService

from .fakes import FIXED_NOW, ScriptedJudgment, ScriptedRuntime


@pytest.fixture
def repos() -> InMemoryRepoBundle:
    return build_memory_repos()


@pytest.fixture
def make_engine(repos: InMemoryRepoBundle):
    def _make(
        runtime: ScriptedRuntime,
        judgment: Optional[ScriptedJudgment] = None,
        config: Optional[GovernanceConfig] = None,
    ) -> ExecutionEngine:
        return build_engine(
            runtime=runtime,
            judgment=judgment or ScriptedJudgment(),
            config=config or GovernanceConfig(),
            repos=repos,
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest_asyncio.fixture
async def make_service(repos: InMemoryRepoBundle):
    services: List[GovernanceService] = []

    def _make(
        runtime: ScriptedRuntime,
        judgment: Optional[ScriptedJudgment] = None,
        config: Optional[GovernanceConfig] = None,
    ) -> GovernanceService:
        service = build_governance_service(
            runtime=runtime,
            judgment=judgment or ScriptedJudgment(),
            config=config or GovernanceConfig(),
            repos=repos,
            clock=lambda: FIXED_NOW,
            poll_interval_seconds=0.01,
        )
        services.append(service)
        return service

    yield _make

    for service in services:
        await service.shutdown()
