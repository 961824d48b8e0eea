from typing import AsyncGenerator, Dict, List, Optional
from unittest.mock import patch

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from execguard_ai.governance.config import GovernanceConfig
from execguard_ai.governance.factory import build_governance_service
from execguard_ai.governance.schemas.domain import Execution, Judgment, ProposedStep, RiskLevel, Step, StepResult
from execguard_ai.governance.service import GovernanceService


class ListRuntime:
    """Agent runtime that proposes a fixed list of actions, one per step."""

    def __init__(self, actions: List[str], *, risk_hints: Optional[Dict[str, RiskLevel]] = None) -> None:
        self.actions = actions
        self.risk_hints = risk_hints or {}
        self.reverted: List[str] = []

    async def next_step(self, execution: Execution) -> Optional[ProposedStep]:
        index = len(execution.steps)
        if index >= len(self.actions):
            return None
        action = self.actions[index]
        return ProposedStep(
            description=f"step {index + 1}",
            action=action,
            risk_hint=self.risk_hints.get(action),
        )

    async def execute_step(self, step: Step) -> StepResult:
        return StepResult(success=True, changes_applied=[f"change-{step.step_number}"], tokens_used=10, cost_cents=1)

    async def inverse_operation(self, change_id: str) -> bool:
        self.reverted.append(change_id)
        return True


class FixedJudgment:
    def __init__(self, uncertainty: int = 10) -> None:
        self.uncertainty = uncertainty

    async def assess(self, execution: Execution, step: ProposedStep) -> Judgment:
        return Judgment(goal_still_valid=True, uncertainty_level=self.uncertainty)

    async def stopping_conditions_met(self, execution: Execution) -> bool:
        return True


@pytest_asyncio.fixture(name="service_factory")
async def service_factory_fixture() -> AsyncGenerator:
    """Build governance services for a test and shut them all down afterwards."""
    services: List[GovernanceService] = []

    def _build(
        actions: Optional[List[str]] = None,
        *,
        uncertainty: int = 10,
        config: Optional[GovernanceConfig] = None,
        risk_hints: Optional[Dict[str, RiskLevel]] = None,
    ) -> GovernanceService:
        service = build_governance_service(
            runtime=ListRuntime(actions or [], risk_hints=risk_hints),
            judgment=FixedJudgment(uncertainty),
            config=config,
            poll_interval_seconds=0.01,
        )
        services.append(service)
        return service

    yield _build

    for service in services:
        await service.shutdown()


@pytest_asyncio.fixture(name="service")
async def service_fixture(service_factory) -> GovernanceService:
    return service_factory(["write:README.md", "write:CHANGELOG.md"])


@pytest_asyncio.fixture(name="client")
async def client_fixture(service: GovernanceService) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and an overridden governance service."""
    from execguard_ai.server.main import app
    from execguard_ai.server.services.governance import get_governance_service

    app.dependency_overrides[get_governance_service] = lambda: service

    # Mock the lifespan to prevent database initialization during tests
    async def mock_lifespan(app):
        yield

    with patch("execguard_ai.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()
