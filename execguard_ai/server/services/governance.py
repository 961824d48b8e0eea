"""
Governance Service Provider.

Builds the process-wide ``GovernanceService`` used by the API endpoints. The
agent runtime and judgment provider are loaded from the import paths in the
settings; without them the server falls back to a runtime that proposes no
steps, which is enough to serve budget and history queries.
"""

from __future__ import annotations

import importlib
from typing import Any, Optional

from execguard_ai.core.logging_config import get_logger
from execguard_ai.governance.factory import build_governance_service
from execguard_ai.governance.repos.sql import build_sql_repos
from execguard_ai.governance.schemas.domain import Execution, Judgment, ProposedStep, Step, StepResult
from execguard_ai.governance.service import GovernanceService
from execguard_ai.server.core.config import settings
from execguard_ai.server.core.database import get_session_maker

logger = get_logger(__name__)


class IdleAgentRuntime:
    """Agent runtime that never proposes a step."""

    async def next_step(self, execution: Execution) -> Optional[ProposedStep]:
        return None

    async def execute_step(self, step: Step) -> StepResult:
        return StepResult(success=False, error="no agent runtime configured")

    async def inverse_operation(self, change_id: str) -> bool:
        return False


class PermissiveJudgmentProvider:
    """Judgment provider that always considers the goal valid and certain."""

    async def assess(self, execution: Execution, step: ProposedStep) -> Judgment:
        return Judgment(goal_still_valid=True, uncertainty_level=0)

    async def stopping_conditions_met(self, execution: Execution) -> bool:
        return True


def load_object(path: str) -> Any:
    """
    Load ``module:attribute`` and call it when it is a class or factory.

    Raises:
        ValueError: If the path is not in ``module:attribute`` form.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected an import path of the form 'module:attribute', got {path!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    return obj() if callable(obj) else obj


def create_governance_service() -> GovernanceService:
    """Wire a ``GovernanceService`` from the application settings."""
    if settings.agent_runtime:
        runtime = load_object(settings.agent_runtime)
    else:
        logger.warning("EXECGUARD_AI_AGENT_RUNTIME is not set; executions will complete without steps")
        runtime = IdleAgentRuntime()
    judgment = load_object(settings.judgment_provider) if settings.judgment_provider else PermissiveJudgmentProvider()

    session_maker = get_session_maker()
    repos = build_sql_repos(session_factory=session_maker) if session_maker is not None else None
    return build_governance_service(
        runtime=runtime,
        judgment=judgment,
        config=settings.to_governance_config(),
        repos=repos,
        poll_interval_seconds=settings.stream_poll_interval_seconds,
    )


_service: Optional[GovernanceService] = None


def get_governance_service() -> GovernanceService:
    global _service
    if _service is None:
        _service = create_governance_service()
    return _service


async def shutdown_governance_service() -> None:
    global _service
    if _service is not None:
        await _service.shutdown()
    _service = None
