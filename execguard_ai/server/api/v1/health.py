"""
Health Check Endpoints.

``/health`` reports whether the governance service is up, which storage
backend executions are persisted in and how many executions currently have a
live actor. ``/version`` reports the package and API schema versions.
"""

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel, Field

from execguard_ai import __version__
from execguard_ai.server.core.config import settings
from execguard_ai.server.services.deps import GovernanceDep

router = APIRouter()


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    storage: Literal["memory", "sql"] = Field(..., description="Where executions and checkpoints are persisted.")
    active_executions: int = Field(..., ge=0, description="Executions currently driven by an actor.")


@router.get(
    "/health",
    response_model=HealthStatus,
    summary="Health Check",
    description="Report the storage backend and the number of executions in flight.",
    response_description="Status object.",
)
async def health_check(service: GovernanceDep):
    return HealthStatus(
        storage="sql" if settings.database_url else "memory",
        active_executions=service.active_executions,
    )


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve version information for the API server.",
    response_description="Version object.",
)
async def version():
    return {"version": __version__, "schema_version": "v1"}
