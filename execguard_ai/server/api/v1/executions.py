"""
Executions API Endpoints.

This module provides the primary interface for starting, steering and observing
governed executions.

Includes:
- Execution lifecycle (start, list, get, pause, resume, halt)
- Checkpoints of an execution (create, list, roll back to the previous one)
- Confirmation decision history
- Real-time progress via Server-Sent Events (SSE), push or poll
"""

from typing import Annotated, List, Literal, Optional

from fastapi import APIRouter, Query, Request
from sse_starlette.sse import EventSourceResponse

from execguard_ai.core.logging_config import get_logger
from execguard_ai.governance.schemas.domain import (
    Checkpoint,
    DecisionRecord,
    Execution,
    ExecutionState,
    RollbackPreview,
)
from execguard_ai.server.schemas import CheckpointCreate, ControlResponse, ExecutionCreate, ExecutionCreated
from execguard_ai.server.services.deps import GovernanceDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=ExecutionCreated,
    status_code=201,
    summary="Start Execution",
    description="Start a governed execution for a goal with the given governance settings.",
    response_description="The id of the new execution.",
)
async def start_execution(body: ExecutionCreate, service: GovernanceDep):
    """
    Start a governed execution.

    - **goal**: The goal the agent must satisfy.
    - **config**: Step ceiling, uncertainty threshold, scope, approval and budget settings.

    The execution starts in `planning` and moves to `executing` on its own.
    """
    logger.info(f"Starting execution for agent {body.config.agent_type!r}: {body.goal.description}")
    execution_id = await service.start_execution(body.goal.to_domain(), body.config)
    return ExecutionCreated(execution_id=execution_id, state=ExecutionState.planning)


@router.get(
    "",
    response_model=List[Execution],
    summary="List Executions",
    description="Retrieve executions, optionally filtered by state.",
    response_description="A list of executions.",
)
async def list_executions(
    service: GovernanceDep, state: Optional[ExecutionState] = None, limit: int = 100, offset: int = 0
):
    return await service.list_executions(state=state, limit=limit, offset=offset)


@router.get(
    "/{execution_id}",
    response_model=Execution,
    summary="Get Execution",
    description="Retrieve the current snapshot of an execution, including its steps.",
    response_description="The execution object.",
    responses={404: {"description": "Execution not found"}},
)
async def get_execution(execution_id: str, service: GovernanceDep):
    return await service.get_execution_state(execution_id)


@router.post(
    "/{execution_id}/pause",
    response_model=ControlResponse,
    status_code=202,
    summary="Pause Execution",
    description="Pause an executing execution at the next step boundary.",
    responses={404: {"description": "Execution not found"}, 409: {"description": "Execution is not executing"}},
)
async def pause_execution(execution_id: str, service: GovernanceDep):
    await service.pause(execution_id)
    return ControlResponse(execution_id=execution_id, command="pause")


@router.post(
    "/{execution_id}/resume",
    response_model=ControlResponse,
    status_code=202,
    summary="Resume Execution",
    description="Resume a paused or halted execution.",
    responses={404: {"description": "Execution not found"}, 409: {"description": "Execution cannot be resumed"}},
)
async def resume_execution(execution_id: str, service: GovernanceDep):
    await service.resume(execution_id)
    return ControlResponse(execution_id=execution_id, command="resume")


@router.post(
    "/{execution_id}/halt",
    response_model=ControlResponse,
    status_code=202,
    summary="Halt Execution",
    description="Halt an execution at the next step boundary. A pending confirmation is discarded.",
    responses={404: {"description": "Execution not found"}, 409: {"description": "Execution already finished"}},
)
async def halt_execution(execution_id: str, service: GovernanceDep):
    await service.halt(execution_id)
    return ControlResponse(execution_id=execution_id, command="halt")


@router.get(
    "/{execution_id}/decisions",
    response_model=List[DecisionRecord],
    summary="List Confirmation Decisions",
    description="Retrieve the history of confirmation decisions for an execution.",
)
async def list_decisions(execution_id: str, service: GovernanceDep):
    return await service.list_decisions(execution_id)


@router.post(
    "/{execution_id}/checkpoints",
    response_model=Checkpoint,
    status_code=201,
    summary="Create Checkpoint",
    description=(
        "Create a manual checkpoint at the latest completed step. If that step already carries an "
        "automatic checkpoint, the automatic checkpoint is kept (same id) and becomes a manual one."
    ),
    responses={409: {"description": "No completed step, or the step already has a manual checkpoint"}},
)
async def create_checkpoint(execution_id: str, service: GovernanceDep, body: Optional[CheckpointCreate] = None):
    description = body.description if body is not None else None
    return await service.create_checkpoint(execution_id, description)


@router.get(
    "/{execution_id}/checkpoints",
    response_model=List[Checkpoint],
    summary="List Checkpoints",
    description="Retrieve the checkpoints of an execution, ordered by step number.",
)
async def list_checkpoints(execution_id: str, service: GovernanceDep):
    return await service.list_checkpoints(execution_id)


@router.post(
    "/{execution_id}/rollback-previous",
    response_model=RollbackPreview,
    summary="Roll Back To Previous Checkpoint",
    description="Roll a paused or halted execution back to its newest checkpoint before the current step.",
    responses={409: {"description": "Rollback not possible"}},
)
async def rollback_to_previous(execution_id: str, service: GovernanceDep):
    return await service.rollback_to_previous(execution_id)


@router.get(
    "/{execution_id}/events",
    summary="Stream Execution Progress",
    description="Subscribe to a Server-Sent Events (SSE) stream of state and step events for an execution.",
    response_description="A stream of progress events.",
    responses={
        200: {
            "description": "SSE stream established",
            "content": {"text/event-stream": {"example": 'event: state\ndata: {"type": "state", ...}\n\n'}},
        },
        404: {"description": "Execution not found"},
    },
)
async def stream_execution_events(
    execution_id: str,
    request: Request,
    service: GovernanceDep,
    mode: Literal["push", "poll"] = "push",
    interval: Annotated[
        Optional[float], Query(gt=0, description="Polling interval in seconds (poll mode only).")
    ] = None,
):
    """
    Stream progress events via Server-Sent Events (SSE).

    The first event is always the latest `state` snapshot. In `push` mode every
    subsequent `state` and `step` event is delivered; in `poll` mode only a
    fresh `state` snapshot is sent whenever the execution changed. The stream
    ends when the execution completes or fails.
    """
    subscription = await service.subscribe(execution_id, mode, interval=interval)
    logger.info(f"Starting {mode} event stream for execution: {execution_id}")

    async def event_generator():
        try:
            async for event in subscription:
                if await request.is_disconnected():
                    logger.info(f"Client disconnected from stream for execution: {execution_id}")
                    break
                yield {"event": event.type.value, "id": str(event.version), "data": event.model_dump_json()}
        finally:
            subscription.close()

    return EventSourceResponse(event_generator())
