"""
Checkpoints API Endpoints.

Preview, perform and delete rollbacks by checkpoint id. Creating and listing
checkpoints lives under the executions router.
"""

from fastapi import APIRouter, Response

from execguard_ai.governance.schemas.domain import RollbackPreview
from execguard_ai.server.services.deps import GovernanceDep

router = APIRouter()


@router.get(
    "/{checkpoint_id}/preview",
    response_model=RollbackPreview,
    summary="Preview Rollback",
    description="Describe what rolling back to this checkpoint would revert, without changing anything.",
    responses={404: {"description": "Checkpoint not found"}},
)
async def preview_rollback(checkpoint_id: str, service: GovernanceDep):
    return await service.preview_rollback(checkpoint_id)


@router.post(
    "/{checkpoint_id}/rollback",
    response_model=RollbackPreview,
    summary="Roll Back",
    description="Revert every change made after this checkpoint and leave the execution paused.",
    responses={
        404: {"description": "Checkpoint not found"},
        409: {"description": "Execution not paused or halted, active checkpoint, or a change cannot be reverted"},
    },
)
async def rollback(checkpoint_id: str, service: GovernanceDep):
    """
    Roll back to a checkpoint.

    The execution must be `paused` or `halted`. Rollback is all-or-nothing when a
    step reports that its changes cannot be reverted; if an inverse operation
    fails midway the execution is halted with `rollback_failed`.
    """
    return await service.rollback(checkpoint_id)


@router.delete(
    "/{checkpoint_id}",
    status_code=204,
    summary="Delete Checkpoint",
    description="Delete a checkpoint. The active checkpoint cannot be deleted.",
    responses={404: {"description": "Checkpoint not found"}, 409: {"description": "Active checkpoint"}},
)
async def delete_checkpoint(checkpoint_id: str, service: GovernanceDep):
    await service.delete_checkpoint(checkpoint_id)
    return Response(status_code=204)
