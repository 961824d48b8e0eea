"""
Confirmations API Endpoints.

Human-in-the-loop decisions for steps the Confirmation Gate held back.
"""

from fastapi import APIRouter

from execguard_ai.server.schemas import ConfirmationSubmit, ControlResponse
from execguard_ai.server.services.deps import GovernanceDep

router = APIRouter()


@router.post(
    "/{action_id}",
    response_model=ControlResponse,
    status_code=202,
    summary="Submit Confirmation Decision",
    description="Approve or reject a pending confirmation action.",
    response_description="The accepted command.",
    responses={
        404: {"description": "No pending action with this id"},
        409: {"description": "Execution is not awaiting approval"},
        422: {"description": "Confirmation phrase mismatch for a critical action"},
    },
)
async def submit_confirmation(action_id: str, submission: ConfirmationSubmit, service: GovernanceDep):
    """
    Submit a confirmation decision.

    Approving a critical action requires the configured confirmation phrase in
    `typed_phrase`. On approval the held step is executed; on rejection the
    execution halts with `user_rejected`.
    """
    execution_id = await service.confirm(
        action_id,
        submission.approved,
        submission.typed_phrase,
        decided_by=submission.decided_by,
    )
    return ControlResponse(execution_id=execution_id, command="confirm" if submission.approved else "reject")
