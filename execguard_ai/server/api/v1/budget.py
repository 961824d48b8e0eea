"""
Budget API Endpoints.

Read budget status and usage per budget scope, and record usage that was spent
outside governed steps.
"""

from fastapi import APIRouter

from execguard_ai.governance.schemas.domain import BudgetStatus, UsageSummary
from execguard_ai.server.schemas import UsageRecordCreate
from execguard_ai.server.services.deps import GovernanceDep

router = APIRouter()


@router.get(
    "/{scope}",
    response_model=BudgetStatus,
    summary="Get Budget Status",
    description="Retrieve daily and monthly usage, remaining budget and warning level for a scope.",
)
async def get_budget_status(scope: str, service: GovernanceDep):
    return await service.get_budget_status(scope)


@router.get(
    "/{scope}/summary",
    response_model=UsageSummary,
    summary="Get Usage Summary",
    description="Retrieve today's, this month's and all-time usage for a scope.",
)
async def get_usage_summary(scope: str, service: GovernanceDep):
    return await service.get_usage_summary(scope)


@router.post(
    "/{scope}/usage",
    response_model=BudgetStatus,
    status_code=201,
    summary="Record Usage",
    description=(
        "Record tokens and cost spent in a scope, and return the updated budget status. "
        "Without an explicit cost the usage is priced from its input and output tokens."
    ),
)
async def record_usage(scope: str, body: UsageRecordCreate, service: GovernanceDep):
    return await service.record_usage(
        scope,
        tokens=body.tokens,
        cost_cents=body.cost_cents,
        input_tokens=body.input_tokens,
        output_tokens=body.output_tokens,
    )
