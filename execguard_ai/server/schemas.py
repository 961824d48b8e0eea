"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the client and the server.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from execguard_ai.governance.config import ExecutionConfig
from execguard_ai.governance.schemas.domain import ExecutionState, Goal


class GoalCreate(BaseModel):
    """
    Schema for the goal of a new execution.

    The goal is the contract the agent is held to for the whole execution.
    """
    description: str = Field(
        ...,
        min_length=1,
        description="What the agent must accomplish.",
        examples=["Upgrade the project's HTTP client library"],
    )
    success_criteria: List[str] = Field(
        default_factory=list,
        description="Conditions that define success.",
        examples=[["All tests pass", "No deprecated calls remain"]],
    )
    assumptions: List[str] = Field(default_factory=list, description="Assumptions the plan relies on.")
    stopping_conditions: List[str] = Field(
        default_factory=list,
        description="Conditions under which the agent should stop.",
    )

    def to_domain(self) -> Goal:
        return Goal(
            description=self.description,
            success_criteria=list(self.success_criteria),
            assumptions=list(self.assumptions),
            stopping_conditions=list(self.stopping_conditions),
        )


class ExecutionCreate(BaseModel):
    """
    Schema for starting a governed execution.

    Combines the goal with the per-execution governance settings.
    """
    goal: GoalCreate = Field(..., description="The goal of the execution.")
    config: ExecutionConfig = Field(
        default_factory=ExecutionConfig,
        description="Governance settings: step ceiling, uncertainty threshold, scope, approvals, budget scope.",
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "goal": {
                "description": "Rename the config module and update imports",
                "success_criteria": ["Project builds"],
                "stopping_conditions": ["All imports updated"],
            },
            "config": {
                "agent_type": "code-agent",
                "max_steps": 20,
                "scope": ["src/**"],
                "budget_scope": "team-a",
            },
        }
    })


class ExecutionCreated(BaseModel):
    """Response for a newly started execution."""
    execution_id: str = Field(..., description="Identifier of the new execution.")
    state: ExecutionState = Field(..., description="State at creation time.")


class ControlResponse(BaseModel):
    """
    Response for a control command (pause, resume, halt, confirm).

    Commands are applied at the next step boundary; follow the progress stream
    for the resulting state.
    """
    execution_id: str
    command: str
    accepted: bool = True


class ConfirmationSubmit(BaseModel):
    """
    Schema for answering a pending confirmation action.

    Critical actions require ``typed_phrase`` to match the configured phrase.
    """
    approved: bool = Field(..., description="Approve (true) or reject (false) the action.")
    typed_phrase: Optional[str] = Field(
        default=None,
        description="Confirmation phrase; required to approve critical actions.",
        examples=["CONFIRM"],
    )
    decided_by: Optional[str] = Field(default=None, description="Who made the decision.")


class CheckpointCreate(BaseModel):
    """Schema for a manual checkpoint at the latest completed step."""
    description: Optional[str] = Field(default=None, description="Human-readable label for the checkpoint.")


class UsageRecordCreate(BaseModel):
    """Schema for recording usage spent outside governed steps."""
    tokens: int = Field(default=0, ge=0, description="Tokens consumed. Defaults to input_tokens + output_tokens.")
    cost_cents: Optional[int] = Field(
        default=None,
        ge=0,
        description="Cost in cents. When omitted it is priced from input_tokens and output_tokens.",
    )
    input_tokens: int = Field(default=0, ge=0, description="Prompt tokens, used for pricing.")
    output_tokens: int = Field(default=0, ge=0, description="Completion tokens, used for pricing.")


class ErrorResponse(BaseModel):
    """Error body returned for governance errors."""
    detail: str
    code: str
    details: Dict[str, Any] = Field(default_factory=dict)
