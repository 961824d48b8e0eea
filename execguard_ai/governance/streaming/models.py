from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import Execution, Step


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StreamEventType(str, Enum):
    state = "state"
    step = "step"


class StreamEvent(BaseSchema):
    """One event of an execution's progress stream.

    ``state`` events carry a full execution snapshot and are idempotent full
    replacements; ``step`` events carry a single new or updated step.
    ``version`` increases by one with every published event.
    """

    type: StreamEventType
    execution_id: str
    version: int
    execution: Optional[Execution] = None
    step: Optional[Step] = None
    emitted_at: datetime = Field(default_factory=_utc_now)


class ControlCommandType(str, Enum):
    pause = "pause"
    resume = "resume"
    halt = "halt"
    confirm = "confirm"
    reject = "reject"


class ControlCommand(BaseSchema):
    """A control command submitted by a stream reader."""

    type: ControlCommandType
    action_id: Optional[str] = None
    typed_phrase: Optional[str] = None
    decided_by: Optional[str] = None


SubscriptionMode = Literal["push", "poll"]
