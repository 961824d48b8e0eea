"""Pydantic base schema utilities for governance models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all governance schemas.

    Configures common Pydantic behaviors:
    - ``populate_by_name=True``: Allow initialization by alias or field name.
    - ``extra="forbid"``: Reject unknown fields so malformed records fail fast.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )
