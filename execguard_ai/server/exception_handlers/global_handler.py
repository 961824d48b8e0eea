"""
Fallback Error Handler.

Anything an endpoint raises that is not a ``GovernanceError`` is a bug or an
outage of a collaborator (database, agent runtime). It is logged with the
request context under a fresh error id and answered with a 500 in the same
body shape the governance errors use, so clients only ever parse one error
format: ``{"detail", "code", "details"}``.
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from execguard_ai.core.logging_config import get_logger
from execguard_ai.governance.errors import GovernanceError
from execguard_ai.server.schemas import ErrorResponse

from .governance_handler import governance_exception_handler

logger = get_logger(__name__)

INTERNAL_ERROR_CODE = "internal_error"


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log an unexpected exception and answer with a 500 ``ErrorResponse``.

    The ``error_id`` in the body is also in the log record, so a client report
    can be matched to its traceback.
    """
    error_id = uuid.uuid4().hex
    error_type = type(exc).__name__

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {exc}",
        exc_info=exc,
        extra={
            "error_id": error_id,
            "error_type": error_type,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
        },
    )

    body = ErrorResponse(
        detail="Internal server error",
        code=INTERNAL_ERROR_CODE,
        details={"error_id": error_id, "error_type": error_type},
    )
    return JSONResponse(status_code=500, content=body.model_dump())


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Governance errors get their mapped status codes; anything else falls
    through to the global handler.
    """
    app.add_exception_handler(GovernanceError, governance_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
