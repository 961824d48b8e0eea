"""
Governance Error Handler.

Maps the governance core's exception hierarchy to HTTP responses:

- lookups that find nothing -> 404
- phrase mismatch on a critical confirmation -> 422
- illegal requests and failed rollbacks -> 409

The body always carries the error ``code``, the message and its details.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from execguard_ai.core.logging_config import get_logger
from execguard_ai.governance.errors import (
    ConfirmationPhraseMismatch,
    GovernanceError,
    InvalidOperation,
    NotFoundError,
    RollbackFailure,
)

logger = get_logger(__name__)


def status_code_for(exc: GovernanceError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConfirmationPhraseMismatch):
        return 422
    if isinstance(exc, (InvalidOperation, RollbackFailure)):
        return 409
    return 500


async def governance_exception_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    """Translate a ``GovernanceError`` raised by an endpoint into a JSON error response."""
    status_code = status_code_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details},
    )
