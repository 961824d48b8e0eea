"""
ExecGuard-AI Server Package.

This package contains the web server exposing the governance service.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration and database connections.
    services: Wiring of the GovernanceService and its FastAPI dependency.
    exception_handlers: Mapping of governance errors to HTTP responses.
"""
