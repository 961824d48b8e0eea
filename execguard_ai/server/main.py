"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
and includes all API routers. It serves as the root of the web server.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from execguard_ai import __version__
from execguard_ai.core.logging_config import get_logger, setup_logging

from .api.v1 import budget, checkpoints, confirmations, executions, health
from .core.config import API_V1_STR, PROJECT_NAME
from .core.database import dispose_db, init_db
from .exception_handlers import setup_exception_handlers
from .services.governance import shutdown_governance_service

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    On startup the database tables are created when a database is configured.
    On shutdown every execution actor is stopped; executions stay persisted in
    their current state.
    """
    # Startup
    try:
        logger.info("Starting up ExecGuard-AI Server...")
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    yield

    # Shutdown
    logger.info("Shutting down ExecGuard-AI Server...")
    await shutdown_governance_service()
    await dispose_db()


app = FastAPI(
    title=PROJECT_NAME,
    description="""
    ExecGuard-AI Server API

    This API exposes the execution-governance engine for autonomous agents.
    It supports starting governed executions, answering confirmation requests,
    pausing, resuming and halting executions, rolling back to checkpoints,
    inspecting budgets, and streaming real-time progress events.
    """,
    version=__version__,
    openapi_url=f"{API_V1_STR}/openapi.json",
    docs_url=f"{API_V1_STR}/docs",
    redoc_url=f"{API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(executions.router, prefix=f"{API_V1_STR}/executions", tags=["executions"])
app.include_router(checkpoints.router, prefix=f"{API_V1_STR}/checkpoints", tags=["checkpoints"])
app.include_router(confirmations.router, prefix=f"{API_V1_STR}/confirmations", tags=["confirmations"])
app.include_router(budget.router, prefix=f"{API_V1_STR}/budget", tags=["budget"])
