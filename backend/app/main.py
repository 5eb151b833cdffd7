"""
FastAPI Application Entry Point.

This is the main application file for the Group Ledger Backend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.observability import ObservabilityMiddleware, setup_logging
from backend.app.db.session import AsyncSessionLocal, create_tables, engine
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.core.redis_client import close_redis, ping_redis
from backend.app.services.ledger_runtime import build_runtime

# Import models to ensure they are registered with Base
from backend.app.models.group import Group, GroupMember, UserGroup
from backend.app.models.expense import Expense, ExpenseParticipant, ExpenseSettlement, ExpenseEdit
from backend.app.models.activity_record import ActivityRecord

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the ledger runtime (locks, sequencer, broadcaster, services).
    3. Starts the Redis event relay when broadcasting over Redis.
    4. On shutdown waits for accepted mutations and stops the relay.
    """
    setup_logging()
    await create_tables(engine)

    ledger = build_runtime(AsyncSessionLocal)
    app.state.ledger = ledger

    relay = None
    if ledger.broadcaster.uses_redis:
        relay = asyncio.create_task(ledger.broadcaster.relay_from_redis())
    logger.info(
        "%s started (locks=%s, broadcast=%s)",
        settings.app_name, settings.group_lock_backend, settings.broadcast_backend,
    )
    yield

    await ledger.sequencer.drain()
    if relay is not None:
        relay.cancel()
        with suppress(asyncio.CancelledError):
            await relay
    if "redis" in (settings.group_lock_backend, settings.broadcast_backend):
        await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Group expense ledger with per-group mutation sequencing and live events",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    health = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }
    if "redis" in (settings.group_lock_backend, settings.broadcast_backend):
        redis_ok = await ping_redis()
        health["redis"] = "up" if redis_ok else "down"
        if not redis_ok:
            health["status"] = "degraded"
    return health


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to Group Ledger Backend API",
        "docs": "/docs",
        "health": "/health",
    }
