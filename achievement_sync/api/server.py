"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from achievement_sync.api.middleware import setup_cors, setup_rate_limiting, setup_request_metrics
from achievement_sync.api.routes import router
from achievement_sync.cache.redis_client import RedisCache
from achievement_sync.config import DATABASE_URL, ENABLE_CACHE, REDIS_URL
from achievement_sync.db.connection import Database
from achievement_sync.exceptions import (
    AchievementSyncError,
    DatabaseError,
    ProgressCreationError,
    RecordNotFoundError,
    SyncError,
    ValidationError,
)
from achievement_sync.services.container import ServiceContainer, build_postgres_container

logger = logging.getLogger(__name__)


def error_status(exc: AchievementSyncError) -> int:
    """HTTP status for a domain error"""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, (SyncError, ProgressCreationError, DatabaseError)):
        return 503
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager: PostgreSQL pool, Redis cache and service container"""
    if getattr(app.state, "container", None) is not None:
        # Container injected by the caller (tests, embedded use)
        yield
        return

    logger.info("Starting API server...")
    db = Database(DATABASE_URL)
    await db.init_pool()
    logger.info("Database pool initialized")

    cache = RedisCache(REDIS_URL, enabled=ENABLE_CACHE)
    await cache.connect()

    app.state.db = db
    app.state.cache = cache
    app.state.container = build_postgres_container(db, cache)

    yield

    logger.info("Shutting down API server...")
    await cache.close()
    await db.close_pool()
    app.state.container = None
    logger.info("Database pool closed")


def create_api_application(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure FastAPI application

    Args:
        container: Pre-built service container; when omitted the lifespan
            builds a PostgreSQL-backed one at startup
    """
    app = FastAPI(
        title="Achievement Sync API",
        description="Progress reconciliation and achievement evaluation",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.container = container
    if container is not None:
        app.state.cache = container.cache

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_request_metrics(app)

    # Include routes
    app.include_router(router)

    @app.exception_handler(AchievementSyncError)
    async def domain_exception_handler(request: Request, exc: AchievementSyncError):
        return JSONResponse(status_code=error_status(exc), content=exc.to_dict())

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app
