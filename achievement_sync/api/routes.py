"""API routes for achievement-sync"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from achievement_sync.api.auth import verify_api_key
from achievement_sync.api.middleware import limiter
from achievement_sync.api.models import (
    AchievementListResponse,
    DiagnosticsResponse,
    HealthCheckResponse,
    IncrementRequest,
    NotificationListResponse,
    NotificationShownResponse,
    ProgressCorrectionRequest,
)
from achievement_sync.gamification.catalog import get_achievement_definitions
from achievement_sync.models import (
    AchievementDefinition,
    AchievementProgress,
    CounterKey,
    ProgressCounters,
    SyncSnapshot,
    UserAchievementSummary,
)
from achievement_sync.services.sync_service import AchievementSyncService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_sync_service(request: Request) -> AchievementSyncService:
    """Facade from the container built at startup"""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized"
        )
    return container.sync_service


# ==========================================
# Sync operations
# ==========================================

@router.post("/api/v1/users/{user_id}/sync", response_model=SyncSnapshot)
@limiter.limit("60/minute")
async def sync_on_view(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Soft sync when the achievements view opens (served from cache while warm)"""
    return await service.sync_on_view(user_id)


@router.post("/api/v1/users/{user_id}/refresh", response_model=SyncSnapshot)
@limiter.limit("30/minute")
async def refresh(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Pull-to-refresh; never forced"""
    return await service.refresh(user_id)


@router.post("/api/v1/users/{user_id}/force-reinit", response_model=SyncSnapshot)
@limiter.limit("5/minute")
async def force_reinit(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Discard cached state and rebuild (Rate limit: 5/minute, full reconciliation is expensive)"""
    return await service.force_reinit(user_id)


@router.post("/api/v1/users/{user_id}/increments", response_model=SyncSnapshot)
@limiter.limit("120/minute")
async def increment(
    request: Request,
    user_id: str,
    body: IncrementRequest,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Add to a counter and re-evaluate achievements immediately"""
    return await service.increment_and_reevaluate(user_id, body.counter_key, body.delta)


# ==========================================
# Read accessors
# ==========================================

@router.get("/api/v1/users/{user_id}/progress", response_model=ProgressCounters)
@limiter.limit("60/minute")
async def get_progress(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Progress counters (created from authoritative sources on first access)"""
    progress = await service.get_progress(user_id)
    if progress is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No progress for user")
    return progress


@router.get("/api/v1/users/{user_id}/achievements", response_model=AchievementListResponse)
@limiter.limit("60/minute")
async def get_achievements(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """All achievement progress records, most recently updated first"""
    achievements = await service.get_achievements(user_id)
    return AchievementListResponse(user_id=user_id, achievements=achievements)


@router.get("/api/v1/users/{user_id}/summary", response_model=UserAchievementSummary)
@limiter.limit("60/minute")
async def get_summary(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Achievement summary (Redis read cache, then record store)"""
    summary = await service.get_summary(user_id)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No summary for user")
    return summary


@router.get("/api/v1/users/{user_id}/diagnostics", response_model=DiagnosticsResponse)
@limiter.limit("10/minute")
async def get_diagnostics(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Read-only consistency report"""
    report = await service.run_diagnostics(user_id)
    return DiagnosticsResponse(user_id=user_id, report=report)


# ==========================================
# Notifications
# ==========================================

@router.get("/api/v1/users/{user_id}/notifications", response_model=NotificationListResponse)
@limiter.limit("60/minute")
async def get_notifications(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Completed achievements whose notification has not been shown"""
    pending = await service.get_pending_notifications(user_id)
    return NotificationListResponse(user_id=user_id, pending=pending)


@router.post(
    "/api/v1/users/{user_id}/notifications/{achievement_id}/shown",
    response_model=NotificationShownResponse,
)
@limiter.limit("60/minute")
async def mark_notification_shown(
    request: Request,
    user_id: str,
    achievement_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Mark a completion notification as shown (idempotent)"""
    marked = await service.mark_notification_shown(user_id, achievement_id)
    if not marked:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress for achievement {achievement_id}"
        )
    return NotificationShownResponse(user_id=user_id, achievement_id=achievement_id, marked=True)


# ==========================================
# Manual corrections (support tooling)
# ==========================================

@router.put("/api/v1/users/{user_id}/counters/{counter_key}", response_model=ProgressCounters)
@limiter.limit("10/minute")
async def correct_counter(
    request: Request,
    user_id: str,
    counter_key: CounterKey,
    body: ProgressCorrectionRequest,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Set a counter to an explicit value"""
    return await service.correct_counter(user_id, counter_key, body.value)


@router.put(
    "/api/v1/users/{user_id}/achievements/{achievement_id}/progress",
    response_model=AchievementProgress,
)
@limiter.limit("10/minute")
async def correct_progress(
    request: Request,
    user_id: str,
    achievement_id: str,
    body: ProgressCorrectionRequest,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    """Set one achievement's progress explicitly"""
    return await service.correct_progress(user_id, achievement_id, body.value)


# ==========================================
# Catalog
# ==========================================

@router.get("/api/v1/achievements", response_model=list[AchievementDefinition])
@limiter.limit("60/minute")
async def list_definitions(request: Request, api_key: str = Depends(verify_api_key)):
    """The achievement catalog in catalog order"""
    return get_achievement_definitions()


@router.get("/api/v1/achievements/{achievement_id}", response_model=AchievementDefinition)
@limiter.limit("60/minute")
async def get_definition(
    request: Request,
    achievement_id: str,
    api_key: str = Depends(verify_api_key),
    service: AchievementSyncService = Depends(get_sync_service),
):
    definition = service.get_achievement_definition(achievement_id)
    if definition is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown achievement {achievement_id}"
        )
    return definition


# ==========================================
# Operations
# ==========================================

@router.get("/api/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (Rate limit: 60/minute for monitoring systems)"""
    db = getattr(request.app.state, "db", None)
    if db is None:
        db_status = "not_configured"
    else:
        db_status = "connected" if await db.ping() else "disconnected"

    cache = getattr(request.app.state, "cache", None)
    cache_status = "enabled" if cache is not None and cache.connected else "disabled"

    return HealthCheckResponse(
        status="degraded" if db_status == "disconnected" else "healthy",
        database=db_status,
        cache=cache_status,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/metrics")
async def metrics_endpoint():
    """Expose Prometheus metrics"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
