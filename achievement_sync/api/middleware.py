"""Rate limiting, CORS and per-route request counting"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from achievement_sync.config import CORS_ORIGINS
from achievement_sync.observability.metrics import http_requests_total

logger = logging.getLogger(__name__)

# Per-client limits are declared on each route with @limiter.limit
limiter = Limiter(key_func=get_remote_address)


def setup_cors(app: FastAPI, origins: Optional[list[str]] = None) -> None:
    allowed = origins if origins is not None else CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Authorization", "Content-Type"],
    )
    logger.info(f"CORS allowed origins: {allowed}")


def setup_rate_limiting(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def setup_request_metrics(app: FastAPI) -> None:
    """Count requests by route template (not raw path, so user ids do not explode labels)"""

    @app.middleware("http")
    async def count_requests(request: Request, call_next):
        response = await call_next(request)
        route = request.scope.get("route")
        http_requests_total.labels(
            method=request.method,
            endpoint=getattr(route, "path", "unmatched"),
            status=str(response.status_code),
        ).inc()
        return response
