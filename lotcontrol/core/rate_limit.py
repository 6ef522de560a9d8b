"""
Request rate limiting in front of the API, backed by slowapi.

Every route shares one default limit, applied by `SlowAPIMiddleware`.
Counters live in the storage named by `settings.rate_limit_storage_uri`:
`memory://` for a single process, `redis://host:6379` when several
instances must share the budget.
"""
from typing import List

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from lotcontrol.core.config import settings


def client_host(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def default_limits(max_requests: int, window_seconds: int) -> List[str]:
    """'120/60 seconds' style limit strings. Empty when limiting is off."""
    if max_requests <= 0:
        return []
    return [f"{max_requests}/{window_seconds} seconds"]


def build_limiter(
    max_requests: int = settings.rate_limit_requests,
    window_seconds: int = settings.rate_limit_window_seconds,
    storage_uri: str = settings.rate_limit_storage_uri,
) -> Limiter:
    return Limiter(
        key_func=client_host,
        default_limits=default_limits(max_requests, window_seconds),
        storage_uri=storage_uri,
        headers_enabled=True,
        enabled=max_requests > 0,
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # SlowAPIMiddleware calls the registered handler synchronously.
    logger.warning(
        f"Rate limit exceeded for {client_host(request)} on {request.url.path}")
    response = JSONResponse(
        status_code=429,
        content={"error": {
            "kind": "rate_limited",
            "message": "Too many requests, please try again later.",
            "field": None,
        }},
    )
    return request.app.state.limiter._inject_headers(
        response, getattr(request.state, "view_rate_limit", None))
