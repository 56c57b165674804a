"""
Rate Limiting

SlowAPI limiter for the HTTP surface. Only the trigger endpoint carries an
explicit limit: each accepted trigger walks the whole Square catalog and
queues BGG lookups, so repeated clicks are refused rather than stacked.

Counters are in-memory (one API instance per deployment). X-Forwarded-For
is honoured only when TRUST_PROXY_HEADERS is set, since the header is
client-controlled otherwise.
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from catalog_sync.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


def get_client_ip(request: Request) -> str:
    """Caller address used as the rate-limit key."""
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("X-Forwarded-For", "")
        client = forwarded.split(",")[0].strip()
        if client:
            return client
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def trigger_limit():
    """Decorator for endpoints that start a sync run."""
    return limiter.limit(settings.RATE_LIMIT_TRIGGER)


def _retry_after_seconds(exc: RateLimitExceeded) -> int:
    item = getattr(getattr(exc, "limit", None), "limit", None)
    if item is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return int(item.get_expiry())
    except (AttributeError, TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same {ok, error} shape as the trigger endpoint's failures."""
    retry_after = _retry_after_seconds(exc)
    logger.warning(
        f"[HTTP] Rate limit hit by {get_client_ip(request)} on {request.url.path} ({exc.detail})"
    )
    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "error": "rate_limit_exceeded",
            "message": f"Sync was triggered too often ({exc.detail}). Try again in {retry_after}s.",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
