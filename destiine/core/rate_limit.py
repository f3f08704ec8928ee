"""
Rate limiting

SlowAPI limiter shared by all routers. Auth endpoints are keyed by client IP;
reserve and payment-intent endpoints by the traveller in the bearer token, so
several travellers behind one proxy do not starve each other. Storage comes
from RATE_LIMIT_STORAGE_URI (memory:// is per process).
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from destiine.core.config import settings
from destiine.core.security import decode_access_token

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


def client_ip(request: Request) -> str:
    """First address in X-Forwarded-For, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    return first or get_remote_address(request)


def booking_rate_key(request: Request) -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        claims = decode_access_token(token)
        if claims and claims.get("sub"):
            return f"user:{claims['sub']}"
    return f"ip:{client_ip(request)}"


limiter = Limiter(
    key_func=client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)


def retry_after_seconds(exc: RateLimitExceeded) -> int:
    item = getattr(getattr(exc, "limit", None), "limit", None)
    if item is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    return int(item.get_expiry())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same {success, message, code} shape as booking results."""
    retry_after = retry_after_seconds(exc)
    logger.warning(f"Rate limit exceeded: {client_ip(request)} on {request.url.path} ({exc.detail})")
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "message": f"Too many requests. Please try again in {retry_after} seconds.",
            "code": "RATE_LIMITED",
        },
        headers={"Retry-After": str(retry_after)},
    )
