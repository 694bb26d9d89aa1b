"""Coarse request rate limiting for the store API.

Uses slowapi (fixed-window) keyed by authenticated user or client IP. This is a
per-process flood guard on cheap endpoints such as the cart heartbeat; the
per-action limits on order mutations live in the store service and are backed
by the database.
"""

from functools import lru_cache
from typing import Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings


def _get_client_ip(request: Request) -> str:
    """
    Get client IP from request, handling proxies.

    Checks X-Forwarded-For header first (for proxied requests),
    then falls back to direct connection IP.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain (original client)
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def _get_user_or_ip(request: Request) -> str:
    """Rate limit by user ID if authenticated, otherwise by IP."""
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.user_id}"
    return f"ip:{_get_client_ip(request)}"


@lru_cache
def get_limiter() -> Limiter:
    """
    Create and return a cached Limiter instance.

    Storage defaults to in-memory; point RATE_LIMIT_STORAGE_URI at Redis to
    share counters between instances.
    """
    settings = get_settings()

    return Limiter(
        key_func=_get_user_or_ip,
        default_limits=["100/minute"],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.ENVIRONMENT != "test",
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Return the store's error envelope when a coarse limit is hit.
    """
    retry_after = exc.detail.split("per")[0].strip() if exc.detail else "1 minute"

    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "errorCode": "RATE_LIMITED",
            "message": f"Rate limit exceeded. Try again in {retry_after}.",
        },
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )


def cart_limit(func: Callable) -> Callable:
    """Apply the cart sync limit (120/minute)."""
    return limiter.limit("120/minute")(func)


def heartbeat_limit(func: Callable) -> Callable:
    """Throttle liveness pings (12/minute)."""
    return limiter.limit("12/minute")(func)
