from __future__ import annotations

import hashlib
import time

import structlog
from fastapi import Request
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ticketing.core.config import settings
from ticketing.redis_client import get_redis

logger = structlog.get_logger(__name__)

_WINDOWS = {
    "sec": 1,
    "second": 1,
    "seconds": 1,
    "min": 60,
    "minute": 60,
    "minutes": 60,
    "hour": 3600,
    "hours": 3600,
    "day": 86400,
    "days": 86400,
}

SCAN_PATH = "/v1/checkins/scan"


def parse_rate(rate: str) -> tuple[int, int]:
    """``"60/minute"`` -> ``(60, 60)``; returns (limit, window_seconds)."""
    limit_str, sep, window_str = rate.strip().lower().partition("/")
    if not sep:
        raise ValueError(f"Invalid rate format: {rate}")
    window = _WINDOWS.get(window_str.strip())
    if window is None:
        raise ValueError(f"Invalid rate window: {window_str}")
    return int(limit_str), window


def rate_for(path: str) -> str:
    # Door scanners work in bursts and get their own budget.
    return settings.rate_limit_scan if path == SCAN_PATH else settings.rate_limit_default


def client_identity(request: Request) -> str:
    # Several scanners can share one desk IP; key on the bearer token when present.
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        digest = hashlib.sha256(auth.removeprefix("Bearer ").strip().encode("utf-8")).hexdigest()
        return f"tok:{digest[:16]}"
    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def _hit(key: str, window_seconds: int) -> int:
    r = get_redis()
    count = int(r.incr(key))
    if count == 1:
        r.expire(key, window_seconds)
    return count


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window limiter keyed by caller, method and path."""

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if (
            not settings.rate_limit_enabled
            or request.method == "OPTIONS"
            or path in settings.rate_limit_exempt_paths
        ):
            return await call_next(request)

        try:
            limit, window_seconds = parse_rate(rate_for(path))
        except ValueError:
            logger.warning("rate_limit_misconfigured", path=path)
            return await call_next(request)

        now = int(time.time())
        bucket = now // window_seconds
        reset = (bucket + 1) * window_seconds
        key = f"rl:{client_identity(request)}:{request.method}:{path}:{window_seconds}:{bucket}"

        try:
            count = _hit(key, window_seconds)
        except RedisError:
            # Limiter state is unavailable; serve the request unthrottled.
            logger.warning("rate_limit_unavailable", path=path)
            return await call_next(request)

        if count > limit:
            return JSONResponse(
                status_code=429,
                content={"detail": {"code": "rate_limited", "message": "rate limit exceeded"}},
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                    "Retry-After": str(max(0, reset - now)),
                },
            )

        response = await call_next(request)
        response.headers.setdefault("X-RateLimit-Limit", str(limit))
        response.headers.setdefault("X-RateLimit-Remaining", str(max(0, limit - count)))
        response.headers.setdefault("X-RateLimit-Reset", str(reset))
        return response
