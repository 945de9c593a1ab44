"""Request rate limiting dependency and client identification."""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request

from services.usage_limits import consume_window_quota


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[], None]:
    """Return a FastAPI dependency that enforces per-client request quotas."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"studio:rate:{prefix}:{client_identifier(request)}"
        if not await consume_window_quota(key, limit, window_seconds):
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
            )

    return _dependency
