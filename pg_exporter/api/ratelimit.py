"""Rate limiting dependency for /metrics.

A dependency rather than middleware so only the scrape route pays for
it; health probes must always answer.  Clients are keyed by IP: the
exporter has no notion of users, and its callers are a handful of
Prometheus servers.

The RateLimit-* headers (IETF draft names) are stashed on
``request.state`` so the route can attach them to whatever response it
returns, success or failure.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from pg_exporter.services.rate_limiter import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


def _headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "RateLimit-Limit": str(result.limit),
        "RateLimit-Remaining": str(result.remaining),
        "RateLimit-Reset": str(int(result.reset_after) + 1),
    }


async def require_rate_limit(request: Request) -> None:
    limiter: RateLimiter = request.app.state.rate_limiter
    key = f"ip:{request.client.host if request.client else 'unknown'}"
    result = limiter.check(key)

    request.state.rate_limit_headers = _headers(result)

    if not result.allowed:
        logger.warning("Rate limit exceeded key=%s", key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={
                "Retry-After": str(int(result.reset_after) + 1),
                **_headers(result),
            },
        )
