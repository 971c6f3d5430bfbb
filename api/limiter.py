"""
api/limiter.py -- HTTP admission gate backed by the process-local rate limiter.

The limiter itself (core/ratelimiter.py) is built in the lifespan and stored on
app.state.limiter, so every worker thread shares one set of counters. This
module only adapts it to HTTP: key = client address, denial = 429 with a
Retry-After header in whole seconds (rounded up).

Health checks are exempt -- load balancers and monitors must not be throttled.
"""

from __future__ import annotations

import logging
import math

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse

logger = logging.getLogger("socialgate.ratelimit")

EXEMPT_PATHS = frozenset({"/api/v1/health"})


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limited_response(retry_after: float) -> JSONResponse:
    seconds = max(1, math.ceil(retry_after))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=f"Retry after {seconds} seconds.",
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(seconds)
    return response


async def rate_limit(request: Request, call_next):
    """Middleware: admit or reject the request before any route runs."""
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    limiter = getattr(request.app.state, "limiter", None)
    if limiter is not None:
        key = client_key(request)
        permitted, retry_after = limiter.allow(key)
        if not permitted:
            logger.warning("Rate limit exceeded for %s on %s %s", key, request.method, request.url.path)
            return rate_limited_response(retry_after)
    return await call_next(request)
