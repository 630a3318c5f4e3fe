"""
Request Rate Limits

Per-client-address limits on the HTTP API. Every route gets the default
limit through SlowAPIMiddleware; uploads carry a tighter one in its place.
WebSocket traffic is not limited here.
"""

import structlog
from fastapi import Request, status
from fastapi.responses import ORJSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from parley.config import settings

logger = structlog.get_logger()

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> ORJSONResponse:
    """Answer 429 and log the client that tripped the limit."""
    logger.warning(
        "Rate limit exceeded",
        client=get_remote_address(request),
        method=request.method,
        path=request.url.path,
        limit=exc.detail,
    )
    return ORJSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": "Too many requests", "limit": exc.detail},
    )
