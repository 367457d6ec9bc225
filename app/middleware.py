"""Rate limiting middleware for /api routes."""

import logging

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.services.rate_limit import InMemoryCounterStore, RateLimiter, RedisCounterStore

logger = logging.getLogger(__name__)


def build_rate_limiter() -> RateLimiter:
    """Redis-backed when REDIS_URL is set, otherwise process-local."""
    if settings.REDIS_URL:
        store = RedisCounterStore(settings.REDIS_URL)
        logger.info("Rate limiting with Redis counters")
    else:
        store = InMemoryCounterStore()
    return RateLimiter(
        store,
        window_seconds=settings.RATE_LIMIT_WINDOW,
        default_limit=settings.RATE_LIMIT_DEFAULT,
        route_limits=[
            ("/api/cards", settings.RATE_LIMIT_CARDS),
            ("/api/images", settings.RATE_LIMIT_IMAGES),
        ],
    )


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("cf-connecting-ip")
    if forwarded:
        return forwarded
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "local"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Returns 429 once a client exceeds the limit of an /api/* route."""

    def __init__(self, app, limiter: RateLimiter):
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith("/api/") and not self.limiter.allow(client_ip(request), path):
            return PlainTextResponse(
                "Too Many Requests",
                status_code=429,
                headers={"Retry-After": str(self.limiter.window_seconds)},
            )
        return await call_next(request)
