"""Redis-based sliding window rate limiting middleware."""

import hashlib
import time
import uuid
from typing import Callable

import redis.asyncio as aioredis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.shared.utils.logging import get_logger

logger = get_logger(__name__)

SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

DEFAULT_LIMIT = 60
DEFAULT_WINDOW = 60  # seconds


def caller_identifier(request: Request) -> str:
    """Stable identifier of the caller: credential digest, else client IP."""
    credential = request.headers.get("X-Agent-Key") or request.headers.get("Authorization", "")
    if credential:
        return hashlib.sha256(credential.encode()).hexdigest()[:16]
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis sliding window rate limiter (ZADD + ZREMRANGEBYSCORE).

    Fails open: when Redis is unreachable the request goes through.
    """

    def __init__(
        self,
        app,
        redis_getter: Callable[[], aioredis.Redis],
        limit: int = DEFAULT_LIMIT,
        window: int = DEFAULT_WINDOW,
    ):
        super().__init__(app)
        self._redis_getter = redis_getter
        self._limit = limit
        self._window = window

    async def _count(self, key: str) -> int:
        redis = self._redis_getter()
        now = time.time()
        pipe = redis.pipeline()
        pipe.zremrangebyscore(key, 0, now - self._window)
        pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(key)
        pipe.expire(key, self._window + 1)
        results = await pipe.execute()
        return results[2]

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        identifier = caller_identifier(request)
        key = f"ratelimit:{identifier}:{request.url.path}"

        try:
            request_count = await self._count(key)
        except Exception as e:
            logger.warning("rate_limit_redis_error", error=str(e))
            return await call_next(request)

        if request_count > self._limit:
            logger.warning(
                "rate_limit_exceeded",
                identifier=identifier,
                path=request.url.path,
                count=request_count,
                limit=self._limit,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "type": "https://api.agent-marketplace.dev/errors/rate_limit_exceeded",
                    "title": "Rate Limit Exceeded",
                    "status": 429,
                    "detail": f"Rate limit exceeded: {self._limit} requests per {self._window}s",
                },
                headers={"Retry-After": str(self._window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self._limit - request_count))
        return response
