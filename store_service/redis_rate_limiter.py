"""Redis-backed per-IP rate limiter for the API prefix."""
import logging
import time
from typing import Tuple
import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from store_service.monitoring import rate_limit_exceeded_counter

logger = logging.getLogger(__name__)


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Sliding-window rate limiter keyed on client IP, shared through Redis.

    Only paths under ``path_prefix`` are counted, so health checks and static
    uploads are never limited. When Redis is unavailable requests are let
    through.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        max_requests: int = 100,
        window_seconds: int = 900,
        path_prefix: str = "/api"
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Redis connection
            max_requests: Max requests per IP inside the window
            window_seconds: Sliding window size in seconds
            path_prefix: Only requests under this prefix are limited
        """
        super().__init__(app)
        self.redis = redis_client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.path_prefix = path_prefix

    def _check_rate_limit(self, key: str) -> Tuple[bool, int]:
        """
        Check rate limit using Redis sorted set (sliding window).

        Algorithm:
        1. Remove timestamps older than window
        2. Count requests in window
        3. Add current request
        4. Set TTL

        Args:
            key: Redis key for this limit (e.g., "rate:ip:192.168.1.1")

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, current_time - self.window_seconds)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, self.window_seconds + 1)
            results = pipe.execute()

            # Count BEFORE adding current request
            count = results[1]
            return count < self.max_requests, count + 1

        except redis.RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            return True, 0

    async def dispatch(self, request: Request, call_next):
        """
        Process request with Redis-backed rate limiting.

        Returns:
            Response, or 429 when the client IP exhausted its window
        """
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        allowed, count = self._check_rate_limit(f"rate:ip:{client_ip}")
        if not allowed:
            rate_limit_exceeded_counter.add(1, {"limit_type": "ip"})
            logger.warning(
                f"Rate limit exceeded for IP {client_ip}: "
                f"{count}/{self.max_requests} requests"
            )
            minutes = max(1, self.window_seconds // 60)
            return JSONResponse(
                status_code=429,
                content={
                    "status": "error",
                    "message": f"Too many requests from this IP, please try again after {minutes} minutes",
                },
                headers={"Retry-After": str(self.window_seconds)}
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.max_requests - count))
        return response
