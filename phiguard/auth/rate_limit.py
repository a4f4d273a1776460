import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..audit.policy import client_ip
from ..core.clock import utcnow
from ..core.errors import RateLimited
from ..core.logging import get_logger

logger = get_logger(__name__)

REFILL_WINDOW_SECONDS = 60.0
RETRY_AFTER_SECONDS = 60


@dataclass
class TokenBucket:
    capacity: int
    tokens: float
    last_refill: float


class RateLimiter:
    """
    Per-origin token buckets held in process memory.

    Capacity is the configured requests-per-minute and refills continuously
    to capacity over one minute. Buckets are created lazily and dropped
    wholesale by evict_all(); nothing is shared between processes.
    """

    def __init__(self, requests_per_minute: int = 20,
                 monotonic: Callable[[], float] = time.monotonic):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.capacity = requests_per_minute
        self.refill_rate = requests_per_minute / REFILL_WINDOW_SECONDS
        self.monotonic = monotonic
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(requests_per_minute=settings.RATE_LIMIT_REQUESTS_PER_MINUTE)

    def try_consume(self, origin_key: str) -> bool:
        now = self.monotonic()
        with self._lock:
            bucket = self._buckets.get(origin_key)
            if bucket is None:
                bucket = TokenBucket(self.capacity, float(self.capacity), now)
                self._buckets[origin_key] = bucket
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                bucket.tokens = min(float(bucket.capacity), bucket.tokens + elapsed * self.refill_rate)
                bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True
            return False

    def evict_all(self) -> int:
        with self._lock:
            size = len(self._buckets)
            self._buckets.clear()
        if size:
            logger.debug("rate_limit_buckets_evicted", buckets=size)
        return size

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the app's RateLimiter to requests under the given path prefixes.
    Denials are uniform: same body and retry hint whatever was requested.
    """

    def __init__(self, app, path_prefixes: Iterable[str] = ("/auth/",)):
        super().__init__(app)
        self.path_prefixes = tuple(path_prefixes)

    async def dispatch(self, request: Request, call_next):
        limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None or not request.url.path.startswith(self.path_prefixes):
            return await call_next(request)

        origin = client_ip(request)
        if limiter.try_consume(origin):
            return await call_next(request)

        logger.warning("rate_limit_exceeded", ip=origin, path=request.url.path)
        error = RateLimited(retry_after=RETRY_AFTER_SECONDS)
        return JSONResponse(
            status_code=429,
            content={
                "timestamp": utcnow().isoformat() + "Z",
                "status": 429,
                "error": error.message,
            },
            headers={"Retry-After": str(error.retry_after)},
        )
