"""Token-bucket rate limiting.

``RateLimitMiddleware`` throttles the authentication endpoints per client IP.
``PlanRateLimiter`` enforces each account's plan budget for algorithm runs.
Both keep their buckets in process memory.
"""

import logging
import math
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from onesaas.exceptions import RateLimitExceededError
from onesaas.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TokenBucket:
    """Token bucket for rate limiting."""

    def __init__(self, capacity: int, refill_rate: float, clock: Clock = time.monotonic) -> None:
        """Initialize token bucket.

        Args:
            capacity: Maximum tokens in bucket
            refill_rate: Tokens added per second
            clock: Monotonic time source (injectable for tests)
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self._clock = clock
        self.last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + (elapsed * self.refill_rate))
        self.last_refill = now

    def consume(self, tokens: int = 1) -> bool:
        """Try to consume tokens from bucket.

        Returns:
            True if tokens were consumed, False if insufficient
        """
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def retry_after(self, tokens: int = 1) -> int:
        """Seconds until ``tokens`` will be available."""
        missing = tokens - self.tokens
        if missing <= 0:
            return 0
        return max(1, math.ceil(missing / self.refill_rate))


class _BucketStore:
    """Keyed buckets with periodic eviction of idle entries."""

    def __init__(self, clock: Clock = time.monotonic, idle_seconds: float = 300,
                 max_buckets: int = 10000) -> None:
        self.buckets: Dict[str, TokenBucket] = {}
        self._clock = clock
        self.idle_seconds = idle_seconds
        self.max_buckets = max_buckets
        self.last_cleanup = clock()

    def get(self, key: str, capacity: int, refill_rate: float) -> TokenBucket:
        bucket = self.buckets.get(key)
        if bucket is None or bucket.capacity != capacity or bucket.refill_rate != refill_rate:
            bucket = TokenBucket(capacity, refill_rate, self._clock)
            self.buckets[key] = bucket
        return bucket

    def cleanup(self) -> None:
        now = self._clock()
        if now - self.last_cleanup < self.idle_seconds:
            return

        # A bucket idle long enough has refilled completely, so dropping it is lossless
        expired = [
            key for key, bucket in self.buckets.items()
            if now - bucket.last_refill > max(self.idle_seconds, bucket.capacity / bucket.refill_rate)
        ]
        for key in expired:
            del self.buckets[key]
        if expired:
            logger.debug("Cleaned up %d inactive rate limit buckets", len(expired))

        if len(self.buckets) > self.max_buckets:
            newest = sorted(self.buckets.items(), key=lambda item: item[1].last_refill, reverse=True)
            self.buckets = dict(newest[: self.max_buckets])
            logger.warning("Rate limiter exceeded max buckets (%d), dropped the oldest", self.max_buckets)

        self.last_cleanup = now


class PlanRateLimiter:
    """Per-account request budget derived from the caller's plan."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._store = _BucketStore(clock=clock, idle_seconds=3600)

    def check(self, account_id: str, plan_name: str, rate_limit: int, rate_period: int) -> None:
        """Consume one request from the account's budget.

        Raises:
            RateLimitExceededError: The budget for the current period is spent
        """
        bucket = self._store.get(f"{account_id}:{plan_name}", rate_limit, rate_limit / rate_period)
        if not bucket.consume():
            retry_after = bucket.retry_after()
            logger.info("Plan rate limit reached for account %s on %s", account_id, plan_name)
            raise RateLimitExceededError(
                f"Rate limit of {rate_limit} requests per {rate_period} seconds exceeded for {plan_name}",
                retry_after=retry_after,
            )
        self._store.cleanup()

    def remaining(self, account_id: str, plan_name: str) -> Optional[int]:
        bucket = self._store.buckets.get(f"{account_id}:{plan_name}")
        return None if bucket is None else int(bucket.tokens)


# (limit, window seconds) per path prefix, first match wins
AUTH_ENDPOINT_LIMITS: Tuple[Tuple[str, int, int], ...] = (
    ("/api/v1/auth/login", 5, 300),
    ("/api/v1/auth/register", 5, 3600),
    ("/api/v1/auth/resend-verification", 3, 3600),
    ("/api/v1/auth/2fa/", 10, 300),
    ("/api/v1/auth/", 60, 60),
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP token buckets on the authentication endpoints."""

    def __init__(self, app, enabled: bool = True, clock: Clock = time.monotonic,
                 limits: Tuple[Tuple[str, int, int], ...] = AUTH_ENDPOINT_LIMITS) -> None:
        super().__init__(app)
        self.enabled = enabled
        self.limits = limits
        self._store = _BucketStore(clock=clock)

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _match(self, path: str) -> Optional[Tuple[str, int, int]]:
        for prefix, limit, window in self.limits:
            if path.startswith(prefix):
                return prefix, limit, window
        return None

    async def dispatch(self, request: Request, call_next):
        matched = self._match(request.url.path) if self.enabled else None
        if matched is None:
            return await call_next(request)

        prefix, limit, window = matched
        client_ip = self._get_client_ip(request)
        bucket = self._store.get(f"{client_ip}:{prefix}", limit, limit / window)

        if not bucket.consume():
            logger.warning(
                "Rate limit exceeded for IP %s on %s",
                sanitize_log_message(client_ip), request.url.path,
            )
            error = RateLimitExceededError(retry_after=bucket.retry_after())
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"Retry-After": str(error.retry_after)},
            )

        self._store.cleanup()

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(int(bucket.tokens))
        return response
