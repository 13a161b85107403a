"""
Rate Limiting for rating submissions.

Sliding log limiter backed by a Redis sorted set per client: every attempt is
logged with its timestamp as score, entries older than the window are trimmed,
and the request is limited when the log already holds ``requests_per_window``
entries. Attempts that are refused are logged too, so a client hammering the
endpoint stays limited until it backs off for a full window.
"""

import math
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from aws_lambda_powertools.metrics import MetricUnit
from redis import Redis
from redis.exceptions import RedisError

from kebabkartan.handlers.utils.observability import logger, metrics, tracer

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_SECONDS = 3600


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    requests_per_window: int = DEFAULT_MAX_REQUESTS
    window_size_seconds: int = DEFAULT_WINDOW_SECONDS
    key_prefix: str = "ratelimit"

    def __post_init__(self):
        if self.requests_per_window < 1:
            raise ValueError("requests_per_window must be at least 1")
        if self.window_size_seconds <= 0:
            raise ValueError("window_size_seconds must be positive")


@dataclass
class RateLimitResult:
    """Result of rate limit check."""

    allowed: bool
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None
    current_usage: int = 0


class RateLimiter(ABC):
    """Base rate limiter interface."""

    @abstractmethod
    def check_rate_limit(self, identifier: str) -> RateLimitResult:
        """Record an attempt for ``identifier`` and report whether it is allowed."""
        pass


class RedisRateLimiter(RateLimiter):
    """
    Redis sliding log rate limiter.

    Features:
    - One sorted set per identifier, scored by request time
    - Trim, count, log and expire in a single MULTI/EXEC transaction
    - Fails open when Redis is unavailable
    """

    def __init__(
        self,
        client: Redis,
        config: Optional[RateLimitConfig] = None,
        enable_metrics: bool = True,
        clock=time.time,
    ):
        """
        Initialize Redis rate limiter.

        Args:
            client: Redis client
            config: Limit and window, defaults to 5 requests per hour
            enable_metrics: Whether to emit CloudWatch metrics
            clock: Returns the current time in seconds
        """
        self.client = client
        self.config = config or RateLimitConfig()
        self.enable_metrics = enable_metrics
        self._clock = clock

    def key_for(self, identifier: str) -> str:
        return f"{self.config.key_prefix}:{identifier}"

    @tracer.capture_method
    def check_rate_limit(self, identifier: str) -> RateLimitResult:
        """
        Check and record a request against the sliding window.

        Args:
            identifier: Client identifier, usually the IP address

        Returns:
            Rate limit result; allowed when Redis cannot be reached
        """
        config = self.config
        key = self.key_for(identifier)
        now = self._clock()
        window_start = now - config.window_size_seconds
        start_time = time.time()

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            # Unique member so that requests within the same instant all count
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, math.ceil(config.window_size_seconds))
            _, current_count, _, oldest, _ = pipe.execute()
        except RedisError as e:
            if self.enable_metrics:
                metrics.add_metric(name="RateLimitError", unit=MetricUnit.Count, value=1)

            logger.error(f"Rate limit check failed: {str(e)}", extra={"key": key})

            # Fail open - allow request if rate limiter fails
            return RateLimitResult(
                allowed=True,
                remaining=config.requests_per_window,
                reset_time=int(now + config.window_size_seconds)
            )

        current_count = int(current_count)
        allowed = current_count < config.requests_per_window
        usage = current_count + 1
        remaining = max(0, config.requests_per_window - usage)

        oldest_score = float(oldest[0][1]) if oldest else now
        reset_time = int(oldest_score + config.window_size_seconds)
        retry_after = None if allowed else max(1, reset_time - int(now))

        result = RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_time=reset_time,
            retry_after=retry_after,
            current_usage=min(usage, config.requests_per_window)
        )

        if self.enable_metrics:
            duration_ms = (time.time() - start_time) * 1000
            metrics.add_metric(name="RateLimitCheckDuration", unit=MetricUnit.Milliseconds, value=duration_ms)

            if result.allowed:
                metrics.add_metric(name="RateLimitAllowed", unit=MetricUnit.Count, value=1)
            else:
                metrics.add_metric(name="RateLimitExceeded", unit=MetricUnit.Count, value=1)

        logger.debug(
            "Rate limit check completed",
            extra={
                "key": key,
                "allowed": result.allowed,
                "remaining": result.remaining,
                "current_usage": current_count,
            }
        )

        return result
