"""Retry logic for transient upstream failures."""

import asyncio
import logging
import random
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar, cast

from redproxy.client.rate_limiter import RateLimiter
from redproxy.config import RetryConfig
from redproxy.exceptions import FetchError, RateLimitedError, UpstreamStatusError

logger = logging.getLogger(__name__)

T = TypeVar("T")
AsyncFunc = Callable[..., Awaitable[T]]


class TransientError(Exception):
    """Raised by a single request attempt that may succeed when repeated."""

    def __init__(self, status: Optional[int], retry_after: Optional[float] = None, reason: str = ""):
        self.status = status
        self.retry_after = retry_after
        self.reason = reason or (f"HTTP {status}" if status else "connection error")
        super().__init__(self.reason)


class ConsecutiveErrorTracker:
    """Tracker for consecutive upstream 5xx errors."""

    def __init__(self, prometheus_exporter=None):
        """
        Args:
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.consecutive_errors = 0
        self.prometheus_exporter = prometheus_exporter

    def record_error(self) -> None:
        """Record an error occurrence and increment the counter."""
        self.consecutive_errors += 1
        logger.debug(f"Consecutive upstream errors: {self.consecutive_errors}")
        if self.prometheus_exporter:
            self.prometheus_exporter.set_consecutive_5xx_errors(self.consecutive_errors)

    def record_success(self) -> None:
        """Record a successful request, resetting the consecutive error count."""
        if self.consecutive_errors > 0:
            logger.info(f"Resetting consecutive 5xx counter (was {self.consecutive_errors})")
            self.consecutive_errors = 0
            if self.prometheus_exporter:
                self.prometheus_exporter.set_consecutive_5xx_errors(0)


def compute_backoff(attempt: int, config: RetryConfig, retry_after: Optional[float] = None) -> float:
    """
    Delay before retry number ``attempt`` (0-based).

    Exponential in the attempt, raised to ``retry_after`` when upstream asked
    for longer, capped at ``max_backoff`` and then jittered by ±``jitter``.
    """
    delay = min(config.initial_backoff * (config.backoff_factor ** attempt), config.max_backoff)
    if retry_after is not None:
        delay = min(max(delay, retry_after), config.max_backoff)
    if config.jitter:
        delay *= random.uniform(1 - config.jitter, 1 + config.jitter)
    return delay


def exhausted_error(error: TransientError) -> FetchError:
    """Map the last transient failure to the error surfaced to the caller."""
    if error.status == 429:
        return RateLimitedError()
    return UpstreamStatusError(error.status)


def with_exponential_backoff(
    config: Optional[RetryConfig] = None,
    error_tracker: Optional[ConsecutiveErrorTracker] = None,
    rate_limiter: Optional[RateLimiter] = None,
    prometheus_exporter=None,
) -> Callable[[AsyncFunc[T]], AsyncFunc[T]]:
    """
    Decorator for retrying async functions that raise TransientError.

    Args:
        config: Retry bound and backoff curve
        error_tracker: Optional tracker for consecutive 5xx errors
        rate_limiter: Optional rate limiter used to wait out 429 responses
        prometheus_exporter: Optional Prometheus exporter for metrics

    Returns:
        Decorator function
    """
    config = config or RetryConfig()

    def decorator(func: AsyncFunc[T]) -> AsyncFunc[T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = 0

            while True:
                try:
                    result = await func(*args, **kwargs)
                except TransientError as e:
                    if error_tracker and e.status is not None and 500 <= e.status < 600:
                        error_tracker.record_error()

                    if retries >= config.max_retries:
                        logger.error(f"Max retries ({config.max_retries}) exceeded: {e.reason}")
                        raise exhausted_error(e) from e

                    delay = compute_backoff(retries, config, e.retry_after)
                    logger.warning(
                        f"Transient upstream failure ({e.reason}). "
                        f"Retrying in {delay:.2f}s ({retries + 1}/{config.max_retries})"
                    )
                    if prometheus_exporter:
                        prometheus_exporter.record_retry(str(e.status) if e.status else "connection")

                    if e.status == 429 and rate_limiter:
                        await rate_limiter.handle_429(delay)
                    else:
                        await asyncio.sleep(delay)
                    retries += 1
                    continue

                if error_tracker:
                    error_tracker.record_success()
                return result

        return cast(AsyncFunc[T], wrapper)
    return decorator
