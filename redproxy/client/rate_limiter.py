"""Rate limit tracking for upstream API requests."""

import asyncio
import logging
import time
from typing import Any, Mapping, Optional

from redproxy.config import RateLimitConfig

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SEC = 1.0


class RateLimiter:
    """
    Tracks the per-token rate limit budget reported by upstream.

    Upstream rate limits each bearer token separately, so once the budget is
    nearly spent the dispatcher rotates to a fresh token instead of sleeping.
    """

    def __init__(self, config: Optional[RateLimitConfig] = None):
        """
        Initialize the rate limiter with configuration.

        Args:
            config: Rate limiting configuration
        """
        self.config = config or RateLimitConfig()
        self.remaining_calls: Optional[int] = None
        self.reset_timestamp: Optional[float] = None

    def update_from_headers(self, headers: Mapping[str, Any]) -> None:
        """
        Update rate limit tracking based on upstream response headers.

        Args:
            headers: Response headers from an API request
        """
        if "x-ratelimit-remaining" in headers:
            try:
                self.remaining_calls = int(float(headers["x-ratelimit-remaining"]))
            except (ValueError, TypeError):
                logger.warning("Failed to parse x-ratelimit-remaining header")

        if "x-ratelimit-reset" in headers:
            try:
                reset_seconds = float(headers["x-ratelimit-reset"])
                self.reset_timestamp = time.time() + reset_seconds
            except (ValueError, TypeError):
                logger.warning("Failed to parse x-ratelimit-reset header")

        if self.remaining_calls is not None and self.reset_timestamp is not None:
            reset_in = self.reset_timestamp - time.time()
            logger.debug(f"Rate limit status: {self.remaining_calls} calls remaining, "
                         f"reset in {reset_in:.2f}s")

    def should_rotate_token(self) -> bool:
        """True once the remaining budget fell below the configured floor."""
        return (self.remaining_calls is not None and
                self.remaining_calls < self.config.min_remaining_calls)

    def reset(self) -> None:
        """Forget the tracked budget, e.g. after switching to a new token."""
        self.remaining_calls = None
        self.reset_timestamp = None

    @staticmethod
    def retry_after(headers: Mapping[str, Any]) -> Optional[float]:
        """
        Parse the Retry-After header of a 429 response.

        Args:
            headers: Response headers

        Returns:
            Seconds to wait, or None if the header is absent or not numeric
        """
        value = headers.get("Retry-After")
        if value is None:
            return None
        try:
            return max(0.0, float(value))
        except (ValueError, TypeError):
            return DEFAULT_RETRY_AFTER_SEC

    async def handle_429(self, wait_seconds: float) -> None:
        """
        Sleep before retrying a 429 response.

        Args:
            wait_seconds: Delay chosen by the backoff policy
        """
        logger.warning(f"Rate limited (429). Waiting for {wait_seconds:.2f}s before retrying.")
        await asyncio.sleep(wait_seconds)
        self.reset()
