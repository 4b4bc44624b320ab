"""Tests for the error handler module."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from redproxy.client.error_handler import (
    ConsecutiveErrorTracker,
    TransientError,
    compute_backoff,
    exhausted_error,
    with_exponential_backoff,
)
from redproxy.config import RetryConfig
from redproxy.exceptions import RateLimitedError, UpstreamStatusError


class TestConsecutiveErrorTracker(unittest.TestCase):
    """Test cases for the ConsecutiveErrorTracker class."""

    def setUp(self):
        """Set up test environment."""
        self.tracker = ConsecutiveErrorTracker()

    def test_record_error(self):
        """Test recording errors."""
        self.tracker.record_error()
        self.assertEqual(self.tracker.consecutive_errors, 1)

        self.tracker.record_error()
        self.assertEqual(self.tracker.consecutive_errors, 2)

    def test_record_success(self):
        """Test recording a success resets the error counter."""
        self.tracker.record_error()
        self.tracker.record_error()
        self.tracker.record_success()
        self.assertEqual(self.tracker.consecutive_errors, 0)

    def test_prometheus_integration(self):
        """Test integration with Prometheus metrics."""
        mock_exporter = MagicMock()
        tracker = ConsecutiveErrorTracker(prometheus_exporter=mock_exporter)

        tracker.record_error()
        mock_exporter.set_consecutive_5xx_errors.assert_called_once_with(1)

        tracker.record_success()
        mock_exporter.set_consecutive_5xx_errors.assert_called_with(0)


class TestComputeBackoff(unittest.TestCase):
    """Test cases for the backoff curve."""

    def test_exponential_without_jitter(self):
        config = RetryConfig(initial_backoff=0.2, backoff_factor=2.0, max_backoff=5.0, jitter=0.0)
        self.assertAlmostEqual(compute_backoff(0, config), 0.2)
        self.assertAlmostEqual(compute_backoff(1, config), 0.4)
        self.assertAlmostEqual(compute_backoff(2, config), 0.8)

    def test_capped(self):
        config = RetryConfig(initial_backoff=0.2, backoff_factor=2.0, max_backoff=5.0, jitter=0.0)
        self.assertAlmostEqual(compute_backoff(10, config), 5.0)

    def test_retry_after_raises_delay_up_to_cap(self):
        config = RetryConfig(initial_backoff=0.2, max_backoff=5.0, jitter=0.0)
        self.assertAlmostEqual(compute_backoff(0, config, retry_after=2.0), 2.0)
        self.assertAlmostEqual(compute_backoff(0, config, retry_after=60.0), 5.0)

    def test_jitter_bounds(self):
        """Jitter stays within ±50% of the base delay."""
        config = RetryConfig(initial_backoff=1.0, max_backoff=5.0, jitter=0.5)
        for _ in range(200):
            delay = compute_backoff(0, config)
            self.assertGreaterEqual(delay, 0.5)
            self.assertLessEqual(delay, 1.5)


class TestExhaustedError(unittest.TestCase):
    def test_mapping(self):
        self.assertIsInstance(exhausted_error(TransientError(429)), RateLimitedError)
        error = exhausted_error(TransientError(502))
        self.assertIsInstance(error, UpstreamStatusError)
        self.assertEqual(error.status, 502)
        self.assertIsNone(exhausted_error(TransientError(None)).status)


class TestWithExponentialBackoff(unittest.TestCase):
    """Test cases for the with_exponential_backoff decorator."""

    def setUp(self):
        self.config = RetryConfig(max_retries=3, initial_backoff=0.2, jitter=0.0)

    def test_successful_call(self):
        """Test decorator with a successful function call."""
        mock_func = AsyncMock(return_value="success")
        decorated_func = with_exponential_backoff(self.config)(mock_func)

        result = asyncio.run(decorated_func("arg1", kwarg="kwarg"))

        mock_func.assert_called_once_with("arg1", kwarg="kwarg")
        self.assertEqual(result, "success")

    @patch("redproxy.client.error_handler.asyncio.sleep", new_callable=AsyncMock)
    def test_retry_then_success(self, mock_sleep):
        """Test decorator retries transient errors with growing delays."""
        mock_func = AsyncMock(side_effect=[TransientError(500), TransientError(502), "success"])
        tracker = ConsecutiveErrorTracker()
        decorated_func = with_exponential_backoff(self.config, error_tracker=tracker)(mock_func)

        result = asyncio.run(decorated_func())

        self.assertEqual(result, "success")
        self.assertEqual(mock_func.call_count, 3)
        delays = [call.args[0] for call in mock_sleep.call_args_list]
        self.assertEqual(len(delays), 2)
        self.assertAlmostEqual(delays[0], 0.2)
        self.assertAlmostEqual(delays[1], 0.4)
        self.assertEqual(tracker.consecutive_errors, 0)

    @patch("redproxy.client.error_handler.asyncio.sleep", new_callable=AsyncMock)
    def test_max_retries_exceeded(self, mock_sleep):
        """Test decorator gives up after max retries."""
        mock_func = AsyncMock(side_effect=TransientError(503))
        decorated_func = with_exponential_backoff(self.config)(mock_func)

        with self.assertRaises(UpstreamStatusError) as ctx:
            asyncio.run(decorated_func())

        self.assertEqual(ctx.exception.status, 503)
        self.assertEqual(mock_func.call_count, 4)
        self.assertEqual(mock_sleep.call_count, 3)

    def test_rate_limit_waits_through_rate_limiter(self):
        """Test 429 responses wait via the rate limiter."""
        mock_func = AsyncMock(side_effect=[TransientError(429, retry_after=1.0), "success"])
        rate_limiter = MagicMock()
        rate_limiter.handle_429 = AsyncMock()
        decorated_func = with_exponential_backoff(self.config, rate_limiter=rate_limiter)(mock_func)

        self.assertEqual(asyncio.run(decorated_func()), "success")
        rate_limiter.handle_429.assert_called_once()
        self.assertAlmostEqual(rate_limiter.handle_429.call_args.args[0], 1.0)

    def test_non_transient_errors_propagate(self):
        mock_func = AsyncMock(side_effect=ValueError("boom"))
        decorated_func = with_exponential_backoff(self.config)(mock_func)

        with self.assertRaises(ValueError):
            asyncio.run(decorated_func())
        self.assertEqual(mock_func.call_count, 1)

    @patch("redproxy.client.error_handler.asyncio.sleep", new_callable=AsyncMock)
    def test_retries_recorded(self, mock_sleep):
        exporter = MagicMock()
        mock_func = AsyncMock(side_effect=[TransientError(None), "success"])
        decorated_func = with_exponential_backoff(self.config, prometheus_exporter=exporter)(mock_func)

        asyncio.run(decorated_func())

        exporter.record_retry.assert_called_once_with("connection")
