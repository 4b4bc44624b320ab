"""Prometheus metrics for monitoring upstream access."""

import logging
import time
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

# Define metrics
UPSTREAM_REQUESTS = Counter(
    "redproxy_upstream_requests_total",
    "Number of upstream API responses by status class",
    ["status"],
)

UPSTREAM_RETRIES = Counter(
    "redproxy_upstream_retries_total",
    "Number of retried upstream requests",
    ["reason"],
)

TOKEN_REFRESHES = Counter(
    "redproxy_token_refreshes_total",
    "Number of bearer token refreshes",
    ["outcome"],
)

CONSECUTIVE_5XX_ERRORS = Gauge(
    "redproxy_consecutive_5xx_errors",
    "Number of consecutive 5XX errors encountered",
)

MEDIA_BYTES = Counter(
    "redproxy_media_bytes_total",
    "Bytes of media streamed from upstream",
)

REQUEST_DURATION = Histogram(
    "redproxy_request_duration_seconds",
    "Duration of upstream API requests in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)


def status_class(status: int) -> str:
    """Collapse an HTTP status into a low-cardinality label ("2xx", "429", ...)."""
    if status in (401, 403, 404, 429):
        return str(status)
    return f"{status // 100}xx"


class PrometheusExporter:
    """Prometheus metrics exporter for redproxy."""

    def __init__(self, port: int = 8000):
        """
        Initialize the Prometheus exporter.

        Args:
            port: Port to expose metrics on
        """
        self.port = port
        self.server_started = False

    def start_server(self) -> None:
        """Start the Prometheus metrics server."""
        if not self.server_started:
            try:
                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Started Prometheus metrics server on port {self.port}")
            except OSError as e:
                logger.error(f"Failed to start Prometheus metrics server: {str(e)}")

    def record_request(self, status: int) -> None:
        """
        Record an upstream response.

        Args:
            status: HTTP status code
        """
        UPSTREAM_REQUESTS.labels(status=status_class(status)).inc()

    def record_retry(self, reason: str) -> None:
        """
        Record a retry.

        Args:
            reason: Status code that triggered it, or "connection"
        """
        UPSTREAM_RETRIES.labels(reason=reason).inc()

    def record_token_refresh(self, outcome: str) -> None:
        """
        Record a token refresh.

        Args:
            outcome: "success" or "failure"
        """
        TOKEN_REFRESHES.labels(outcome=outcome).inc()

    def set_consecutive_5xx_errors(self, count: int) -> None:
        """
        Set the consecutive 5XX errors gauge.

        Args:
            count: Number of consecutive 5XX errors
        """
        CONSECUTIVE_5XX_ERRORS.set(count)

    def record_media_bytes(self, count: int) -> None:
        MEDIA_BYTES.inc(count)

    def time_request(self) -> "RequestTimer":
        """
        Create a context manager for timing API requests.

        Returns:
            RequestTimer context manager
        """
        return RequestTimer()


class RequestTimer:
    """Context manager for timing API requests."""

    def __init__(self):
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self) -> "RequestTimer":
        """Start timing the request."""
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Stop timing the request and record the duration."""
        if self.start_time is not None:
            self.duration = time.time() - self.start_time
            REQUEST_DURATION.observe(self.duration)
