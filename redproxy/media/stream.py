"""Streaming fetch of proxied media bytes with range support."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import aiohttp

from redproxy.client.session import SessionManager
from redproxy.config import Config
from redproxy.exceptions import NotFoundError, RateLimitedError, UpstreamStatusError
from redproxy.media.proxy import resolve

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Statuses handed to the caller as-is; everything else is an error
PASSTHROUGH_STATUSES = frozenset({200, 206, 304, 416})

FORWARDED_HEADERS = (
    "Content-Type",
    "Content-Length",
    "Content-Range",
    "Accept-Ranges",
    "Cache-Control",
    "Last-Modified",
    "ETag",
)


class MediaStream:
    """An open upstream media response. Only valid inside ``fetch_media``."""

    def __init__(self, response: aiohttp.ClientResponse, prometheus_exporter=None):
        self._response = response
        self.prometheus_exporter = prometheus_exporter
        self.status: int = response.status
        self.headers: Dict[str, str] = {
            name: response.headers[name]
            for name in FORWARDED_HEADERS
            if name in response.headers
        }

    @property
    def is_partial(self) -> bool:
        """True for a 206 Partial Content answer to a range request."""
        return self.status == 206

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the body as it arrives, never holding more than one chunk."""
        async for chunk in self._response.content.iter_chunked(chunk_size):
            if self.prometheus_exporter:
                self.prometheus_exporter.record_media_bytes(len(chunk))
            yield chunk


class MediaFetcher:
    """Fetches the upstream bytes behind media proxy paths."""

    def __init__(self, config: Config, session_manager: SessionManager, prometheus_exporter=None):
        """
        Args:
            config: Application configuration (timeouts, user agent)
            session_manager: Shared connection pool
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.config = config
        self.session_manager = session_manager
        self.prometheus_exporter = prometheus_exporter

    @asynccontextmanager
    async def fetch_media(self, rewritten_path: str, range: Optional[str] = None) -> AsyncIterator[MediaStream]:
        """
        Open a streaming request for a proxied media path.

        The upstream connection is released when the context exits, including
        when the caller is cancelled mid-stream.

        Args:
            rewritten_path: Path produced by ``media.proxy.rewrite``
            range: Value of the client's Range header, e.g. "bytes=0-1023"

        Yields:
            MediaStream with status, forwarded headers and a chunk iterator

        Raises:
            NotFoundError: If the path is not a media proxy path or upstream has no such file
            RateLimitedError: If the media host answered 429
            UpstreamStatusError: For any other failure
        """
        url = resolve(rewritten_path)
        if url is None:
            raise NotFoundError(f"Not a media path: {rewritten_path}")

        headers = {"User-Agent": self.config.identity.user_agent, "Accept": "*/*"}
        if range and range.startswith("bytes="):
            headers["Range"] = range

        timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=self.config.request_timeout_sec,
            sock_read=self.config.media_timeout_sec,
        )
        session = await self.session_manager.get()

        logger.debug(f"Streaming media {rewritten_path} (range={range})")
        try:
            async with session.request("GET", url, headers=headers, timeout=timeout) as response:
                if response.status not in PASSTHROUGH_STATUSES:
                    if response.status in (404, 410):
                        raise NotFoundError(f"Media not found: {rewritten_path}")
                    if response.status == 429:
                        raise RateLimitedError()
                    raise UpstreamStatusError(response.status)

                yield MediaStream(response, self.prometheus_exporter)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Media stream for {rewritten_path} failed: {e}")
            raise UpstreamStatusError(None, f"Media stream failed: {e}") from e
