"""Shared aiohttp connection pool with a browser-like TLS profile."""

import logging
import ssl
from typing import Optional

from aiohttp import ClientSession, DummyCookieJar, TCPConnector

from redproxy.config import Config

logger = logging.getLogger(__name__)

# TLS 1.2 cipher order sent by current Chromium builds. TLS 1.3 suites are
# fixed by OpenSSL and already match browser ordering.
BROWSER_CIPHERS = ":".join([
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-RSA-AES128-SHA",
    "ECDHE-RSA-AES256-SHA",
    "AES128-GCM-SHA256",
    "AES256-GCM-SHA384",
    "AES128-SHA",
    "AES256-SHA",
])


def build_tls_context() -> ssl.SSLContext:
    """
    Build the client TLS context used for every upstream connection.

    Returns:
        SSLContext with certificate verification on and browser cipher ordering
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(BROWSER_CIPHERS)
    context.set_alpn_protocols(["http/1.1"])
    context.options |= ssl.OP_NO_COMPRESSION
    return context


class SessionManager:
    """Owns the connection pool shared by the dispatcher, acquirer and media fetcher."""

    def __init__(self, config: Config):
        """
        Args:
            config: Application configuration (pool size)
        """
        self.config = config
        self._session: Optional[ClientSession] = None

    async def initialize(self) -> ClientSession:
        """
        Create the pooled session on first use.

        Returns:
            The shared ClientSession
        """
        if self._session is None or self._session.closed:
            logger.info("Initializing upstream connection pool")
            connector = TCPConnector(
                ssl=build_tls_context(),
                limit=self.config.max_connections,
                ttl_dns_cache=300,
                keepalive_timeout=60,
            )
            # Headers are set per request; no cookie jar so nothing leaks between callers
            self._session = ClientSession(
                connector=connector,
                cookie_jar=DummyCookieJar(),
                auto_decompress=True,
            )
        return self._session

    async def get(self) -> ClientSession:
        """Return the shared session, creating it if needed."""
        return await self.initialize()

    async def cleanup(self) -> None:
        """Close the pool and release all connections."""
        if self._session is not None:
            logger.info("Closing upstream connection pool")
            await self._session.close()
            self._session = None
