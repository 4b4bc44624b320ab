"""Owner of the current bearer credential."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from redproxy.auth.credentials import BearerCredential, CredentialAcquirer
from redproxy.config import TokenConfig
from redproxy.exceptions import AuthFailure

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Holds the bearer credential and refreshes it lazily, on demand and on a schedule.

    Refreshes are single-flight: the first caller that finds the credential
    stale starts the refresh, every concurrent caller awaits the same result.
    Readers never wait on each other while a fresh credential exists.
    """

    def __init__(
        self,
        acquirer: CredentialAcquirer,
        config: Optional[TokenConfig] = None,
        prometheus_exporter=None,
    ):
        """
        Args:
            acquirer: Performs the actual handshake
            config: Refresh interval and expiry safety margin
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        config = config or TokenConfig()
        self.acquirer = acquirer
        self.refresh_interval = timedelta(seconds=config.refresh_interval_sec)
        self.expiry_margin = timedelta(seconds=config.expiry_margin_sec)
        self.prometheus_exporter = prometheus_exporter

        self._credential: Optional[BearerCredential] = None
        self._refresh: Optional[asyncio.Future] = None
        self._gate = asyncio.Lock()
        self._scheduler: Optional[asyncio.Task] = None

    @property
    def credential(self) -> Optional[BearerCredential]:
        """The stored credential, fresh or not."""
        return self._credential

    def is_fresh(self, credential: BearerCredential, now: Optional[datetime] = None) -> bool:
        """True when the credential is neither near expiry nor due for its scheduled refresh."""
        now = now or datetime.now(timezone.utc)
        if credential.expires_within(self.expiry_margin, now):
            return False
        return now - credential.issued_at < self.refresh_interval

    async def get_valid_credential(self) -> BearerCredential:
        """
        Return a credential that is safe to send.

        Raises:
            AuthFailure: If the refresh this call waited on failed
        """
        credential = self._credential
        if credential is not None and self.is_fresh(credential):
            return credential
        return await self.refresh(only_if_stale=True)

    async def refresh(self, only_if_stale: bool = False) -> BearerCredential:
        """
        Join the in-flight refresh or start one.

        Args:
            only_if_stale: Return the stored credential instead if another
                caller refreshed it while this one waited for the gate

        Raises:
            AuthFailure: If the refresh failed
        """
        async with self._gate:
            credential = self._credential
            if only_if_stale and credential is not None and self.is_fresh(credential):
                return credential
            if self._refresh is None:
                self._refresh = asyncio.ensure_future(self._run_refresh())
            refresh = self._refresh

        # Shielded so one cancelled caller does not abort the refresh for everyone
        return await asyncio.shield(refresh)

    async def _run_refresh(self) -> BearerCredential:
        try:
            credential = await self.acquirer.acquire()
        except AuthFailure:
            logger.error("Token refresh failed")
            if self.prometheus_exporter:
                self.prometheus_exporter.record_token_refresh("failure")
            raise
        finally:
            self._refresh = None

        self._credential = credential
        if self.prometheus_exporter:
            self.prometheus_exporter.record_token_refresh("success")
        return credential

    def invalidate(self, credential: Optional[BearerCredential] = None) -> None:
        """
        Force the next caller to refresh.

        Args:
            credential: Only drop the stored credential if it is still this one,
                so a caller holding an old token cannot discard a newer one
        """
        if credential is not None and self._credential is not credential:
            return
        if self._credential is not None:
            logger.info("Bearer credential invalidated")
        self._credential = None

    def start_scheduled_refresh(self) -> asyncio.Task:
        """
        Refresh proactively every refresh interval, independent of traffic.

        Returns:
            The background task (cancelled by close())
        """
        if self._scheduler is None or self._scheduler.done():
            self._scheduler = asyncio.create_task(self._refresh_loop())
        return self._scheduler

    async def _refresh_loop(self) -> None:
        while True:
            try:
                await self.refresh()
            except AuthFailure as e:
                logger.warning(f"Scheduled token refresh failed, will retry next cycle: {e}")
            await asyncio.sleep(self.refresh_interval.total_seconds())

    async def close(self) -> None:
        """Stop the scheduled refresh task."""
        if self._scheduler is not None:
            self._scheduler.cancel()
            try:
                await self._scheduler
            except asyncio.CancelledError:
                pass
            self._scheduler = None
