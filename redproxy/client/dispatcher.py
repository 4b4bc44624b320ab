"""Authenticated JSON requests against the upstream API."""

import asyncio
import json
import logging
from contextlib import nullcontext
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote

import aiohttp

from redproxy.auth.credentials import BearerCredential
from redproxy.auth.token_store import TokenStore
from redproxy.client.error_handler import (
    ConsecutiveErrorTracker,
    TransientError,
    with_exponential_backoff,
)
from redproxy.client.rate_limiter import RateLimiter
from redproxy.client.session import SessionManager
from redproxy.config import Config
from redproxy.exceptions import (
    BannedError,
    DecodeError,
    GatedError,
    NotFoundError,
    PrivateError,
    QuarantinedError,
    UpstreamStatusError,
)

logger = logging.getLogger(__name__)

# Sent once the caller opted in to view a quarantined community
QUARANTINE_OPT_IN_COOKIE = "_options=" + quote(
    json.dumps({"pref_quarantine_optin": True, "pref_gated_sr_optin": True})
)

# Checked in this order against the error reason and then the raw body
RESTRICTIONS = {
    "quarantined": QuarantinedError,
    "gated": GatedError,
    "private": PrivateError,
    "banned": BannedError,
}


def classify_restriction(body: str) -> Optional[str]:
    """
    Find the access restriction named by a 403/404 response body.

    Args:
        body: Response body, usually ``{"reason": "...", "error": 403}``

    Returns:
        One of the RESTRICTIONS keys, or None if the body names none
    """
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        reason = str(payload.get("reason") or "").lower()
        for marker in RESTRICTIONS:
            if marker in reason:
                return marker
        return None

    lowered = body.lower()
    for marker in RESTRICTIONS:
        if marker in lowered:
            return marker
    return None


class _Unauthorized(Exception):
    """Upstream rejected the bearer credential."""


class RequestDispatcher:
    """Issues authenticated upstream calls and classifies their failures."""

    def __init__(
        self,
        config: Config,
        token_store: TokenStore,
        session_manager: SessionManager,
        rate_limiter: Optional[RateLimiter] = None,
        prometheus_exporter=None,
    ):
        """
        Args:
            config: Application configuration
            token_store: Source of bearer credentials
            session_manager: Shared connection pool
            rate_limiter: Tracks the per-token request budget
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.config = config
        self.token_store = token_store
        self.session_manager = session_manager
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit)
        self.prometheus_exporter = prometheus_exporter
        self.error_tracker = ConsecutiveErrorTracker(prometheus_exporter)

        self._fetch_with_retry = with_exponential_backoff(
            config.retry,
            error_tracker=self.error_tracker,
            rate_limiter=self.rate_limiter,
            prometheus_exporter=prometheus_exporter,
        )(self._fetch_authorized)

    async def fetch_json(
        self,
        path: str,
        quarantine_override: bool = False,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        Fetch and decode a JSON document from the API host.

        Args:
            path: API path starting with "/" (e.g., "/r/python/hot")
            quarantine_override: Caller opted in to view quarantined communities
            params: Extra query parameters

        Returns:
            Decoded JSON value

        Raises:
            FetchError: One of the classified failures
            AuthFailure: If no credential could be obtained
        """
        try:
            return await self._fetch_with_retry(path, params, False)
        except QuarantinedError:
            if not quarantine_override:
                raise
            logger.info(f"Quarantined community at {path}, retrying with opt-in")
            return await self._fetch_with_retry(path, params, True)

    async def _fetch_authorized(
        self,
        path: str,
        params: Optional[Mapping[str, Any]],
        acknowledge_quarantine: bool,
    ) -> Any:
        """One logical attempt. A rejected token is refreshed and the call repeated once."""
        for attempt in range(2):
            credential = await self.token_store.get_valid_credential()
            try:
                return await self._fetch_once(path, params, acknowledge_quarantine, credential)
            except _Unauthorized:
                self.token_store.invalidate(credential)
                if attempt:
                    raise UpstreamStatusError(401)
                logger.warning("Bearer credential rejected (401), refreshing")
        raise UpstreamStatusError(401)  # pragma: no cover

    async def _fetch_once(
        self,
        path: str,
        params: Optional[Mapping[str, Any]],
        acknowledge_quarantine: bool,
        credential: BearerCredential,
    ) -> Any:
        url = f"{self.config.api_host.rstrip('/')}{path}"
        query: Dict[str, Any] = {"raw_json": "1"}
        if params:
            query.update({k: v for k, v in params.items() if v is not None})

        headers = self._build_headers(credential, acknowledge_quarantine)
        status, response_headers, body = await self._request(url, query, headers)

        self._track_budget(response_headers, credential)
        if self.prometheus_exporter:
            self.prometheus_exporter.record_request(status)

        if 200 <= status < 300:
            try:
                return json.loads(body)
            except ValueError as e:
                logger.error(f"Malformed JSON from {path} (HTTP {status})")
                raise DecodeError(f"Malformed JSON from {path}") from e

        if status == 401:
            raise _Unauthorized()

        text = body.decode("utf-8", "replace")
        if status in (403, 404):
            marker = classify_restriction(text)
            if marker:
                logger.info(f"{path} is {marker} (HTTP {status})")
                raise RESTRICTIONS[marker]()
            if status == 404:
                raise NotFoundError(f"Not found: {path}")

        if status == 429:
            raise TransientError(status, retry_after=RateLimiter.retry_after(response_headers))
        if status >= 500:
            raise TransientError(status)

        if 300 <= status < 400 and "/subreddits/search" in response_headers.get("Location", ""):
            # Upstream redirects unknown communities to the community search
            raise NotFoundError(f"Not found: {path}")

        raise UpstreamStatusError(status)

    def _build_headers(self, credential: BearerCredential, acknowledge_quarantine: bool) -> Dict[str, str]:
        headers = self.token_store.acquirer.identity_headers()
        headers.update(credential.headers)
        headers["Authorization"] = credential.authorization()
        headers["Accept"] = "application/json"
        if acknowledge_quarantine:
            headers["Cookie"] = QUARANTINE_OPT_IN_COOKIE
        return headers

    async def _request(
        self,
        url: str,
        params: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> Tuple[int, Mapping[str, str], bytes]:
        session = await self.session_manager.get()
        timer = self.prometheus_exporter.time_request() if self.prometheus_exporter else None

        try:
            with timer if timer else nullcontext():
                async with session.request(
                    "GET",
                    url,
                    params=params,
                    headers=headers,
                    allow_redirects=False,
                    timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_sec),
                ) as response:
                    body = await response.read()
                    return response.status, response.headers, body
        except asyncio.TimeoutError as e:
            raise TransientError(None, reason=f"timeout after {self.config.request_timeout_sec}s") from e
        except aiohttp.ClientError as e:
            raise TransientError(None, reason=str(e)) from e

    def _track_budget(self, headers: Mapping[str, str], credential: BearerCredential) -> None:
        self.rate_limiter.update_from_headers(headers)
        if self.rate_limiter.should_rotate_token():
            logger.info(f"Only {self.rate_limiter.remaining_calls} calls left on this token, rotating")
            self.token_store.invalidate(credential)
            self.rate_limiter.reset()
