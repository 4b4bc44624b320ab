"""Device-login handshake that mints bearer credentials as the Android client."""

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

import aiohttp

from redproxy.auth.device import generate_device_id, validate_device_id
from redproxy.client.session import SessionManager
from redproxy.config import Config
from redproxy.exceptions import AuthFailure

logger = logging.getLogger(__name__)

LOID_PATH = "/auth/v2/oauth/access-token/loid"
LOID_SCOPES = ["*", "email", "pii"]

# Upper bound on a plausible token lifetime (one year)
MAX_EXPIRES_IN = 365 * 24 * 3600

# Response headers that tie later API calls to the handshake session
SESSION_HEADERS = ("x-reddit-loid", "x-reddit-session")


@dataclass(frozen=True)
class BearerCredential:
    """Short-lived bearer token. Replaced as a whole on every refresh."""

    access_token: str
    token_type: str
    expires_at: datetime
    issued_at: datetime
    headers: Mapping[str, str] = field(default_factory=dict)

    def expires_within(self, margin: timedelta, now: Optional[datetime] = None) -> bool:
        """True when less than ``margin`` remains before expiry."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now < margin

    def authorization(self) -> str:
        """Value for the Authorization header."""
        return f"Bearer {self.access_token}"

    def __repr__(self) -> str:
        return f"<BearerCredential(type={self.token_type!r}, expires_at={self.expires_at.isoformat()})>"


class CredentialAcquirer:
    """Performs the loid handshake presenting a fixed native-client identity."""

    def __init__(self, config: Config, session_manager: SessionManager):
        """
        Args:
            config: Application configuration with the client identity
            session_manager: Shared connection pool
        """
        self.config = config
        self.session_manager = session_manager

        configured = config.identity.device_id
        if configured and validate_device_id(configured):
            self.device_id = configured
        else:
            if configured:
                logger.warning("Configured device id is not a UUID, generating a new one")
            self.device_id = generate_device_id()

    def identity_headers(self) -> Dict[str, str]:
        """Headers the native client sends on every request."""
        return {
            "User-Agent": self.config.identity.user_agent,
            "Client-Vendor-Id": self.device_id,
            "X-Reddit-Device-Id": self.device_id,
        }

    async def acquire(self) -> BearerCredential:
        """
        Mint a new bearer credential.

        Returns:
            A credential whose expiry lies strictly in the future

        Raises:
            AuthFailure: On network error, non-2xx status or a malformed response
        """
        url = f"{self.config.auth_host.rstrip('/')}{LOID_PATH}"
        identity = self.config.identity
        session = await self.session_manager.get()

        logger.info("Requesting a new bearer credential")
        try:
            async with session.request(
                "POST",
                url,
                json={"scopes": LOID_SCOPES},
                headers=self.identity_headers(),
                auth=aiohttp.BasicAuth(identity.client_id, identity.client_secret),
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_sec),
            ) as response:
                status = response.status
                body = await response.text()
                response_headers = response.headers
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Credential handshake failed: {e}")
            raise AuthFailure(f"Credential handshake failed: {e}") from e

        if not 200 <= status < 300:
            logger.error(f"Credential handshake rejected with HTTP {status}")
            raise AuthFailure(f"Credential handshake rejected with HTTP {status}")

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise AuthFailure("Credential response is not valid JSON") from e

        credential = self._parse(payload, response_headers)
        logger.info(f"Acquired bearer credential, expires at {credential.expires_at.isoformat()}")
        return credential

    @staticmethod
    def _parse(payload: Any, response_headers: Mapping[str, str]) -> BearerCredential:
        """Build a credential from the handshake response or raise AuthFailure."""
        if not isinstance(payload, dict):
            raise AuthFailure("Credential response is not a JSON object")

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise AuthFailure("Credential response is missing access_token")

        expires_in = payload.get("expires_in")
        # bool is an int subclass but never a valid lifetime
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            raise AuthFailure("Credential response has no valid expires_in")
        if not math.isfinite(expires_in) or not 0 < expires_in <= MAX_EXPIRES_IN:
            raise AuthFailure(f"Credential response has an out-of-range expires_in: {expires_in}")

        token_type = payload.get("token_type", "bearer")
        if not isinstance(token_type, str) or not token_type:
            raise AuthFailure("Credential response has a malformed token_type")

        headers = {}
        for name in SESSION_HEADERS:
            value = response_headers.get(name)
            if value:
                headers[name] = value

        issued_at = datetime.now(timezone.utc)
        try:
            expires_at = issued_at + timedelta(seconds=expires_in)
        except (OverflowError, ValueError) as e:
            raise AuthFailure("Credential response has an unusable expires_in") from e

        return BearerCredential(
            access_token=access_token,
            token_type=token_type,
            expires_at=expires_at,
            issued_at=issued_at,
            headers=headers,
        )
