"""
Upstream credential resolution (OAuth2 client credentials with Basic fallback).
"""

import base64
import logging
import threading
import time
from typing import Callable, Optional

import requests

from airsentinel.exceptions import AuthFailed
from airsentinel.ingestion.metrics import TOKEN_REFRESHES

logger = logging.getLogger(__name__)


class CredentialProvider:
    """
    Resolves the Authorization header immediately before each upstream call.

    Order of preference:
    1. cached bearer token that is not within the refresh margin of expiry
    2. a freshly acquired bearer token
    3. static HTTP Basic credentials
    4. anonymous access (only when no credentials are configured at all)
    """

    def __init__(
        self,
        session: requests.Session,
        token_url: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        refresh_margin_s: float = 60.0,
        timeout_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self.refresh_margin_s = refresh_margin_s
        self.timeout_s = timeout_s
        self._clock = clock

        # OAuth2 token state
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0  # Unix timestamp when token expires
        self._lock = threading.Lock()

    @property
    def uses_bearer(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def has_basic(self) -> bool:
        return bool(self.username and self.password)

    def resolve(self) -> tuple[dict, Optional[str]]:
        """
        Get authorization headers for the next request.

        Returns:
            (headers, bearer_token_or_none)

        Raises:
            AuthFailed: token acquisition failed and no Basic fallback exists.
        """
        if self.uses_bearer:
            token = self._valid_token()
            if token:
                return {"Authorization": f"Bearer {token}"}, token
            if not self.has_basic:
                raise AuthFailed("Could not obtain OAuth2 token and no Basic credentials configured")
            logger.warning("OAuth2 token unavailable, falling back to Basic credentials")

        if self.has_basic:
            return {"Authorization": f"Basic {self._basic_token()}"}, None

        return {}, None

    def invalidate(self, token: Optional[str]) -> None:
        """Drop the cached token if it is still the one that was rejected."""
        with self._lock:
            if token is not None and self._access_token == token:
                self._access_token = None
                self._token_expires_at = 0

    def _basic_token(self) -> str:
        raw = f"{self.username}:{self.password}".encode()
        return base64.b64encode(raw).decode("ascii")

    def _valid_token(self) -> Optional[str]:
        """
        Ensure we have a valid (non-expired) token.
        Refreshes the token if it's expired or about to expire.
        """
        with self._lock:
            time_until_expiry = self._token_expires_at - self._clock()
            if self._access_token is not None and time_until_expiry > self.refresh_margin_s:
                return self._access_token

            if self._access_token is None:
                logger.info("No token available, obtaining new token...")
            else:
                logger.info(
                    f"Token expiring in {time_until_expiry:.0f}s, refreshing proactively..."
                )
            # Concurrent callers wait here for this refresh instead of issuing their own
            if self._refresh_token():
                return self._access_token
            return None

    def _refresh_token(self) -> bool:
        """
        Obtain a new OAuth2 access token using client credentials flow.
        Caller must hold self._lock.

        Returns:
            True if token was successfully obtained, False otherwise.
        """
        try:
            response = self.session.post(
                self.token_url,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret
                },
                timeout=self.timeout_s
            )
        except requests.exceptions.RequestException as e:
            TOKEN_REFRESHES.labels(status="error").inc()
            logger.error(f"Token refresh request failed: {e}")
            self._access_token = None
            return False

        if response.status_code != 200:
            TOKEN_REFRESHES.labels(status="failed").inc()
            logger.error(f"Failed to obtain OAuth2 token: HTTP {response.status_code}")
            self._access_token = None
            return False

        try:
            token_data = response.json()
            access_token = token_data["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            TOKEN_REFRESHES.labels(status="failed").inc()
            logger.error(f"Token response unreadable: {e}")
            self._access_token = None
            return False

        # Calculate expiry time (default 30 min = 1800 seconds)
        expires_in = token_data.get("expires_in", 1800)
        self._access_token = access_token
        self._token_expires_at = self._clock() + expires_in

        TOKEN_REFRESHES.labels(status="success").inc()
        logger.info(
            f"OAuth2 token obtained successfully. "
            f"Expires in {expires_in}s ({int(expires_in) // 60} min)"
        )
        return True
