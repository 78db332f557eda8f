"""Admin session cache for the Keycloak Admin API.

A single ``AdminSessionCache`` is constructed at startup and shared by
reference with every component that talks to Keycloak. Concurrent cache
misses are serialized on one lock, so only one token request is in flight.
"""
from __future__ import annotations
import datetime
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import requests

from ..clock import SystemClock
from .exceptions import IdentityProviderError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5
SAFETY_MARGIN_SECONDS = 10


@dataclass(frozen=True)
class AdminSession:
    """Bearer credential for the admin API. Replaced wholesale on refresh."""
    token: str
    expires_at: datetime.datetime

    def is_valid(self, now: datetime.datetime, margin: datetime.timedelta) -> bool:
        return self.expires_at - margin > now


class AdminSessionCache:
    """Acquires and caches a client-credentials token for the admin API.

    Usage:
        cache = AdminSessionCache("http://keycloak:8080", "demo", "automation-cli", secret)
        token = cache.get_token()
    """

    def __init__(
        self,
        base_url: str,
        auth_realm: str,
        client_id: str,
        client_secret: str,
        *,
        http: Optional[requests.Session] = None,
        clock=None,
        safety_margin_seconds: float = SAFETY_MARGIN_SECONDS,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_realm = auth_realm
        self.client_id = client_id
        self._client_secret = client_secret
        self.http = http or requests.Session()
        self.clock = clock or SystemClock()
        self.margin = datetime.timedelta(seconds=safety_margin_seconds)
        self.timeout = timeout
        self._session: Optional[AdminSession] = None
        self._lock = threading.Lock()

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/realms/{self.auth_realm}/protocol/openid-connect/token"

    def get_token(self) -> str:
        """Return a valid bearer token, fetching a new one on a cache miss.

        Raises:
            IdentityProviderError: If the token request fails (no retry here)
        """
        with self._lock:
            session = self._session
            if session is not None and session.is_valid(self.clock.now(), self.margin):
                return session.token
            self._session = self._request_session()
            return self._session.token

    def invalidate(self) -> None:
        """Drop the cached session so the next call fetches a fresh token."""
        with self._lock:
            self._session = None

    def _request_session(self) -> AdminSession:
        logger.info("Requesting admin token for client '%s'", self.client_id)
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        try:
            resp = self.http.request("POST", self.token_url, data=data, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise IdentityProviderError("obtain admin token", None, str(exc)) from exc

        if resp.status_code != 200:
            raise IdentityProviderError("obtain admin token", resp.status_code, resp.text)

        payload = resp.json()
        token = payload.get("access_token")
        if not token:
            raise IdentityProviderError("obtain admin token", resp.status_code, "response carried no access_token")

        expires_in = int(payload.get("expires_in", 60))
        expires_at = self.clock.now() + datetime.timedelta(seconds=expires_in)
        logger.info("Admin token obtained (valid for %d seconds)", expires_in)
        return AdminSession(token=token, expires_at=expires_at)
