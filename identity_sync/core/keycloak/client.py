"""Low-level HTTP client for Keycloak Admin API.

Every call carries the cached admin bearer token and goes through the
retry wrapper, so transient faults are absorbed here and callers only
ever see ``IdentityProviderError`` for faults that survived the retries.
"""
from __future__ import annotations
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from .exceptions import IdentityProviderError
from .resilience import RetryPolicy, call_with_retry
from .sessions import REQUEST_TIMEOUT, AdminSessionCache

logger = logging.getLogger(__name__)


class KeycloakClient:
    """HTTP client for the admin API of a single realm.

    Usage:
        sessions = AdminSessionCache("http://keycloak:8080", "demo", "automation-cli", secret)
        client = KeycloakClient("http://keycloak:8080", "demo", sessions)
        users = client.get("/users", "find user", params={"username": "alice"}).json()
    """

    def __init__(
        self,
        base_url: str,
        realm: str,
        sessions: AdminSessionCache,
        *,
        http: Optional[requests.Session] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = REQUEST_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.realm = realm
        self.sessions = sessions
        self.http = http or sessions.http
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep

    @property
    def admin_root(self) -> str:
        return f"{self.base_url}/admin/realms/{self.realm}"

    def request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> requests.Response:
        """Execute one admin API call with retry on transient faults.

        Args:
            method: HTTP verb
            path: Path relative to the realm admin root (e.g. "/users")
            operation: Operation name reported in logs and errors
            params: Query parameters
            json: JSON payload

        Raises:
            IdentityProviderError: On a permanent fault or exhausted retries
        """
        url = f"{self.admin_root}{path}"

        def _send() -> requests.Response:
            headers = {"Authorization": f"Bearer {self.sessions.get_token()}"}
            logger.debug("%s %s", method, url)
            resp = self.http.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
            self._handle_error(operation, resp)
            return resp

        return call_with_retry(operation, _send, self.retry_policy, sleep=self._sleep)

    def get(self, path: str, operation: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.request("GET", path, operation, params=params)

    def post(self, path: str, operation: str, json: Any = None) -> requests.Response:
        return self.request("POST", path, operation, json=json)

    def put(self, path: str, operation: str, json: Any = None) -> requests.Response:
        return self.request("PUT", path, operation, json=json)

    def delete(self, path: str, operation: str, json: Any = None) -> requests.Response:
        return self.request("DELETE", path, operation, json=json)

    def _handle_error(self, operation: str, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            IdentityProviderError: If response status indicates error
        """
        if resp.status_code < 400:
            return
        if resp.status_code == 401:
            # Token revoked or expired early; force a fresh one on the next call.
            self.sessions.invalidate()
        raise IdentityProviderError(operation, resp.status_code, resp.text)
