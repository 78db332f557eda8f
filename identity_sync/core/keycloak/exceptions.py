"""Keycloak-specific exceptions for error handling."""
from __future__ import annotations

from typing import Optional

# Status codes the IdP returns for faults that may clear up on their own.
TRANSIENT_STATUS_CODES = frozenset({429})


class KeycloakError(Exception):
    """Base exception for all Keycloak operations."""
    pass


class IdentityProviderError(KeycloakError):
    """Failed call against the Keycloak Admin API.

    Attributes:
        operation: Human readable name of the admin operation (e.g. "create user")
        status_code: HTTP status code, or None when the request never got a
            response (connection refused, timeout)
        body: Response body or transport error message
    """

    def __init__(self, operation: str, status_code: Optional[int], body: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        if status_code is None:
            message = f"[{operation}] {body}"
        else:
            message = f"[{operation}] (HTTP {status_code}) {body}"
        super().__init__(message)

    @property
    def transient(self) -> bool:
        """True for 5xx, 429 and transport failures."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in TRANSIENT_STATUS_CODES


class UserNotFoundError(KeycloakError):
    """User lookup failed - username does not exist."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' not found")


class UserAlreadyExistsError(KeycloakError):
    """User creation refused - username already exists."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' already exists")


class RoleNotFoundError(KeycloakError):
    """Role does not exist in realm."""

    def __init__(self, role_name: str):
        self.role_name = role_name
        super().__init__(f"Role '{role_name}' does not exist")
