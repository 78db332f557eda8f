"""Keycloak Admin API client library.

Architecture:
- sessions.py: Admin session cache (client-credentials token, shared)
- resilience.py: Transient fault classification and retry with backoff
- client.py: HTTP client for one realm; every call goes through the retry wrapper
- users.py: User lookups, creation, credentials, deletion
- roles.py: Realm role lookups and single-role replacement
- exceptions.py: Typed exceptions for error handling

Usage:
    from identity_sync.core.keycloak import AdminSessionCache, KeycloakClient, UserService

    sessions = AdminSessionCache("http://keycloak:8080", "demo", "automation-cli", secret)
    client = KeycloakClient("http://keycloak:8080", "demo", sessions)
    user = UserService(client).find_by_username("alice")
"""
from .client import KeycloakClient
from .exceptions import (
    KeycloakError,
    IdentityProviderError,
    UserNotFoundError,
    UserAlreadyExistsError,
    RoleNotFoundError,
)
from .resilience import RetryPolicy, call_with_retry, is_transient
from .roles import RoleService
from .sessions import AdminSession, AdminSessionCache, REQUEST_TIMEOUT
from .users import UserService, organization_of

__all__ = [
    "KeycloakClient",
    "AdminSession",
    "AdminSessionCache",
    "REQUEST_TIMEOUT",
    "RetryPolicy",
    "call_with_retry",
    "is_transient",
    "KeycloakError",
    "IdentityProviderError",
    "UserNotFoundError",
    "UserAlreadyExistsError",
    "RoleNotFoundError",
    "UserService",
    "RoleService",
    "organization_of",
]
