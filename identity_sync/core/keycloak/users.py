"""Keycloak user management operations."""
from __future__ import annotations
import logging
from typing import List, Optional

from ..exceptions import ValidationError
from .client import KeycloakClient
from .exceptions import IdentityProviderError, UserAlreadyExistsError, UserNotFoundError

logger = logging.getLogger(__name__)

ORGANIZATION_ATTRIBUTE = "organization"


class UserService:
    """Service for managing Keycloak users."""

    def __init__(self, client: KeycloakClient):
        """Initialize user service.

        Args:
            client: Keycloak client bound to the target realm
        """
        self.client = client

    def find_by_username(self, username: str) -> Optional[dict]:
        """Return the user representation that exactly matches the username.

        Raises:
            ValidationError: If the IdP reports several exact matches
        """
        resp = self.client.get("/users", "find user", params={"username": username, "exact": "true"})
        matches = [user for user in resp.json() or [] if user.get("username") == username]
        if len(matches) > 1:
            raise ValidationError("username", f"Multiple users found with username '{username}'")
        return matches[0] if matches else None

    def find_by_email(self, email: str) -> Optional[dict]:
        """Return the first user whose email exactly matches."""
        resp = self.client.get("/users", "find user by email", params={"email": email, "exact": "true"})
        users = resp.json() or []
        return users[0] if users else None

    def resolve_user_id(self, username: str) -> Optional[str]:
        user = self.find_by_username(username)
        return user["id"] if user else None

    def get_user(self, user_id: str) -> dict:
        """Fetch a user by id.

        Raises:
            UserNotFoundError: If Keycloak answers 404
        """
        try:
            resp = self.client.get(f"/users/{user_id}", "get user")
        except IdentityProviderError as exc:
            if exc.status_code == 404:
                raise UserNotFoundError(user_id) from exc
            raise
        return resp.json()

    def list_users(self) -> List[dict]:
        resp = self.client.get("/users", "list users")
        return resp.json() or []

    def create_user(self, username: str, email: str, organization: str) -> None:
        """Create the identity. Keycloak does not return the new id.

        The account starts enabled with an unverified email; the temporary
        credential set afterwards forces a password change on first login.

        Raises:
            UserAlreadyExistsError: If Keycloak answers 409
        """
        payload = {
            "username": username,
            "email": email,
            "enabled": True,
            "emailVerified": False,
            "attributes": {ORGANIZATION_ATTRIBUTE: [organization]},
        }
        try:
            self.client.post("/users", "create user", json=payload)
        except IdentityProviderError as exc:
            if exc.status_code == 409:
                raise UserAlreadyExistsError(username) from exc
            raise
        logger.info("User '%s' created in Keycloak", username)

    def set_password(self, user_id: str, value: str, temporary: bool) -> None:
        self.client.put(
            f"/users/{user_id}/reset-password",
            "set password",
            json={"type": "password", "value": value, "temporary": temporary},
        )
        logger.info("%s password set for user %s", "Temporary" if temporary else "Permanent", user_id)

    def mark_email_verified(self, user_id: str) -> None:
        self.client.put(f"/users/{user_id}", "mark email verified", json={"emailVerified": True})
        logger.info("User %s marked as email verified", user_id)

    def delete_user(self, user_id: str) -> None:
        self.client.delete(f"/users/{user_id}", "delete user")
        logger.info("User %s deleted from Keycloak", user_id)


def organization_of(user: dict) -> str:
    """Extract the organization label from a user's free-form attributes."""
    values = (user.get("attributes") or {}).get(ORGANIZATION_ATTRIBUTE) or []
    return values[0] if values else ""
