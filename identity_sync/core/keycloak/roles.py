"""Keycloak realm role operations."""
from __future__ import annotations
import logging
from typing import Iterable, List, Optional

from .client import KeycloakClient
from .exceptions import IdentityProviderError, RoleNotFoundError

logger = logging.getLogger(__name__)


class RoleService:
    """Service for reading and replacing a user's realm roles.

    An identity carries at most one application role from ``catalog``.
    """

    def __init__(self, client: KeycloakClient, catalog: Optional[Iterable[str]] = None):
        """Initialize role service.

        Args:
            client: Keycloak client bound to the target realm
            catalog: Closed set of application role names; None disables the check
        """
        self.client = client
        self.catalog = frozenset(catalog) if catalog is not None else None

    def list_user_roles(self, user_id: str) -> List[dict]:
        resp = self.client.get(f"/users/{user_id}/role-mappings/realm", "list user roles")
        return resp.json() or []

    def role_names(self, user_id: str) -> List[str]:
        return [role.get("name") for role in self.list_user_roles(user_id)]

    def get_role(self, role_name: str) -> dict:
        """Return the canonical role representation.

        Raises:
            RoleNotFoundError: If the realm has no such role
        """
        try:
            resp = self.client.get(f"/roles/{role_name}", "get role")
        except IdentityProviderError as exc:
            if exc.status_code == 404:
                raise RoleNotFoundError(role_name) from exc
            raise
        role = resp.json()
        if not role:
            raise RoleNotFoundError(role_name)
        return role

    def add_user_roles(self, user_id: str, roles: List[dict]) -> None:
        self.client.post(f"/users/{user_id}/role-mappings/realm", "add user roles", json=roles)

    def remove_user_roles(self, user_id: str, roles: List[dict]) -> None:
        self.client.delete(f"/users/{user_id}/role-mappings/realm", "remove user roles", json=roles)

    def replace_role(self, user_id: str, role_name: str) -> None:
        """Leave the user with exactly ``role_name`` as realm role.

        Removes every current mapping in one call, then adds the target.
        Not atomic: a failure between the two calls leaves the user with
        no roles at all and nothing here repairs it.

        Raises:
            RoleNotFoundError: If the role is outside the catalog or unknown to the realm
            IdentityProviderError: On any admin API fault
        """
        if self.catalog is not None and role_name not in self.catalog:
            raise RoleNotFoundError(role_name)

        current = self.list_user_roles(user_id)
        if current:
            self.remove_user_roles(user_id, current)
            logger.debug("Removed %d role(s) from user %s", len(current), user_id)

        role = self.get_role(role_name)
        self.add_user_roles(user_id, [role])
        logger.info("Role '%s' assigned to user %s", role_name, user_id)
