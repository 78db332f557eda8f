"""
Provisioning Service Layer: create, delete and re-role identities

Every identity lives in two stores: Keycloak (authoritative for login) and
the local account table. Keycloak's admin API is not transactional, so
multi-step operations run as sagas whose completed steps are compensated
when a later step fails.

Architecture:
    Admin API (/api/accounts/*) ──┐
                                  ├──> provisioning_service.py ──> core.keycloak ──> Keycloak
    CLI (scripts/provision.py) ───┘                          └──> AccountRepository

Failure semantics:
    - create: failure after the identity exists deletes it again and raises
      ProvisioningFailedError; if that delete fails too, both errors are logged,
      a reconciliation_required audit record is written and the original
      error is still raised.
    - delete: local row goes first; if Keycloak refuses the delete the row is
      restored and the Keycloak error is re-raised.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from scripts import audit

from .accounts import Account, AccountLocks, AccountRepository, AccountStatus
from .clock import SystemClock
from .exceptions import ProvisioningFailedError, ValidationError
from .keycloak import (
    IdentityProviderError,
    RoleService,
    UserAlreadyExistsError,
    UserNotFoundError,
    UserService,
    organization_of,
)
from .saga import Saga, SagaError
from .validators import (
    normalize_username,
    validate_email,
    validate_organization,
    validate_role,
    validate_temporary_password,
)

logger = logging.getLogger(__name__)

DEFAULT_ASSIGNABLE_ROLES = ("Admin", "Client", "Designer")

# Saga step names
STEP_CREATE_IDENTITY = "create identity"
STEP_SET_CREDENTIAL = "set temporary credential"
STEP_ASSIGN_ROLE = "assign role"
STEP_PERSIST_ACCOUNT = "persist account"
STEP_DELETE_ACCOUNT = "delete local account"
STEP_DELETE_IDENTITY = "delete identity"

# Failures in these steps happen before anything needs undoing.
_PRE_COMPENSATION_STEPS = {STEP_CREATE_IDENTITY}


@dataclass
class ProvisionRequest:
    """Validated input for ``ProvisioningService.create_user``."""
    username: str
    email: str
    organization: str
    temporary_password: str
    role: str
    defer_activation: bool = False

    @classmethod
    def from_payload(cls, payload: dict, assignable_roles: Iterable[str] = DEFAULT_ASSIGNABLE_ROLES) -> "ProvisionRequest":
        """Build a request from a JSON-like dict.

        Raises:
            ValidationError: On the first invalid field
        """
        if not isinstance(payload, dict):
            raise ValidationError("body", "Request body must be a JSON object")
        return cls(
            username=normalize_username(payload.get("username", "")),
            email=validate_email(payload.get("email", "")),
            organization=validate_organization(payload.get("organization", "")),
            temporary_password=validate_temporary_password(payload.get("temporary_password", "")),
            role=validate_role(payload.get("role", ""), assignable_roles),
            defer_activation=bool(payload.get("defer_activation", False)),
        )


class ProvisioningService:
    """Provisioning and deprovisioning sagas plus administrative role changes."""

    def __init__(
        self,
        users: UserService,
        roles: RoleService,
        accounts: AccountRepository,
        *,
        assignable_roles: Iterable[str] = DEFAULT_ASSIGNABLE_ROLES,
        realm: str = "demo",
        clock=None,
        locks: Optional[AccountLocks] = None,
    ):
        self.users = users
        self.roles = roles
        self.accounts = accounts
        self.assignable_roles = tuple(assignable_roles)
        self.realm = realm
        self.clock = clock or SystemClock()
        self.locks = locks or AccountLocks()

    # ─────────────────────────────────────────────────────────────────────
    # Provisioning saga
    # ─────────────────────────────────────────────────────────────────────
    def create_user(self, request: ProvisionRequest, operator: str = "system") -> Account:
        """Create the identity, its credential and role, then the local row.

        Raises:
            UserAlreadyExistsError: If the username is taken
            IdentityProviderError: If creating or re-resolving the identity fails
            ProvisioningFailedError: If a later step fails (identity compensated)
        """
        username = request.username
        logger.info("Provisioning user '%s' with role '%s'", username, request.role)

        if self.users.find_by_username(username) is not None:
            raise UserAlreadyExistsError(username)

        saga = Saga(f"provision {username}")
        saga.step(STEP_CREATE_IDENTITY, self._create_identity(request), compensation=self._delete_created_identity)
        saga.step(
            STEP_SET_CREDENTIAL,
            lambda ctx: self.users.set_password(ctx["user_id"], request.temporary_password, temporary=True),
        )
        saga.step(STEP_ASSIGN_ROLE, lambda ctx: self.roles.replace_role(ctx["user_id"], request.role))
        saga.step(STEP_PERSIST_ACCOUNT, lambda ctx: self.accounts.create(self._new_account(ctx["user_id"], request)))

        try:
            context = saga.execute({"username": username})
        except SagaError as exc:
            self._report_saga_failure("joiner", username, exc, operator)
            if exc.step in _PRE_COMPENSATION_STEPS:
                raise exc.cause
            raise ProvisioningFailedError(username, exc.cause) from exc.cause

        account = context[STEP_PERSIST_ACCOUNT]
        logger.info("User '%s' provisioned (id=%s, status=%s)", username, account.id, account.status.value)
        audit.safe_log_event(
            "joiner",
            username,
            operator=operator,
            realm=self.realm,
            details={"user_id": account.id, "role": request.role, "status": account.status.value},
        )
        return account

    def _create_identity(self, request: ProvisionRequest):
        username = request.username

        # Keycloak does not return the id on create; it is re-resolved by username
        def _create(ctx: dict) -> str:
            self.users.create_user(username, request.email, request.organization)
            user_id = self.users.resolve_user_id(username)
            if user_id is None:
                raise IdentityProviderError("resolve created user", None, f"user '{username}' not found after creation")
            ctx["user_id"] = user_id
            logger.info("User '%s' created in Keycloak with id %s", username, user_id)
            return user_id
        return _create

    def _delete_created_identity(self, ctx: dict) -> None:
        self.users.delete_user(ctx["user_id"])
        logger.info("Rollback: user %s deleted from Keycloak", ctx["user_id"])

    def _new_account(self, user_id: str, request: ProvisionRequest) -> Account:
        status = AccountStatus.PENDING if request.defer_activation else AccountStatus.ACTIVE
        return Account(id=user_id, registered_at=self.clock.now(), status=status, attempts=0)

    # ─────────────────────────────────────────────────────────────────────
    # Deprovisioning saga
    # ─────────────────────────────────────────────────────────────────────
    def delete_user(self, username: str, operator: str = "system") -> str:
        """Delete the local row then the identity; restore the row if Keycloak refuses.

        Returns:
            The deleted identity id

        Raises:
            UserNotFoundError: If no identity has this username
            IdentityProviderError: If Keycloak deletion fails (local row restored)
        """
        logger.info("Deprovisioning user '%s'", username)
        user_id = self.users.resolve_user_id(username)
        if user_id is None:
            raise UserNotFoundError(username)

        def _delete_local(ctx: dict) -> Optional[Account]:
            with self.locks.writes:
                ctx["snapshot"] = self.accounts.find_by_id(user_id)
                self.accounts.delete_by_id(user_id)
            return ctx["snapshot"]

        def _restore_local(ctx: dict) -> None:
            snapshot = ctx.get("snapshot")
            if snapshot is not None:
                with self.locks.writes:
                    self.accounts.save(snapshot)
                logger.info("Local account %s restored after failed Keycloak delete", user_id)

        saga = Saga(f"deprovision {username}")
        saga.step(STEP_DELETE_ACCOUNT, _delete_local, compensation=_restore_local)
        saga.step(STEP_DELETE_IDENTITY, lambda ctx: self.users.delete_user(user_id))

        try:
            saga.execute({"username": username, "user_id": user_id})
        except SagaError as exc:
            self._report_saga_failure("leaver", username, exc, operator, user_id=user_id)
            raise exc.cause

        audit.safe_log_event(
            "leaver",
            username,
            operator=operator,
            realm=self.realm,
            details={"user_id": user_id, "action": "deleted"},
        )
        return user_id

    # ─────────────────────────────────────────────────────────────────────
    # Administrative operations
    # ─────────────────────────────────────────────────────────────────────
    def change_role(self, user_id: str, role: str, operator: str = "system") -> List[str]:
        """Replace the user's application role.

        Returns:
            The user's role names after the change

        Raises:
            ValidationError: If the role is not assignable
            UserNotFoundError: If the identity does not exist
            RoleNotFoundError: If the realm has no such role
        """
        role = validate_role(role, self.assignable_roles)
        user = self.users.get_user(user_id)
        self.roles.replace_role(user_id, role)
        audit.safe_log_event(
            "mover",
            user.get("username", user_id),
            operator=operator,
            realm=self.realm,
            details={"user_id": user_id, "target_role": role},
        )
        return [role]

    def list_users(self, role: Optional[str] = None) -> List[dict[str, Any]]:
        """Summaries of every identity in the realm, optionally filtered by role."""
        summaries = []
        for user in self.users.list_users():
            user_id = user.get("id")
            role_names = self.roles.role_names(user_id)
            if role is not None and role not in role_names:
                continue
            account = self.accounts.find_by_id(user_id)
            summaries.append({
                "id": user_id,
                "username": user.get("username"),
                "email": user.get("email"),
                "organization": organization_of(user),
                "roles": role_names,
                "status": account.status.value if account else None,
            })
        return summaries

    # ─────────────────────────────────────────────────────────────────────
    # Failure reporting
    # ─────────────────────────────────────────────────────────────────────
    def _report_saga_failure(
        self,
        event_type: str,
        username: str,
        exc: SagaError,
        operator: str,
        user_id: Optional[str] = None,
    ) -> None:
        user_id = user_id or exc.context.get("user_id")
        logger.error("%s failed at step '%s': %s", exc.saga, exc.step, exc.cause)
        audit.safe_log_event(
            event_type,
            username,
            operator=operator,
            realm=self.realm,
            details={"user_id": user_id, "step": exc.step, "error": str(exc.cause)},
            success=False,
        )
        for step, comp_exc in exc.compensation_errors:
            logger.error(
                "Stores inconsistent for '%s': compensation of '%s' failed (%s) after: %s",
                username, step, comp_exc, exc.cause,
            )
            audit.safe_log_event(
                "reconciliation_required",
                username,
                operator=operator,
                realm=self.realm,
                details={
                    "user_id": user_id,
                    "saga": exc.saga,
                    "failed_step": exc.step,
                    "compensation_step": step,
                    "original_error": str(exc.cause),
                    "compensation_error": str(comp_exc),
                },
                success=False,
            )
