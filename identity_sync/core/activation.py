"""Account activation by the end user: activation token plus a new password."""
from __future__ import annotations
import logging
from typing import Optional

import jwt

from scripts import audit

from .exceptions import InvalidAccountStateError, ValidationError
from .keycloak import UserService
from .notifications import ActivationTokenIssuer, LoggingNotificationSender, NotificationError, NotificationSender
from .validators import validate_email, validate_temporary_password

logger = logging.getLogger(__name__)


class ActivationService:
    """Verifies activation tokens, finalizes the identity in Keycloak and re-sends links."""

    def __init__(
        self,
        users: UserService,
        issuer: ActivationTokenIssuer,
        realm: str = "demo",
        sender: Optional[NotificationSender] = None,
    ):
        self.users = users
        self.issuer = issuer
        self.realm = realm
        self.sender = sender or LoggingNotificationSender()

    def activate(self, token: str, new_password: str) -> str:
        """Mark the email verified and replace the temporary credential.

        Returns:
            The activated user id

        Raises:
            ValidationError: If the token is invalid/expired or the password is rejected
            UserNotFoundError: If the identity no longer exists
            InvalidAccountStateError: If the account was already activated
        """
        password = validate_temporary_password(new_password)
        try:
            claims = self.issuer.verify(token)
        except jwt.ExpiredSignatureError as exc:
            raise ValidationError("token", "Activation link has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise ValidationError("token", "Invalid activation token") from exc

        user_id = claims["sub"]
        user = self.users.get_user(user_id)
        if user.get("emailVerified"):
            raise InvalidAccountStateError(user_id, "activated", "awaiting activation")

        self.users.mark_email_verified(user_id)
        self.users.set_password(user_id, password, temporary=False)
        logger.info("User %s activated their account", user_id)
        audit.safe_log_event(
            "activation",
            user.get("username", user_id),
            operator="self-service",
            realm=self.realm,
            details={"user_id": user_id, "action": "password_set"},
        )
        return user_id

    def resend(self, email: str) -> bool:
        """Send a fresh activation link to an identity that has not activated yet.

        Unknown addresses and delivery failures are only logged so the caller
        cannot tell which emails are registered.

        Returns:
            True if a link was sent

        Raises:
            ValidationError: If the email is malformed
            InvalidAccountStateError: If the account was already activated
        """
        email = validate_email(email)
        user = self.users.find_by_email(email)
        if user is None:
            logger.warning("Activation resend requested for unknown email %s", email)
            return False

        user_id = user["id"]
        if user.get("emailVerified"):
            raise InvalidAccountStateError(user_id, "activated", "awaiting activation")

        token = self.issuer.issue(user_id, email)
        try:
            self.sender.send_activation(email, user.get("username", user_id), token)
        except NotificationError as exc:
            logger.error("Could not resend activation link to %s: %s", email, exc)
            return False

        logger.info("Activation link re-sent to user %s", user_id)
        audit.safe_log_event(
            "activation_resent",
            user.get("username", user_id),
            operator="self-service",
            realm=self.realm,
            details={"user_id": user_id},
        )
        return True
