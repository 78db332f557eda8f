"""Activation notifications: signed activation tokens and their delivery by email."""
from __future__ import annotations
import datetime
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

import jwt

from .clock import SystemClock

logger = logging.getLogger(__name__)

ACTIVATION_PURPOSE = "activation"


class NotificationError(Exception):
    """Delivery of a notification failed."""

    def __init__(self, recipient: str, message: str):
        self.recipient = recipient
        super().__init__(f"Failed to send email to '{recipient}': {message}")


class ActivationTokenIssuer:
    """Issues and verifies HS256 activation tokens."""

    def __init__(self, secret: str, ttl_hours: int = 24, clock=None):
        self._secret = secret
        self.ttl = datetime.timedelta(hours=ttl_hours)
        self.clock = clock or SystemClock()

    def issue(self, user_id: str, email: str) -> str:
        now = self.clock.now()
        claims = {
            "sub": user_id,
            "email": email,
            "purpose": ACTIVATION_PURPOSE,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm="HS256")

    def verify(self, token: str) -> dict:
        """Return the claims of a valid activation token.

        Raises:
            jwt.InvalidTokenError: If the token is expired, tampered or not an activation token
        """
        claims = jwt.decode(
            token,
            self._secret,
            algorithms=["HS256"],
            options={"require": ["sub", "exp"]},
        )
        if claims.get("purpose") != ACTIVATION_PURPOSE:
            raise jwt.InvalidTokenError("Not an activation token")
        return claims


def activation_link(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/activate?token={token}"


class NotificationSender:
    """Delivery contract used by the reconciliation scheduler."""

    def send_activation(self, recipient: str, username: str, token: str) -> None:
        raise NotImplementedError


class LoggingNotificationSender(NotificationSender):
    """Stand-in used when no SMTP server is configured."""

    def __init__(self, frontend_url: str = "http://localhost:3000"):
        self.frontend_url = frontend_url

    def send_activation(self, recipient: str, username: str, token: str) -> None:
        logger.info(
            "SMTP not configured; activation link for '%s' <%s>: %s",
            username, recipient, activation_link(self.frontend_url, token),
        )


class SmtpNotificationSender(NotificationSender):
    """Sends activation emails through an SMTP relay (STARTTLS + login when configured)."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        frontend_url: str = "http://localhost:3000",
        use_tls: bool = True,
        timeout: float = 10,
    ):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.sender = sender or username or "no-reply@localhost"
        self.frontend_url = frontend_url
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, recipient: str, username: str, token: str) -> EmailMessage:
        link = activation_link(self.frontend_url, token)
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = "Activate your account"
        message.set_content(
            f"Hello {username},\n\n"
            f"Activate your account and choose a password here:\n{link}\n\n"
            "This link expires in 24 hours.\n"
        )
        message.add_alternative(
            f"<html><body><h2>Hello {username},</h2>"
            f"<p><a href=\"{link}\">Activate account</a></p>"
            f"<p>Or paste this link in your browser: {link}</p>"
            "<p>This link expires in 24 hours.</p></body></html>",
            subtype="html",
        )
        return message

    def send_activation(self, recipient: str, username: str, token: str) -> None:
        message = self.build_message(recipient, username, token)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self._password:
                    server.login(self.username, self._password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(recipient, str(exc)) from exc
        logger.info("Activation email sent to %s", recipient)
