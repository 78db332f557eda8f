"""Tests for activation tokens and email delivery."""
import smtplib
from unittest.mock import MagicMock

import jwt
import pytest

from identity_sync.core import notifications
from identity_sync.core.clock import FrozenClock, SystemClock
from identity_sync.core.notifications import (
    ActivationTokenIssuer,
    LoggingNotificationSender,
    NotificationError,
    SmtpNotificationSender,
    activation_link,
)


def test_token_round_trip_claims():
    issuer = ActivationTokenIssuer("secret", ttl_hours=24)
    claims = issuer.verify(issuer.issue("user-1", "alice@example.com"))

    assert claims["sub"] == "user-1"
    assert claims["email"] == "alice@example.com"
    assert claims["purpose"] == "activation"
    assert claims["exp"] - claims["iat"] == 24 * 3600


def test_expired_token_rejected():
    issued_at = FrozenClock()
    token = ActivationTokenIssuer("secret", ttl_hours=1, clock=issued_at).issue("user-1", "a@example.com")

    with pytest.raises(jwt.ExpiredSignatureError):
        ActivationTokenIssuer("secret", clock=SystemClock()).verify(token)


def test_token_signed_with_other_secret_rejected():
    token = ActivationTokenIssuer("other").issue("user-1", "a@example.com")
    with pytest.raises(jwt.InvalidTokenError):
        ActivationTokenIssuer("secret").verify(token)


def test_token_with_wrong_purpose_rejected():
    token = jwt.encode({"sub": "user-1", "exp": 4102444800, "purpose": "login"}, "secret", algorithm="HS256")
    with pytest.raises(jwt.InvalidTokenError):
        ActivationTokenIssuer("secret").verify(token)


def test_activation_link():
    assert activation_link("https://app.example.com/", "abc") == "https://app.example.com/activate?token=abc"


def test_logging_sender_logs_link(caplog):
    caplog.set_level("INFO", logger=notifications.logger.name)
    LoggingNotificationSender("https://app").send_activation("a@example.com", "alice", "tok")
    assert "https://app/activate?token=tok" in caplog.text


def test_build_message_has_text_and_html():
    sender = SmtpNotificationSender("smtp.test", sender="noreply@example.com", frontend_url="https://app")
    message = sender.build_message("alice@example.com", "alice", "tok")

    assert message["To"] == "alice@example.com"
    assert message["From"] == "noreply@example.com"
    assert message.get_body(("plain",)).get_content().count("https://app/activate?token=tok") == 1
    assert "href=\"https://app/activate?token=tok\"" in message.get_body(("html",)).get_content()


def test_smtp_send_uses_starttls_and_login(monkeypatch):
    server = MagicMock()
    smtp_factory = MagicMock()
    smtp_factory.return_value.__enter__.return_value = server
    monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_factory)

    sender = SmtpNotificationSender("smtp.test", 2525, username="bot", password="pw")
    sender.send_activation("alice@example.com", "alice", "tok")

    smtp_factory.assert_called_once_with("smtp.test", 2525, timeout=10)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot", "pw")
    server.send_message.assert_called_once()


def test_smtp_failure_raises_notification_error(monkeypatch):
    smtp_factory = MagicMock(side_effect=smtplib.SMTPConnectError(421, "down"))
    monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_factory)

    with pytest.raises(NotificationError) as exc:
        SmtpNotificationSender("smtp.test").send_activation("alice@example.com", "alice", "tok")
    assert exc.value.recipient == "alice@example.com"
