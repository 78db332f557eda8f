"""Tests for the application factory, middleware and error handlers."""
import logging

from identity_sync.api import errors
from identity_sync.core.keycloak import IdentityProviderError
from identity_sync.flask_app import create_app
from identity_sync.logging_setup import CorrelationIdFilter, configure_logging


def test_health_and_ready(client):
    assert client.get("/health").data == b"ok"
    ready = client.get("/ready")
    assert ready.status_code == 200
    assert ready.data == b"ready (scheduler stopped)"


def test_correlation_id_echoed(client):
    response = client.get("/health", headers={"X-Correlation-Id": "abc-123"})
    assert response.headers["X-Correlation-Id"] == "abc-123"


def test_correlation_id_generated(client):
    response = client.get("/health")
    assert len(response.headers["X-Correlation-Id"]) == 36


def test_error_body_carries_correlation_id(client):
    response = client.delete("/api/accounts/nobody", headers={"X-Correlation-Id": "req-7"})
    assert response.get_json()["correlation_id"] == "req-7"


def test_unknown_route_is_json(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.get_json()["path"] == "/nope"


def test_unexpected_error_is_500(app, client, container, monkeypatch):
    def boom(role=None):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(container.provisioning, "list_users", boom)

    response = client.get("/api/accounts")

    assert response.status_code == 500
    assert "secret internals" not in response.get_json()["message"]


def test_status_mapping():
    assert errors.status_for(IdentityProviderError("op", 503))[0] == 502
    assert errors.status_for(KeyError("x"))[0] == 500


def test_scheduler_started_when_enabled(app_config, fake_idp, clock, sleeps, sender):
    from identity_sync.container import build_container

    app_config.reconcile_enabled = True
    app_config.reconcile_interval_seconds = 3600
    container = build_container(app_config, http=fake_idp, clock=clock, sleep=sleeps, notifier=sender)
    try:
        create_app(container=container)
        assert container.scheduler.running
    finally:
        container.shutdown()
    assert not container.scheduler.running


def test_configure_logging_is_idempotent(monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "level", root.level)

    configure_logging("DEBUG")
    configure_logging("INFO")

    handlers = [h for h in root.handlers if h.get_name() == "identity-sync"]
    assert len(handlers) == 1
    assert root.level == logging.INFO


def test_correlation_filter_outside_request():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    assert CorrelationIdFilter().filter(record)
    assert record.correlation_id == "-"
