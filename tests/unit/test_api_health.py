"""Tests for health check endpoints."""
import pytest
from flask import Flask

from identity_sync.api.health import bp as health_bp


@pytest.fixture()
def bare_client():
    app = Flask(__name__)
    app.register_blueprint(health_bp)
    with app.test_client() as client:
        yield client


def test_health_check(bare_client):
    response = bare_client.get("/health")
    assert response.status_code == 200
    assert response.data == b"ok"
    assert response.content_type.startswith("text/plain")


def test_not_ready_without_services(bare_client):
    response = bare_client.get("/ready")
    assert response.status_code == 503
    assert response.data == b"not ready"


def test_ready_reports_scheduler_state(client, container):
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.data == b"ready (scheduler stopped)"
    assert response.content_type.startswith("text/plain")
