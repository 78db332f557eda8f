"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and services.
"""
from __future__ import annotations
import logging
import uuid
from typing import Optional

from flask import Flask, g, request

from identity_sync.config import AppConfig, load_settings
from identity_sync.container import ServiceContainer, build_container
from identity_sync.logging_setup import CORRELATION_HEADER, configure_logging

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    cfg: Optional[AppConfig] = None,
    container: Optional[ServiceContainer] = None,
    *,
    start_scheduler: bool = True,
) -> Flask:
    """Create and configure Flask application."""
    if container is not None:
        cfg = container.settings
    cfg = cfg or load_settings()
    configure_logging(cfg.log_level)
    container = container or build_container(cfg)

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["DEMO_MODE"] = cfg.demo_mode
    app.extensions["identity_sync"] = container

    from identity_sync.api import accounts, activation, errors, health

    app.register_blueprint(health.bp)
    app.register_blueprint(accounts.bp, url_prefix="/api/accounts")
    app.register_blueprint(activation.bp, url_prefix="/api/auth")

    errors.register_error_handlers(app)
    _register_middleware(app)

    if start_scheduler:
        container.start_scheduler()

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    logger.info(
        "Application ready: mode=%s realm=%s reconciliation=%s",
        mode_label, cfg.keycloak_realm, "on" if cfg.reconcile_enabled else "off",
    )
    if cfg.demo_mode:
        logger.warning("Demo mode active - do not deploy with demo credentials")

    return app


def _register_middleware(app: Flask) -> None:
    """Correlation id in, correlation id out."""

    @app.before_request
    def assign_correlation_id() -> None:
        g.correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())

    @app.after_request
    def echo_correlation_id(response):
        correlation_id = g.get("correlation_id")
        if correlation_id:
            response.headers[CORRELATION_HEADER] = correlation_id
        return response


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000)
