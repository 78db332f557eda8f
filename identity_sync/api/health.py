"""Health check endpoints."""
from flask import Blueprint, current_app

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Ready once services are wired; reports whether the scheduler is running."""
    container = current_app.extensions.get("identity_sync")
    if container is None:
        return ("not ready", 503, {"Content-Type": "text/plain"})
    scheduler = "running" if container.scheduler.running else "stopped"
    return (f"ready (scheduler {scheduler})", 200, {"Content-Type": "text/plain"})
