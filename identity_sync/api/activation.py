"""Self-service account activation."""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from identity_sync.core.exceptions import ValidationError

bp = Blueprint("activation", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("body", "Request body must be a JSON object")
    return payload


@bp.route("/activate", methods=["POST"])
def activate():
    payload = _json_body()
    token = payload.get("token") or ""
    if not token:
        raise ValidationError("token", "Activation token is required")
    user_id = current_app.extensions["identity_sync"].activation.activate(token, payload.get("password", ""))
    return jsonify({"id": user_id, "activated": True}), 200


@bp.route("/resend-activation", methods=["POST"])
def resend_activation():
    """Always 202 for a well-formed address, whether or not it is registered."""
    payload = _json_body()
    current_app.extensions["identity_sync"].activation.resend(payload.get("email") or "")
    message = "If the address belongs to an account awaiting activation, a new link has been sent"
    return jsonify({"message": message}), 202
