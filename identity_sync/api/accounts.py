"""Account administration routes (joiner / mover / leaver and reconciliation).

Domain exceptions propagate to ``errors.register_error_handlers``.
"""
from __future__ import annotations
import logging

from flask import Blueprint, current_app, jsonify, request

from identity_sync.core.accounts import AccountStatus
from identity_sync.core.exceptions import ValidationError
from identity_sync.core.provisioning_service import ProvisionRequest

logger = logging.getLogger(__name__)

bp = Blueprint("accounts", __name__)


def _container():
    return current_app.extensions["identity_sync"]


def _operator() -> str:
    return request.headers.get("X-Operator", "api")


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("body", "Request body must be a JSON object")
    return payload


# ─────────────────────────────────────────────────────────────────────────────
# Joiner / Leaver / Mover
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("", methods=["POST"])
def create_account():
    """Provision an identity. 201 with the local account row."""
    container = _container()
    provision_request = ProvisionRequest.from_payload(_json_body(), container.provisioning.assignable_roles)
    account = container.provisioning.create_user(provision_request, operator=_operator())
    response = jsonify({"username": provision_request.username, "account": account.to_dict()})
    response.status_code = 201
    response.headers["Location"] = f"{request.path.rstrip('/')}/{account.id}"
    return response


@bp.route("", methods=["GET"])
def list_accounts():
    role = request.args.get("role") or None
    return jsonify(_container().provisioning.list_users(role=role)), 200


@bp.route("/<username>", methods=["DELETE"])
def delete_account(username: str):
    _container().provisioning.delete_user(username, operator=_operator())
    return ("", 204)


@bp.route("/<user_id>/role", methods=["PUT"])
def change_role(user_id: str):
    payload = _json_body()
    roles = _container().provisioning.change_role(user_id, payload.get("role", ""), operator=_operator())
    return jsonify({"id": user_id, "roles": roles}), 200


# ─────────────────────────────────────────────────────────────────────────────
# Reconciliation
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/pending", methods=["GET"])
def pending_accounts():
    accounts = _container().reconciliation.list_accounts(AccountStatus.PENDING)
    return jsonify([account.to_dict() for account in accounts]), 200


@bp.route("/failed", methods=["GET"])
def failed_accounts():
    accounts = _container().reconciliation.list_accounts(AccountStatus.FAILED)
    return jsonify([account.to_dict() for account in accounts]), 200


@bp.route("/<user_id>/retry", methods=["POST"])
def retry_account(user_id: str):
    """Reset a Failed account and process it immediately; returns the resulting row."""
    account = _container().reconciliation.reset_failed(user_id, operator=_operator())
    return jsonify(account.to_dict()), 200
