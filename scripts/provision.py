#!/usr/bin/env python3
"""Operator CLI for provisioning, deprovisioning and reconciliation.

Examples:
    python -m scripts.provision create --username alice --email alice@example.com \\
        --organization Acme --role Designer --temp-password 'Temp123!'
    python -m scripts.provision change-role --user-id <id> --role Client
    python -m scripts.provision failed
    python -m scripts.provision retry --user-id <id>
    python -m scripts.provision resend-activation --email alice@example.com
"""
from __future__ import annotations
import argparse
import json
import sys
from typing import Optional, Sequence

from identity_sync.core.accounts import AccountStatus
from identity_sync.core.exceptions import (
    AccountNotFoundError,
    InvalidAccountStateError,
    ProvisioningFailedError,
    ValidationError,
)
from identity_sync.core.keycloak import KeycloakError
from identity_sync.core.provisioning_service import ProvisionRequest

# Errors reported as a one-line message with exit code 1
OPERATOR_ERRORS = (
    ValidationError,
    KeycloakError,
    ProvisioningFailedError,
    AccountNotFoundError,
    InvalidAccountStateError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keycloak identity provisioning helper")
    parser.add_argument("--operator", default="cli", help="Operator name recorded in the audit trail")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sc = sub.add_parser("create", help="Provision a new identity")
    sc.add_argument("--username", required=True)
    sc.add_argument("--email", required=True)
    sc.add_argument("--organization", required=True)
    sc.add_argument("--role", required=True)
    sc.add_argument("--temp-password", required=True)
    sc.add_argument("--defer-activation", action="store_true", help="Create Pending; the scheduler activates it")

    sd = sub.add_parser("delete", help="Deprovision an identity")
    sd.add_argument("--username", required=True)

    sr = sub.add_parser("change-role", help="Replace the application role of an identity")
    sr.add_argument("--user-id", required=True)
    sr.add_argument("--role", required=True)

    sl = sub.add_parser("list", help="List identities with roles")
    sl.add_argument("--role", default=None)

    sub.add_parser("pending", help="List Pending accounts")
    sub.add_parser("failed", help="List Failed accounts")
    sub.add_parser("reconcile", help="Run one reconciliation scan")

    st = sub.add_parser("retry", help="Reset a Failed account and process it now")
    st.add_argument("--user-id", required=True)

    sa = sub.add_parser("activate", help="Activate an account with its activation token")
    sa.add_argument("--token", required=True)
    sa.add_argument("--password", required=True)

    se = sub.add_parser("resend-activation", help="Send a new activation link to an email address")
    se.add_argument("--email", required=True)

    sub.add_parser("run-scheduler", help="Run the reconciliation scheduler in the foreground")
    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def run(args: argparse.Namespace, container) -> int:
    if args.cmd == "create":
        request = ProvisionRequest.from_payload(
            {
                "username": args.username,
                "email": args.email,
                "organization": args.organization,
                "role": args.role,
                "temporary_password": args.temp_password,
                "defer_activation": args.defer_activation,
            },
            container.provisioning.assignable_roles,
        )
        account = container.provisioning.create_user(request, operator=args.operator)
        print(f"[create] {request.username} provisioned (id={account.id}, status={account.status.value})")
    elif args.cmd == "delete":
        user_id = container.provisioning.delete_user(args.username, operator=args.operator)
        print(f"[delete] {args.username} removed (id={user_id})")
    elif args.cmd == "change-role":
        roles = container.provisioning.change_role(args.user_id, args.role, operator=args.operator)
        print(f"[change-role] {args.user_id} now has roles {roles}")
    elif args.cmd == "list":
        _print_json(container.provisioning.list_users(role=args.role))
    elif args.cmd in {"pending", "failed"}:
        status = AccountStatus.PENDING if args.cmd == "pending" else AccountStatus.FAILED
        _print_json([account.to_dict() for account in container.reconciliation.list_accounts(status)])
    elif args.cmd == "reconcile":
        result = container.reconciliation.scan()
        print(
            f"[reconcile] pending={result.pending} processed={result.processed} "
            f"activated={result.activated} failed={result.failed} deferred={result.deferred}"
        )
    elif args.cmd == "retry":
        account = container.reconciliation.reset_failed(args.user_id, operator=args.operator)
        print(f"[retry] {account.id} is now {account.status.value} (attempts={account.attempts})")
    elif args.cmd == "activate":
        user_id = container.activation.activate(args.token, args.password)
        print(f"[activate] {user_id} activated")
    elif args.cmd == "resend-activation":
        if container.activation.resend(args.email):
            print(f"[resend-activation] Activation link sent to {args.email}")
        else:
            print(f"[resend-activation] No link sent to {args.email} (unknown address or delivery failed)")
    elif args.cmd == "run-scheduler":
        container.scheduler.start()
        try:
            while container.scheduler.running:
                container.scheduler.join(timeout=1.0)
        except KeyboardInterrupt:
            print("[run-scheduler] Stopping...")
        finally:
            container.shutdown()
    return 0


def main(argv: Optional[Sequence[str]] = None, container=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if container is None:
        from identity_sync.config import load_settings
        from identity_sync.container import build_container
        from identity_sync.logging_setup import configure_logging

        cfg = load_settings()
        configure_logging(args.log_level or cfg.log_level)
        container = build_container(cfg)

    try:
        return run(args, container)
    except OPERATOR_ERRORS as exc:
        print(f"[{args.cmd}] Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
