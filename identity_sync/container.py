"""Dependency container wiring the Keycloak client, services and scheduler."""

from __future__ import annotations

import datetime
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from scripts import audit

from identity_sync.config import AppConfig, load_settings
from identity_sync.core.accounts import AccountLocks, AccountRepository, InMemoryAccountRepository
from identity_sync.core.activation import ActivationService
from identity_sync.core.clock import SystemClock
from identity_sync.core.keycloak import (
    AdminSessionCache,
    KeycloakClient,
    RetryPolicy,
    RoleService,
    UserService,
)
from identity_sync.core.notifications import (
    ActivationTokenIssuer,
    LoggingNotificationSender,
    NotificationSender,
    SmtpNotificationSender,
)
from identity_sync.core.provisioning_service import ProvisioningService
from identity_sync.core.reconciliation import ReconciliationScheduler, ReconciliationService
from identity_sync.core.sql_accounts import SqlAccountRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: AppConfig
    sessions: AdminSessionCache
    client: KeycloakClient
    users: UserService
    roles: RoleService
    accounts: AccountRepository
    notifier: NotificationSender
    token_issuer: ActivationTokenIssuer
    provisioning: ProvisioningService
    reconciliation: ReconciliationService
    activation: ActivationService
    scheduler: ReconciliationScheduler

    def start_scheduler(self) -> None:
        if self.settings.reconcile_enabled and not self.scheduler.running:
            self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.stop()


def _build_account_repository(cfg: AppConfig) -> AccountRepository:
    if cfg.database_url:
        logger.info("Using SQL account store")
        return SqlAccountRepository.from_url(cfg.database_url)
    logger.warning("DATABASE_URL not set; accounts are kept in memory only")
    return InMemoryAccountRepository()


def _build_notifier(cfg: AppConfig) -> NotificationSender:
    if cfg.smtp_configured:
        return SmtpNotificationSender(
            cfg.smtp_host,
            cfg.smtp_port,
            username=cfg.smtp_user or None,
            password=cfg.smtp_password or None,
            sender=cfg.smtp_from or None,
            frontend_url=cfg.frontend_url,
            use_tls=cfg.smtp_use_tls,
        )
    return LoggingNotificationSender(cfg.frontend_url)


def build_container(
    cfg: Optional[AppConfig] = None,
    *,
    http: Optional[requests.Session] = None,
    clock=None,
    sleep: Callable[[float], None] = time.sleep,
    accounts: Optional[AccountRepository] = None,
    notifier: Optional[NotificationSender] = None,
) -> ServiceContainer:
    """Wire every component from settings.

    The single ``AdminSessionCache`` built here is shared by reference with
    every service that talks to Keycloak.
    """
    cfg = cfg or load_settings()
    clock = clock or SystemClock()
    http = http or requests.Session()
    audit.configure(cfg.audit_log_dir)

    sessions = AdminSessionCache(
        cfg.keycloak_base_url,
        cfg.keycloak_service_realm,
        cfg.keycloak_service_client_id,
        cfg.keycloak_service_client_secret,
        http=http,
        clock=clock,
        safety_margin_seconds=cfg.token_safety_margin_seconds,
        timeout=cfg.request_timeout,
    )
    client = KeycloakClient(
        cfg.keycloak_base_url,
        cfg.keycloak_realm,
        sessions,
        http=http,
        retry_policy=RetryPolicy(
            max_retries=cfg.idp_max_retries,
            initial_backoff=cfg.idp_initial_backoff_seconds,
            max_backoff=cfg.idp_max_backoff_seconds,
        ),
        timeout=cfg.request_timeout,
        sleep=sleep,
    )
    users = UserService(client)
    roles = RoleService(client, catalog=cfg.role_catalog)
    accounts = accounts if accounts is not None else _build_account_repository(cfg)
    notifier = notifier or _build_notifier(cfg)
    token_issuer = ActivationTokenIssuer(cfg.activation_token_secret, cfg.activation_token_ttl_hours, clock=clock)
    locks = AccountLocks()

    provisioning = ProvisioningService(
        users,
        roles,
        accounts,
        assignable_roles=cfg.assignable_roles,
        realm=cfg.keycloak_realm,
        clock=clock,
        locks=locks,
    )
    reconciliation = ReconciliationService(
        accounts,
        users,
        roles,
        token_issuer,
        notifier,
        clock=clock,
        max_attempts=cfg.reconcile_max_attempts,
        backoff_base=datetime.timedelta(minutes=cfg.reconcile_backoff_base_minutes),
        baseline_role=cfg.baseline_role,
        max_workers=cfg.reconcile_workers,
        realm=cfg.keycloak_realm,
        locks=locks,
    )
    activation = ActivationService(users, token_issuer, realm=cfg.keycloak_realm, sender=notifier)
    scheduler = ReconciliationScheduler(reconciliation, cfg.reconcile_interval_seconds)

    return ServiceContainer(
        settings=cfg,
        sessions=sessions,
        client=client,
        users=users,
        roles=roles,
        accounts=accounts,
        notifier=notifier,
        token_issuer=token_issuer,
        provisioning=provisioning,
        reconciliation=reconciliation,
        activation=activation,
        scheduler=scheduler,
    )


__all__ = ["ServiceContainer", "build_container"]
