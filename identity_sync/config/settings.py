"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

SECRETS_DIR = Path("/run/secrets")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = SECRETS_DIR / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from {SECRETS_DIR}")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read {SECRETS_DIR}/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _bool_env(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from exc


def _list_env(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if raw is None:
        return list(default)
    values = [item.strip() for item in raw.split(",") if item.strip()]
    return values or list(default)


def _require_secret(
    secret_name: str,
    env_var: str,
    *,
    demo_mode: bool,
    demo_default: Optional[str],
    required: bool = True,
) -> str:
    """Secret from /run/secrets or env; demo default in demo mode; else fail."""
    value = _load_secret_from_file(secret_name, env_var)
    if value:
        return value
    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {env_var}")
        return demo_default
    if not required:
        return ""
    raise RuntimeError(f"{env_var} not found in {SECRETS_DIR} or environment (required in production mode).")


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool = False

    # Keycloak admin API
    keycloak_url: str = "http://127.0.0.1:8080"
    keycloak_realm: str = "demo"
    keycloak_service_realm: str = "demo"
    keycloak_service_client_id: str = "automation-cli"
    keycloak_service_client_secret: str = ""
    request_timeout: float = 5.0
    token_safety_margin_seconds: int = 10

    # Retry policy for admin calls
    idp_max_retries: int = 3
    idp_initial_backoff_seconds: float = 1.0
    idp_max_backoff_seconds: float = 5.0

    # Reconciliation
    reconcile_enabled: bool = True
    reconcile_interval_seconds: float = 60.0
    reconcile_max_attempts: int = 5
    reconcile_backoff_base_minutes: float = 1.0
    reconcile_workers: int = 1

    # Roles
    baseline_role: str = "Interested"
    assignable_roles: list[str] = field(default_factory=lambda: ["Admin", "Client", "Designer"])
    role_catalog: list[str] = field(default_factory=lambda: ["Admin", "Client", "Designer", "Interested"])

    # Local account store (empty = in-memory)
    database_url: str = ""

    # Notifications
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_use_tls: bool = True
    frontend_url: str = "http://localhost:3000"
    activation_token_secret: str = ""
    activation_token_ttl_hours: int = 24

    # Audit / logging
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""
    log_level: str = "INFO"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)

    @property
    def keycloak_base_url(self) -> str:
        return self.keycloak_url.rstrip("/")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets.

    Raises:
        RuntimeError: If a required secret is missing outside demo mode, or
            a numeric variable cannot be parsed
    """
    demo_mode = _bool_env("DEMO_MODE", False)

    # ─────────────────────────────────────────────────────────────────────────
    # Secrets: /run/secrets > environment > demo default
    # ─────────────────────────────────────────────────────────────────────────
    keycloak_service_client_secret = _require_secret(
        "keycloak_service_client_secret",
        "KEYCLOAK_SERVICE_CLIENT_SECRET",
        demo_mode=demo_mode,
        demo_default=os.environ.get("KEYCLOAK_SERVICE_CLIENT_SECRET_DEMO") or "demo-service-secret",
    )
    activation_token_secret = _require_secret(
        "activation_token_secret",
        "ACTIVATION_TOKEN_SECRET",
        demo_mode=demo_mode,
        demo_default="demo-activation-secret-change-in-production",
    )
    smtp_password = _require_secret(
        "smtp_password", "SMTP_PASSWORD", demo_mode=demo_mode, demo_default=None, required=False
    )

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY")
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    elif demo_mode:
        audit_log_signing_key = "demo-audit-signing-key-change-in-production"
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
        print(f"[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY: {audit_log_signing_key[:20]}...")
    else:
        audit_log_signing_key = ""

    # Keycloak
    keycloak_url = os.environ.get("KEYCLOAK_URL", "http://127.0.0.1:8080" if demo_mode else "")
    if not keycloak_url:
        raise RuntimeError("Environment variable KEYCLOAK_URL is required in production mode.")
    keycloak_realm = os.environ.get("KEYCLOAK_REALM", "demo")
    keycloak_service_realm = os.environ.get("KEYCLOAK_SERVICE_REALM", keycloak_realm)

    role_catalog = _list_env("ROLE_CATALOG", ["Admin", "Client", "Designer", "Interested"])
    assignable_roles = _list_env("ASSIGNABLE_ROLES", ["Admin", "Client", "Designer"])
    baseline_role = os.environ.get("BASELINE_ROLE", "Interested").strip() or "Interested"

    cfg = AppConfig(
        demo_mode=demo_mode,
        keycloak_url=keycloak_url,
        keycloak_realm=keycloak_realm,
        keycloak_service_realm=keycloak_service_realm,
        keycloak_service_client_id=os.environ.get("KEYCLOAK_SERVICE_CLIENT_ID", "automation-cli"),
        keycloak_service_client_secret=keycloak_service_client_secret,
        request_timeout=_float_env("KEYCLOAK_REQUEST_TIMEOUT", 5.0),
        token_safety_margin_seconds=_int_env("TOKEN_SAFETY_MARGIN_SECONDS", 10),
        idp_max_retries=_int_env("IDP_MAX_RETRIES", 3),
        idp_initial_backoff_seconds=_float_env("IDP_INITIAL_BACKOFF_SECONDS", 1.0),
        idp_max_backoff_seconds=_float_env("IDP_MAX_BACKOFF_SECONDS", 5.0),
        reconcile_enabled=_bool_env("RECONCILE_ENABLED", True),
        reconcile_interval_seconds=_float_env("RECONCILE_INTERVAL_SECONDS", 60.0),
        reconcile_max_attempts=_int_env("RECONCILE_MAX_ATTEMPTS", 5),
        reconcile_backoff_base_minutes=_float_env("RECONCILE_BACKOFF_BASE_MINUTES", 1.0),
        reconcile_workers=max(1, _int_env("RECONCILE_WORKERS", 1)),
        baseline_role=baseline_role,
        assignable_roles=assignable_roles,
        role_catalog=role_catalog,
        database_url=os.environ.get("DATABASE_URL", ""),
        smtp_host=os.environ.get("SMTP_HOST", ""),
        smtp_port=_int_env("SMTP_PORT", 587),
        smtp_user=os.environ.get("SMTP_USER", ""),
        smtp_password=smtp_password,
        smtp_from=os.environ.get("SMTP_FROM", ""),
        smtp_use_tls=_bool_env("SMTP_USE_TLS", True),
        frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:3000"),
        activation_token_secret=activation_token_secret,
        activation_token_ttl_hours=_int_env("ACTIVATION_TOKEN_TTL_HOURS", 24),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        audit_log_signing_key=audit_log_signing_key,
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )

    missing = [role for role in cfg.assignable_roles + [cfg.baseline_role] if role not in cfg.role_catalog]
    if missing:
        raise RuntimeError(f"Roles {missing} are not part of ROLE_CATALOG {cfg.role_catalog}")

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; realm={keycloak_realm}; client_id={cfg.keycloak_service_client_id}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return cfg
