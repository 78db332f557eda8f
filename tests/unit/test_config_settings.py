import pytest

from identity_sync.config import settings

ENV_KEYS = [
    "DEMO_MODE",
    "KEYCLOAK_URL",
    "KEYCLOAK_REALM",
    "KEYCLOAK_SERVICE_REALM",
    "KEYCLOAK_SERVICE_CLIENT_ID",
    "KEYCLOAK_SERVICE_CLIENT_SECRET",
    "KEYCLOAK_SERVICE_CLIENT_SECRET_DEMO",
    "ACTIVATION_TOKEN_SECRET",
    "AUDIT_LOG_SIGNING_KEY",
    "SMTP_PASSWORD",
    "ASSIGNABLE_ROLES",
    "ROLE_CATALOG",
    "BASELINE_ROLE",
    "IDP_MAX_RETRIES",
    "RECONCILE_WORKERS",
    "DATABASE_URL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(settings, "SECRETS_DIR", tmp_path / "secrets")


def test_demo_mode_supplies_defaults(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")

    cfg = settings.load_settings()

    assert cfg.demo_mode is True
    assert cfg.keycloak_url == "http://127.0.0.1:8080"
    assert cfg.keycloak_service_client_secret == "demo-service-secret"
    assert cfg.activation_token_secret
    assert cfg.assignable_roles == ["Admin", "Client", "Designer"]
    assert cfg.baseline_role == "Interested"
    assert cfg.idp_max_retries == 3
    assert cfg.reconcile_max_attempts == 5
    assert cfg.token_safety_margin_seconds == 10
    assert cfg.database_url == ""


def test_production_requires_client_secret(monkeypatch):
    monkeypatch.setenv("KEYCLOAK_URL", "https://kc.example.com")
    monkeypatch.setenv("ACTIVATION_TOKEN_SECRET", "x")

    with pytest.raises(RuntimeError, match="KEYCLOAK_SERVICE_CLIENT_SECRET"):
        settings.load_settings()


def test_production_requires_keycloak_url(monkeypatch):
    monkeypatch.setenv("KEYCLOAK_SERVICE_CLIENT_SECRET", "s")
    monkeypatch.setenv("ACTIVATION_TOKEN_SECRET", "x")

    with pytest.raises(RuntimeError, match="KEYCLOAK_URL"):
        settings.load_settings()


def test_secret_file_takes_priority(monkeypatch, tmp_path):
    secrets_dir = tmp_path / "secrets"
    secrets_dir.mkdir()
    (secrets_dir / "keycloak_service_client_secret").write_text("from-file\n")
    monkeypatch.setenv("KEYCLOAK_SERVICE_CLIENT_SECRET", "from-env")
    monkeypatch.setenv("KEYCLOAK_URL", "https://kc.example.com")
    monkeypatch.setenv("ACTIVATION_TOKEN_SECRET", "x")

    cfg = settings.load_settings()

    assert cfg.keycloak_service_client_secret == "from-file"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.setenv("ASSIGNABLE_ROLES", "Client, Designer")
    monkeypatch.setenv("IDP_MAX_RETRIES", "5")
    monkeypatch.setenv("RECONCILE_WORKERS", "0")
    monkeypatch.setenv("KEYCLOAK_REALM", "acme")

    cfg = settings.load_settings()

    assert cfg.assignable_roles == ["Client", "Designer"]
    assert cfg.idp_max_retries == 5
    assert cfg.reconcile_workers == 1
    assert cfg.keycloak_service_realm == "acme"


def test_invalid_integer_rejected(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.setenv("IDP_MAX_RETRIES", "many")

    with pytest.raises(RuntimeError, match="IDP_MAX_RETRIES"):
        settings.load_settings()


def test_assignable_roles_must_be_in_catalog(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.setenv("ASSIGNABLE_ROLES", "Client,Superuser")

    with pytest.raises(RuntimeError, match="Superuser"):
        settings.load_settings()
