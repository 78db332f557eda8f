"""Pytest shared fixtures: fake Keycloak, frozen clock, isolated audit trail."""
import pathlib
import sys

import pytest

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from identity_sync.config.settings import AppConfig
from identity_sync.container import build_container
from identity_sync.core.accounts import InMemoryAccountRepository
from identity_sync.core.clock import FrozenClock
from identity_sync.core.keycloak import AdminSessionCache, KeycloakClient, RoleService, UserService
from identity_sync.core.provisioning_service import ProvisioningService
from scripts import audit
from tests.fakes import BASE_URL, REALM, FakeKeycloak, RecordingSender, SleepRecorder

ROLE_CATALOG = ["Admin", "Client", "Designer", "Interested"]


# ─────────────────────────────────────────────────────────────────────────────
# Audit isolation
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def audit_log(monkeypatch, tmp_path):
    """Redirect the audit trail into the test's tmp dir."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "provisioning-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir / "provisioning-events.jsonl"


# ─────────────────────────────────────────────────────────────────────────────
# Keycloak stack on top of the fake IdP
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def fake_idp():
    return FakeKeycloak()


@pytest.fixture
def sessions(fake_idp, clock):
    return AdminSessionCache(BASE_URL, REALM, "automation-cli", "test-secret", http=fake_idp, clock=clock)


@pytest.fixture
def kc_client(sessions, sleeps):
    return KeycloakClient(BASE_URL, REALM, sessions, sleep=sleeps)


@pytest.fixture
def users(kc_client):
    return UserService(kc_client)


@pytest.fixture
def roles(kc_client):
    return RoleService(kc_client, catalog=ROLE_CATALOG)


@pytest.fixture
def accounts():
    return InMemoryAccountRepository()


@pytest.fixture
def provisioning(users, roles, accounts, clock):
    return ProvisioningService(users, roles, accounts, realm=REALM, clock=clock)


@pytest.fixture
def sender():
    return RecordingSender()


# ─────────────────────────────────────────────────────────────────────────────
# Wired application
# ─────────────────────────────────────────────────────────────────────────────
def make_config(**overrides):
    base = dict(
        demo_mode=False,
        keycloak_url=BASE_URL,
        keycloak_realm=REALM,
        keycloak_service_realm=REALM,
        keycloak_service_client_id="automation-cli",
        keycloak_service_client_secret="test-secret",
        reconcile_enabled=False,
        activation_token_secret="test-activation-secret",
        audit_log_dir=str(audit.AUDIT_LOG_DIR),
    )
    base.update(overrides)
    return AppConfig(**base)


@pytest.fixture
def app_config(audit_log):
    return make_config(audit_log_dir=str(audit_log.parent))


@pytest.fixture
def container(app_config, fake_idp, clock, sleeps, sender):
    return build_container(app_config, http=fake_idp, clock=clock, sleep=sleeps, notifier=sender)


@pytest.fixture
def app(container):
    from identity_sync.flask_app import create_app

    flask_app = create_app(container=container, start_scheduler=False)
    flask_app.config["TESTING"] = True
    yield flask_app
    container.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()
