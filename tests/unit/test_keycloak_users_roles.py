"""Tests for user lookups and single-role replacement against the fake IdP."""
import pytest

from identity_sync.core.exceptions import ValidationError
from identity_sync.core.keycloak import (
    IdentityProviderError,
    RoleNotFoundError,
    UserAlreadyExistsError,
    organization_of,
)
from tests.fakes import ROLE_MAPPINGS, USERS


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────
def test_create_user_payload(users, fake_idp):
    users.create_user("alice", "alice@example.com", "Acme")

    user = fake_idp.users[fake_idp.user_id("alice")]
    assert user["enabled"] is True
    assert user["emailVerified"] is False
    assert user["email"] == "alice@example.com"
    assert organization_of(user) == "Acme"


def test_create_user_conflict(users, fake_idp):
    fake_idp.add_user("alice")
    with pytest.raises(UserAlreadyExistsError):
        users.create_user("alice", "alice@example.com", "Acme")


def test_find_by_username_is_exact(users, fake_idp):
    fake_idp.add_user("alice")
    fake_idp.add_user("alice2")

    assert users.find_by_username("alice")["username"] == "alice"
    assert users.find_by_username("ali") is None


def test_find_by_username_multiple_matches(users, fake_idp):
    fake_idp.add_user("alice")
    fake_idp.add_user("alice")

    with pytest.raises(ValidationError):
        users.find_by_username("alice")


def test_find_by_email(users, fake_idp):
    user_id = fake_idp.add_user("bob", email="bob@example.com")
    assert users.find_by_email("bob@example.com")["id"] == user_id
    assert users.find_by_email("nobody@example.com") is None


def test_set_password_temporary_flag(users, fake_idp):
    user_id = fake_idp.add_user("alice")
    users.set_password(user_id, "Temp123!x", temporary=True)
    assert fake_idp.passwords[user_id] == {"type": "password", "value": "Temp123!x", "temporary": True}


def test_organization_of_missing_attribute():
    assert organization_of({"username": "x"}) == ""


# ─────────────────────────────────────────────────────────────────────────────
# Role replacement
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("initial", [(), ("Client",), ("Admin", "Client", "Interested")])
def test_replace_role_leaves_exactly_target(roles, fake_idp, initial):
    user_id = fake_idp.add_user("alice", roles=initial)

    roles.replace_role(user_id, "Designer")

    assert fake_idp.role_names(user_id) == ["Designer"]


def test_replace_role_skips_removal_when_no_roles(roles, fake_idp):
    user_id = fake_idp.add_user("alice")
    roles.replace_role(user_id, "Client")
    assert fake_idp.count("DELETE", ROLE_MAPPINGS) == 0


def test_replace_role_outside_catalog_keeps_current_roles(roles, fake_idp):
    user_id = fake_idp.add_user("alice", roles=("Client",))

    with pytest.raises(RoleNotFoundError):
        roles.replace_role(user_id, "Superuser")

    assert fake_idp.role_names(user_id) == ["Client"]
    assert fake_idp.count("GET", ROLE_MAPPINGS) == 0


def test_replace_role_unknown_to_realm_leaves_no_roles(kc_client, fake_idp):
    from identity_sync.core.keycloak import RoleService

    user_id = fake_idp.add_user("alice", roles=("Client",))
    no_catalog = RoleService(kc_client)

    with pytest.raises(RoleNotFoundError):
        no_catalog.replace_role(user_id, "Ghost")

    # removal already happened; the operation is not atomic
    assert fake_idp.role_names(user_id) == []


def test_replace_role_add_failure_surfaces(roles, fake_idp):
    user_id = fake_idp.add_user("alice", roles=("Client",))
    fake_idp.fail("POST", ROLE_MAPPINGS, status=400)

    with pytest.raises(IdentityProviderError):
        roles.replace_role(user_id, "Designer")


def test_role_names(roles, fake_idp):
    user_id = fake_idp.add_user("alice", roles=("Client", "Interested"))
    assert sorted(roles.role_names(user_id)) == ["Client", "Interested"]


def test_list_users(users, fake_idp):
    fake_idp.add_user("alice")
    fake_idp.add_user("bob")
    assert {u["username"] for u in users.list_users()} == {"alice", "bob"}
    assert fake_idp.count("GET", USERS) == 1
