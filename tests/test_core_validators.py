"""Unit tests for provisioning input validators."""
import pytest

from identity_sync.core.exceptions import ValidationError
from identity_sync.core.validators import (
    normalize_username,
    validate_email,
    validate_organization,
    validate_role,
    validate_temporary_password,
)


class TestNormalizeUsername:
    def test_lowercases_and_strips(self):
        assert normalize_username("  Alice.Smith ") == "alice.smith"

    def test_drops_unsupported_characters(self):
        assert normalize_username("al!ice#") == "alice"

    @pytest.mark.parametrize("raw", ["", "ab", "a" * 65, ".alice", "alice-", None])
    def test_rejects_invalid(self, raw):
        with pytest.raises(ValidationError) as exc:
            normalize_username(raw)
        assert exc.value.field == "username"


class TestValidateEmail:
    def test_normalizes(self):
        assert validate_email(" Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.parametrize("raw", ["", "alice", "alice@", "@example.com", "alice@localhost"])
    def test_rejects_invalid(self, raw):
        with pytest.raises(ValidationError):
            validate_email(raw)

    def test_rejects_too_long(self):
        with pytest.raises(ValidationError):
            validate_email("a" * 250 + "@example.com")


def test_organization_rules():
    assert validate_organization(" Acme Corp ") == "Acme Corp"
    with pytest.raises(ValidationError):
        validate_organization("")
    with pytest.raises(ValidationError):
        validate_organization("x" * 101)
    with pytest.raises(ValidationError):
        validate_organization("Acme<script>")


def test_temporary_password_length():
    assert validate_temporary_password("Temp123!") == "Temp123!"
    with pytest.raises(ValidationError):
        validate_temporary_password("short")
    with pytest.raises(ValidationError):
        validate_temporary_password("x" * 51)


def test_role_must_be_assignable():
    assert validate_role(" Designer ", ["Admin", "Designer"]) == "Designer"
    with pytest.raises(ValidationError):
        validate_role("designer", ["Admin", "Designer"])
    with pytest.raises(ValidationError):
        validate_role("", ["Admin"])
