"""Input validation helpers for provisioning requests."""
from __future__ import annotations
from typing import Iterable

from .exceptions import ValidationError


def normalize_username(raw: str) -> str:
    """Normalize and validate username.

    Args:
        raw: Raw username input

    Returns:
        Normalized username

    Raises:
        ValidationError: If username is invalid
    """
    normalized = "".join(char for char in (raw or "").lower().strip() if char.isalnum() or char in {".", "-", "_"})

    if len(normalized) < 3:
        raise ValidationError("username", "Username must be at least 3 characters")
    if len(normalized) > 64:
        raise ValidationError("username", "Username must not exceed 64 characters")
    if normalized[0] in {".", "-", "_"} or normalized[-1] in {".", "-", "_"}:
        raise ValidationError("username", "Username cannot start or end with special characters")

    return normalized


def validate_email(email: str) -> str:
    """Validate email address.

    Returns:
        Normalized email address

    Raises:
        ValidationError: If email is invalid
    """
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("email", "Invalid email format")

    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise ValidationError("email", "Invalid email format")
    if len(email) > 254:
        raise ValidationError("email", "Email exceeds maximum length")

    return email


def validate_organization(name: str) -> str:
    """Validate the organization label stored as an identity attribute."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("organization", "Organization is required")
    if len(name) > 100:
        raise ValidationError("organization", "Organization must not exceed 100 characters")
    if any(char in name for char in "<>\"`;|$"):
        raise ValidationError("organization", "Organization contains invalid characters")
    return name


def validate_temporary_password(value: str) -> str:
    if not value or not 8 <= len(value) <= 50:
        raise ValidationError("temporary_password", "Temporary password must be 8-50 characters")
    return value


def validate_role(role: str, allowed: Iterable[str]) -> str:
    """Check the role against the assignable catalog (exact, case-sensitive)."""
    allowed = list(allowed)
    role = (role or "").strip()
    if role not in allowed:
        raise ValidationError("role", f"Role must be one of {', '.join(allowed)}")
    return role
