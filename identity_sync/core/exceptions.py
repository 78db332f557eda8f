"""Domain exceptions raised by the provisioning and reconciliation services."""
from __future__ import annotations


class ValidationError(ValueError):
    """Input rejected before any call reaches Keycloak.

    Attributes:
        field: Name of the offending field
        message: Human readable reason
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ProvisioningFailedError(Exception):
    """A provisioning step failed after the identity was created.

    The compensating delete has been attempted by the time this is raised.
    """

    def __init__(self, username: str, cause: BaseException):
        self.username = username
        self.cause = cause
        super().__init__(f"Provisioning of '{username}' failed: {cause}")


class AccountNotFoundError(Exception):
    """No local account row for the given id."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account '{account_id}' not found")


class InvalidAccountStateError(Exception):
    """Operation not allowed for the account's current status."""

    def __init__(self, account_id: str, status: str, expected: str):
        self.account_id = account_id
        self.status = status
        self.expected = expected
        super().__init__(f"Account '{account_id}' is {status}, expected {expected}")
