"""Local account table mirroring provisioned Keycloak identities."""
from __future__ import annotations
import copy
import datetime
import enum
import threading
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional


class AccountStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


@dataclass
class Account:
    """Local mirror row. ``id`` equals the Keycloak user id and never changes."""
    id: str
    registered_at: datetime.datetime
    status: AccountStatus = AccountStatus.ACTIVE
    attempts: int = 0
    last_attempt_at: Optional[datetime.datetime] = None
    failure_reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["registered_at"] = self.registered_at.isoformat()
        data["last_attempt_at"] = self.last_attempt_at.isoformat() if self.last_attempt_at else None
        return data


class AccountRepository:
    """Persistence contract for accounts."""

    def create(self, account: Account) -> Account:
        raise NotImplementedError

    def save(self, account: Account) -> Account:
        raise NotImplementedError

    def delete_by_id(self, account_id: str) -> None:
        raise NotImplementedError

    def find_by_id(self, account_id: str) -> Optional[Account]:
        raise NotImplementedError

    def find_by_status(self, status: AccountStatus) -> List[Account]:
        raise NotImplementedError

    def list_all(self) -> List[Account]:
        raise NotImplementedError


class InMemoryAccountRepository(AccountRepository):
    """Thread-safe dict-backed repository. Hands out copies, never live rows."""

    def __init__(self):
        self._rows: Dict[str, Account] = {}
        self._lock = threading.Lock()

    def create(self, account: Account) -> Account:
        with self._lock:
            if account.id in self._rows:
                raise ValueError(f"Account '{account.id}' already exists")
            self._rows[account.id] = copy.deepcopy(account)
        return account

    def save(self, account: Account) -> Account:
        with self._lock:
            self._rows[account.id] = copy.deepcopy(account)
        return account

    def delete_by_id(self, account_id: str) -> None:
        with self._lock:
            self._rows.pop(account_id, None)

    def find_by_id(self, account_id: str) -> Optional[Account]:
        with self._lock:
            row = self._rows.get(account_id)
            return copy.deepcopy(row) if row else None

    def find_by_status(self, status: AccountStatus) -> List[Account]:
        with self._lock:
            rows = [row for row in self._rows.values() if row.status == status]
            return [copy.deepcopy(row) for row in sorted(rows, key=lambda r: r.registered_at)]

    def list_all(self) -> List[Account]:
        with self._lock:
            return [copy.deepcopy(row) for row in sorted(self._rows.values(), key=lambda r: r.registered_at)]


class AccountLocks:
    """Per-account coordination shared by the sagas and the reconciliation worker.

    ``try_lease`` hands out exclusive processing rights for one account id.
    ``writes`` serializes "row still there?" checks with the writes that
    depend on them, so a row removed by deprovisioning is never written back.
    It is re-entrant because a saga may run inside a reconciliation attempt.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._leased: set = set()
        self.writes = threading.RLock()

    def try_lease(self, account_id: str) -> bool:
        with self._lock:
            if account_id in self._leased:
                return False
            self._leased.add(account_id)
            return True

    def release(self, account_id: str) -> None:
        with self._lock:
            self._leased.discard(account_id)

    def is_leased(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._leased
