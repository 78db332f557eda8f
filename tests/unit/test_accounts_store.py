"""Tests for the account repositories (in-memory and SQLAlchemy)."""
import datetime
import threading

import pytest

from identity_sync.core.accounts import Account, AccountLocks, AccountStatus, InMemoryAccountRepository
from identity_sync.core.sql_accounts import SqlAccountRepository, is_in_memory_sqlite

T0 = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)


@pytest.fixture(params=["memory", "sql"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryAccountRepository()
    return SqlAccountRepository.from_url(f"sqlite:///{tmp_path / 'accounts.db'}")


def make_account(account_id, minutes=0, **kwargs):
    return Account(id=account_id, registered_at=T0 + datetime.timedelta(minutes=minutes), **kwargs)


def test_create_and_find(repo):
    repo.create(make_account("u1", status=AccountStatus.PENDING))

    found = repo.find_by_id("u1")
    assert found.status == AccountStatus.PENDING
    assert found.attempts == 0
    assert found.registered_at == T0
    assert repo.find_by_id("missing") is None


def test_create_duplicate_rejected(repo):
    repo.create(make_account("u1"))
    with pytest.raises(ValueError):
        repo.create(make_account("u1"))


def test_save_updates_fields(repo):
    repo.create(make_account("u1", status=AccountStatus.PENDING))
    account = repo.find_by_id("u1")
    account.attempts = 2
    account.last_attempt_at = T0 + datetime.timedelta(minutes=5)
    account.status = AccountStatus.FAILED
    account.failure_reason = "IdentityProviderError: boom"
    repo.save(account)

    stored = repo.find_by_id("u1")
    assert stored.attempts == 2
    assert stored.last_attempt_at == T0 + datetime.timedelta(minutes=5)
    assert stored.status == AccountStatus.FAILED
    assert stored.failure_reason == "IdentityProviderError: boom"


def test_find_by_status_ordered_by_registration(repo):
    repo.create(make_account("late", minutes=10, status=AccountStatus.PENDING))
    repo.create(make_account("early", minutes=1, status=AccountStatus.PENDING))
    repo.create(make_account("done", minutes=0, status=AccountStatus.ACTIVE))

    assert [a.id for a in repo.find_by_status(AccountStatus.PENDING)] == ["early", "late"]
    assert [a.id for a in repo.list_all()] == ["done", "early", "late"]


def test_delete_by_id(repo):
    repo.create(make_account("u1"))
    repo.delete_by_id("u1")
    repo.delete_by_id("u1")
    assert repo.find_by_id("u1") is None


def test_in_memory_returns_copies():
    repo = InMemoryAccountRepository()
    repo.create(make_account("u1"))
    copy = repo.find_by_id("u1")
    copy.attempts = 99
    assert repo.find_by_id("u1").attempts == 0


def test_to_dict_serializes_enum_and_dates():
    data = make_account("u1", status=AccountStatus.PENDING).to_dict()
    assert data["status"] == "PENDING"
    assert data["registered_at"] == T0.isoformat()
    assert data["last_attempt_at"] is None


@pytest.mark.parametrize(
    "url, expected",
    [
        ("sqlite://", True),
        ("sqlite:///:memory:", True),
        ("sqlite:///file:accounts?mode=memory&cache=shared&uri=true", True),
        ("sqlite:////var/lib/accounts.db", False),
        ("postgresql://user:pw@db/accounts", False),
    ],
)
def test_in_memory_sqlite_detection(url, expected):
    assert is_in_memory_sqlite(url) is expected


def test_in_memory_sqlite_shared_across_threads():
    repo = SqlAccountRepository.from_url("sqlite://")
    repo.create(make_account("u1", status=AccountStatus.PENDING))
    seen = []

    worker = threading.Thread(target=lambda: seen.extend(repo.find_by_status(AccountStatus.PENDING)))
    worker.start()
    worker.join(timeout=5)

    assert [account.id for account in seen] == ["u1"]


def test_account_locks_lease_is_exclusive():
    locks = AccountLocks()
    assert locks.try_lease("u1")
    assert not locks.try_lease("u1")
    assert locks.is_leased("u1")
    locks.release("u1")
    assert locks.try_lease("u1")
