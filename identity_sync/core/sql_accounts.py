"""SQLAlchemy implementation of the account repository."""
from __future__ import annotations
import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .accounts import Account, AccountRepository, AccountStatus


class Base(DeclarativeBase):
    pass


class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    registered_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(timezone=True))
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)


def _as_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    # SQLite drops tzinfo on the way back.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def is_in_memory_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return False
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


class SqlAccountRepository(AccountRepository):
    """Account repository backed by SQLAlchemy models."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str) -> "SqlAccountRepository":
        if is_in_memory_sqlite(database_url):
            # one shared connection, otherwise every thread gets its own empty database
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(database_url)
        repo = cls(engine)
        repo.create_schema()
        return repo

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def create(self, account: Account) -> Account:
        with self._sessions.begin() as session:
            if session.get(AccountRow, account.id) is not None:
                raise ValueError(f"Account '{account.id}' already exists")
            session.add(self._to_row(account))
        return account

    def save(self, account: Account) -> Account:
        with self._sessions.begin() as session:
            session.merge(self._to_row(account))
        return account

    def delete_by_id(self, account_id: str) -> None:
        with self._sessions.begin() as session:
            row = session.get(AccountRow, account_id)
            if row is not None:
                session.delete(row)

    def find_by_id(self, account_id: str) -> Optional[Account]:
        with Session(self.engine) as session:
            return self._to_domain(session.get(AccountRow, account_id))

    def find_by_status(self, status: AccountStatus) -> List[Account]:
        stmt = (
            select(AccountRow)
            .where(AccountRow.status == AccountStatus(status).value)
            .order_by(AccountRow.registered_at)
        )
        with Session(self.engine) as session:
            return [self._to_domain(row) for row in session.scalars(stmt)]

    def list_all(self) -> List[Account]:
        stmt = select(AccountRow).order_by(AccountRow.registered_at)
        with Session(self.engine) as session:
            return [self._to_domain(row) for row in session.scalars(stmt)]

    @staticmethod
    def _to_row(account: Account) -> AccountRow:
        return AccountRow(
            id=account.id,
            registered_at=account.registered_at,
            status=account.status.value,
            attempts=account.attempts,
            last_attempt_at=account.last_attempt_at,
            failure_reason=account.failure_reason,
        )

    @staticmethod
    def _to_domain(row: Optional[AccountRow]) -> Optional[Account]:
        if row is None:
            return None
        return Account(
            id=row.id,
            registered_at=_as_utc(row.registered_at),
            status=AccountStatus(row.status),
            attempts=row.attempts,
            last_attempt_at=_as_utc(row.last_attempt_at),
            failure_reason=row.failure_reason,
        )
