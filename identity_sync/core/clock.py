"""Time source shared by the token cache and the reconciliation scheduler."""
from __future__ import annotations
import datetime


class SystemClock:
    """Wall clock returning timezone-aware UTC datetimes."""

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc)


class FrozenClock:
    """Manually advanced clock for tests and dry runs."""

    def __init__(self, start: datetime.datetime | None = None):
        self._now = start or datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)

    def now(self) -> datetime.datetime:
        return self._now

    def advance(self, **delta) -> datetime.datetime:
        self._now = self._now + datetime.timedelta(**delta)
        return self._now

    def set(self, value: datetime.datetime) -> None:
        self._now = value
