"""Test helpers shared by unit, integration and e2e tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from temporal_tables.storage.memory import InMemoryDatabase, current_period

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def T(seconds: float) -> datetime:
    """Start timestamp of the transaction begun ``seconds`` ticks after T0."""
    return T0 + timedelta(seconds=seconds)


class TickingClock:
    """Transaction start times advancing by a fixed step."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


def create_users(
    db: InMemoryDatabase,
    table: str = "users",
    history: Optional[str] = "users_history",
    extra: Sequence[tuple] = (),
) -> None:
    """users(id, name, [extra...], sys_period) plus a LIKE history table."""
    db.create_table(
        table,
        [("id", "integer"), ("name", "text"), *extra, ("sys_period", "tstzrange", current_period)],
    )
    if history is not None:
        db.create_table_like(history, table)
