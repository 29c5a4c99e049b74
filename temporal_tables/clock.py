"""
Clock sources for the versioning engines.

Both engines ask a Clock for the effective time of a write instead of
reading a global. The fallback passed in is the writing transaction's own
timestamp, so all rows touched by one transaction share a time unless an
override is set.

Invariants:
    - An override is either None or a validated timestamp string
    - An override that stops parsing never raises at write time; the
      transaction timestamp is used and a warning is logged

How to change safely:
    - The accepted format must stay in sync with the PL/pgSQL emitted by
      codegen.generator, which casts the session setting to timestamptz
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Iterator, Optional, Protocol, runtime_checkable
import logging
import re

from sqlalchemy import text

from .errors import InvalidSystemTimeError

logger = logging.getLogger(__name__)

SYSTEM_TIME_SETTING = "user_defined.system_time"

SYSTEM_TIME_FORMAT = "YYYY-MM-DD HH:MM:SS"

_SYSTEM_TIME_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}(\.\d{1,6})?$"
)

ONE_MICROSECOND = timedelta(microseconds=1)


@runtime_checkable
class Clock(Protocol):
    """Supplies the effective time of a write."""

    def now(self, fallback: datetime) -> datetime:
        """Return the effective time, given the transaction timestamp."""
        ...


class SystemClock:
    """Clock that always uses the transaction timestamp."""

    def now(self, fallback: datetime) -> datetime:
        return fallback


def parse_system_time(value: str, tz: tzinfo = timezone.utc) -> datetime:
    """Parse ``YYYY-MM-DD HH:MM:SS[.ffffff]`` into an aware datetime.

    Raises:
        InvalidSystemTimeError: If the value does not match the format or
            is not a real calendar time
    """
    if not _SYSTEM_TIME_PATTERN.match(value):
        raise InvalidSystemTimeError(
            "You must enter a timestamp in the following format: "
            f"{SYSTEM_TIME_FORMAT} (hours are in 24-hour format 00-23)",
            details={"value": value},
        )
    fmt = "%Y-%m-%d %H:%M:%S.%f" if "." in value else "%Y-%m-%d %H:%M:%S"
    try:
        parsed = datetime.strptime(value, fmt)
    except ValueError as e:
        raise InvalidSystemTimeError(
            f"invalid system time {value!r}: {e}",
            details={"value": value},
        ) from e
    return parsed.replace(tzinfo=tz)


class SystemTime:
    """Overridable clock.

    With no override set it behaves like SystemClock. Setting a value pins
    "now" for every subsequent write until it is cleared.

    Example:
        >>> clock = SystemTime()
        >>> clock.set("2022-01-01 12:00:00")
        >>> clock.now(fallback=datetime.now(timezone.utc))
        datetime.datetime(2022, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
        >>> clock.set(None)
    """

    def __init__(self, value: Optional[str] = None, tz: tzinfo = timezone.utc) -> None:
        self.tz = tz
        self._value: Optional[str] = None
        if value:
            self.set(value)

    @property
    def value(self) -> Optional[str]:
        return self._value

    def set(self, value: Optional[str]) -> None:
        """Set or clear the override.

        Args:
            value: Timestamp text, or None / empty string to clear

        Raises:
            InvalidSystemTimeError: If the value is malformed
        """
        if not value:
            self._value = None
            return
        parse_system_time(value, self.tz)
        self._value = value

    def clear(self) -> None:
        self._value = None

    def now(self, fallback: datetime) -> datetime:
        if not self._value:
            return fallback
        try:
            return parse_system_time(self._value, self.tz)
        except InvalidSystemTimeError:
            logger.warning(
                f"Ignoring unparseable system time {self._value!r}",
                extra={"system_time": self._value},
            )
            return fallback

    @contextmanager
    def frozen_at(self, value: str) -> Iterator[SystemTime]:
        """Temporarily pin the clock, restoring the previous override."""
        previous = self._value
        self.set(value)
        try:
            yield self
        finally:
            self._value = previous


def set_session_system_time(connection: Any, value: Optional[str]) -> None:
    """Set the clock override of a PostgreSQL session.

    Generated trigger procedures read ``user_defined.system_time``; this is
    the server-side counterpart of SystemTime.set().

    Args:
        connection: SQLAlchemy connection
        value: Timestamp text, or None / empty string to clear

    Raises:
        InvalidSystemTimeError: If the value is malformed
    """
    if value:
        parse_system_time(value)
    connection.execute(
        text("SELECT set_config(:setting, :value, false)"),
        {"setting": SYSTEM_TIME_SETTING, "value": value or ""},
    )
    logger.debug(f"Session system time set to {value!r}")
