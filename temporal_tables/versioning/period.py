"""
Validity interval value type.

A Period is a half-open ``[lower, upper)`` range of aware timestamps, the
Python counterpart of a PostgreSQL ``tstzrange`` built with ``'[)'``
bounds. ``None`` on either side means unbounded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import re

_INFINITE_LOWER = {"", "-infinity"}
_INFINITE_UPPER = {"", "infinity"}

_RANGE_LITERAL = re.compile(
    r'^\s*(?P<lb>[\[(])\s*(?P<lower>"(?:[^"\\]|\\.)*"|[^,]*?)\s*,'
    r'\s*(?P<upper>"(?:[^"\\]|\\.)*"|[^)\]]*?)\s*(?P<ub>[\])])\s*$'
)
_SHORT_OFFSET = re.compile(r"([+-]\d{2})$")
_FRACTION = re.compile(r"\.(\d{1,6})(?=[+-]|$)")


def _parse_bound(raw: str, infinite: set) -> Optional[datetime]:
    if raw.startswith('"'):
        raw = raw[1:-1].replace('\\"', '"')
    if raw.lower() in infinite:
        return None
    # PostgreSQL prints "+00" where fromisoformat wants "+00:00"
    raw = _SHORT_OFFSET.sub(r"\1:00", raw)
    # Trailing zeros of the fraction are trimmed; Python 3.10 needs 3 or 6 digits
    raw = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0"), raw)
    return datetime.fromisoformat(raw)


@dataclass(frozen=True)
class Period:
    """Half-open validity interval.

    Attributes:
        lower: Inclusive lower bound, None for unbounded
        upper: Exclusive upper bound, None for unbounded
        empty: True for the empty range
    """
    lower: Optional[datetime] = None
    upper: Optional[datetime] = None
    empty: bool = False

    def __post_init__(self) -> None:
        if self.empty:
            return
        if self.lower is not None and self.upper is not None:
            if self.lower > self.upper:
                raise ValueError(
                    "range lower bound must be less than or equal to range upper bound"
                )
            if self.lower == self.upper:
                object.__setattr__(self, "empty", True)

    @classmethod
    def starting(cls, lower: Optional[datetime]) -> Period:
        """Open-ended period ``[lower, ∞)``."""
        return cls(lower, None)

    @classmethod
    def closed(cls, lower: Optional[datetime], upper: datetime) -> Period:
        return cls(lower, upper)

    @property
    def upper_inf(self) -> bool:
        return not self.empty and self.upper is None

    @property
    def lower_inf(self) -> bool:
        return not self.empty and self.lower is None

    @property
    def is_current(self) -> bool:
        """Non-empty and open-ended: the shape of a live current row."""
        return self.upper_inf

    def contains(self, instant: datetime) -> bool:
        if self.empty:
            return False
        if self.lower is not None and instant < self.lower:
            return False
        return self.upper is None or instant < self.upper

    @classmethod
    def parse(cls, text: str) -> Period:
        """Parse a PostgreSQL range literal.

        Raises:
            ValueError: If the text is not a range literal
        """
        if text.strip().lower() == "empty":
            return cls(empty=True)
        match = _RANGE_LITERAL.match(text)
        if match is None:
            raise ValueError(f"malformed range literal: {text!r}")
        return cls(
            _parse_bound(match.group("lower"), _INFINITE_LOWER),
            _parse_bound(match.group("upper"), _INFINITE_UPPER),
        )

    def __str__(self) -> str:
        if self.empty:
            return "empty"
        lower = f'["{self.lower.isoformat(sep=" ")}"' if self.lower is not None else "("
        upper = f'"{self.upper.isoformat(sep=" ")}")' if self.upper is not None else ")"
        return f"{lower},{upper}"
