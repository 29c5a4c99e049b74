"""
History statement builder.

The dynamic engine never concatenates SQL by hand. Each write it makes to
a history table is one of three statement objects built from the column
projection resolved for that invocation:

- InsertHistoryRow: archive a row image
- ClosePeriod: close the open history row of the current version
- HistoryRowExists: look for an open history row matching a row image

A backend either executes the object directly (storage.memory) or renders
it with ``to_sql()`` into parameterized PostgreSQL text (``$1, $2, ...``)
with identifiers quoted by quote_ident.

Invariants:
    - Column order in the rendered SQL follows the projection order
    - Matching uses IS NOT DISTINCT FROM semantics (NULL matches NULL)
    - An empty match list matches on the period alone

How to change safely:
    - Every backend dispatches on these classes; add new statement types
      to storage.memory and versioning.plpython together
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Sequence, Tuple, Union

from ..catalog.base import TableRef, quote_ident
from .period import Period

Projection = Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class Param:
    """Bound statement parameter.

    ``column`` names the history column the value is compared with or
    stored in, so that backends needing parameter types can look them up.
    """
    column: str
    value: Any


def project(row: Mapping[str, Any], columns: Sequence[str]) -> Projection:
    """Restrict a row image to ``columns``, in that order."""
    return tuple((name, row.get(name)) for name in columns)


def row_matches(row: Mapping[str, Any], match: Projection) -> bool:
    """``ROW(cols) IS NOT DISTINCT FROM ROW(values)`` for a stored row."""
    return all(row.get(name) == value for name, value in match)


def _match_clause(match: Projection, params: List[Param]) -> str:
    if not match:
        return ""
    columns = ", ".join(quote_ident(name) for name, _ in match)
    placeholders = []
    for name, value in match:
        params.append(Param(name, value))
        placeholders.append(f"${len(params)}")
    return f" AND ROW({columns}) IS NOT DISTINCT FROM ROW({', '.join(placeholders)})"


@dataclass(frozen=True)
class InsertHistoryRow:
    """INSERT one archived row image into a history table."""
    table: TableRef
    values: Projection

    def to_sql(self) -> Tuple[str, List[Param]]:
        params = [Param(name, value) for name, value in self.values]
        columns = ", ".join(quote_ident(name) for name, _ in self.values)
        placeholders = ", ".join(f"${i}" for i in range(1, len(params) + 1))
        return f"INSERT INTO {self.table.qualified} ({columns}) VALUES ({placeholders})", params


@dataclass(frozen=True)
class ClosePeriod:
    """Close the open history row that mirrors the current version.

    Matches rows whose period equals ``current`` and whose common columns
    equal ``match``, and sets their period to ``closed``.
    """
    table: TableRef
    period_column: str
    match: Projection
    current: Period
    closed: Period

    def to_sql(self) -> Tuple[str, List[Param]]:
        params = [Param(self.period_column, self.closed), Param(self.period_column, self.current)]
        period = quote_ident(self.period_column)
        sql = (
            f"UPDATE {self.table.qualified} SET {period} = $1 "
            f"WHERE {period} = $2" + _match_clause(self.match, params)
        )
        return sql, params

    def applies_to(self, row: Mapping[str, Any]) -> bool:
        return row.get(self.period_column) == self.current and row_matches(row, self.match)


@dataclass(frozen=True)
class HistoryRowExists:
    """Probe for an open-ended history row matching a row image."""
    table: TableRef
    period_column: str
    match: Projection

    def to_sql(self) -> Tuple[str, List[Param]]:
        params: List[Param] = []
        sql = (
            f"SELECT EXISTS (SELECT 1 FROM {self.table.qualified} "
            f"WHERE upper_inf({quote_ident(self.period_column)})"
            + _match_clause(self.match, params)
            + ") AS present"
        )
        return sql, params

    def applies_to(self, row: Mapping[str, Any]) -> bool:
        period = row.get(self.period_column)
        return isinstance(period, Period) and period.upper_inf and row_matches(row, self.match)


HistoryStatement = Union[InsertHistoryRow, ClosePeriod, HistoryRowExists]
