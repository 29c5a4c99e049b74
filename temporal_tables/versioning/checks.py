"""
Schema validation and column reconciliation shared by both engines.

The dynamic trigger calls these on every invocation; the static generator
calls them once, at generation time. Keeping a single implementation is
what makes the two engines raise the same errors with the same messages.

Invariants:
    - Common columns are the non-dropped columns present by name in both
      tables, minus the period column and (with increment_version) the
      version column, in current-table attribute order
    - Comparison columns fall back to every live current-table column
      (minus period and version) when there are no common columns

How to change safely:
    - Message text is mirrored in the generated PL/pgSQL; grep
      codegen.generator when rewording
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple
import logging

from ..catalog.base import (
    INTEGER,
    TIMESTAMPTZ,
    ColumnInfo,
    SchemaCatalog,
    TableRef,
    find_column,
    live_columns,
    resolve_table,
)
from ..errors import (
    DatatypeMismatchError,
    UndefinedColumnError,
    UndefinedTableError,
    UnsupportedComparisonError,
)
from .options import VersioningOptions

logger = logging.getLogger(__name__)

HISTORY_PERIOD_HINT = (
    "history relation must contain system period column with the same name "
    "and data type as the versioned one"
)


@dataclass(frozen=True)
class HistoryTarget:
    """Resolved pairing of a current table with its history table.

    Attributes:
        table: Current table
        history: History table
        period_type: Type of the period column (identical in both tables)
        common_columns: Columns archived into history
        comparison_columns: Columns compared by ignore_unchanged_values
    """
    table: TableRef
    history: TableRef
    period_type: str
    common_columns: Tuple[str, ...]
    comparison_columns: Tuple[str, ...]


def check_table_exists(catalog: SchemaCatalog, table: TableRef) -> None:
    if not catalog.table_exists(table):
        raise UndefinedTableError(str(table))


def check_period_column(catalog: SchemaCatalog, table: TableRef, column: str) -> ColumnInfo:
    """Validate the period column of the current table.

    Raises:
        UndefinedColumnError: If the column is missing
        DatatypeMismatchError: If it is an array, a non-range, or a range
            over something other than timestamptz
    """
    info = find_column(catalog, table, column)
    if info is None:
        raise UndefinedColumnError(
            f'column "{column}" of relation "{table}" does not exist',
            column=column,
            relation=str(table),
        )
    if info.is_array:
        raise DatatypeMismatchError(
            f'system period column "{column}" of relation "{table}" is not a range but an array',
            column=column,
            relation=str(table),
            type_name=info.type_name,
        )
    subtype = catalog.range_subtype(info.type_name)
    if subtype is None:
        raise DatatypeMismatchError(
            f'system period column "{column}" of relation "{table}" is not a range but type {info.type_name}',
            column=column,
            relation=str(table),
            type_name=info.type_name,
        )
    if subtype != TIMESTAMPTZ:
        raise DatatypeMismatchError(
            f'system period column "{column}" of relation "{table}" is not a range of '
            f"timestamp with timezone but of type {info.type_name}",
            column=column,
            relation=str(table),
            type_name=info.type_name,
        )
    return info


def check_version_column(catalog: SchemaCatalog, table: TableRef, column: str) -> ColumnInfo:
    """Validate a version counter column.

    Raises:
        UndefinedColumnError: If the column is missing
        DatatypeMismatchError: If the column is not an integer
    """
    info = find_column(catalog, table, column)
    if info is None:
        raise UndefinedColumnError(
            f'relation "{table}" does not contain version column "{column}"',
            column=column,
            relation=str(table),
        )
    if info.type_name != INTEGER or info.is_array:
        raise DatatypeMismatchError(
            f'version column "{column}" of relation "{table}" is not an integer',
            column=column,
            relation=str(table),
            type_name=info.type_name,
        )
    return info


def check_history_table(
    catalog: SchemaCatalog,
    history: TableRef,
    period: ColumnInfo,
    options: VersioningOptions,
) -> None:
    """Validate the history table against the current table's period column.

    Raises:
        UndefinedTableError: If the history relation does not exist
        UndefinedColumnError: If it lacks the period (or version) column
        DatatypeMismatchError: If its period column has another type
    """
    check_table_exists(catalog, history)
    history_period = find_column(catalog, history, period.name)
    if history_period is None:
        raise UndefinedColumnError(
            f'history relation "{history}" does not contain system period column "{period.name}"',
            column=period.name,
            relation=str(history),
            hint=HISTORY_PERIOD_HINT,
        )
    if history_period.type_name != period.type_name or history_period.is_array:
        raise DatatypeMismatchError(
            f'system period column "{period.name}" of history relation "{history}" '
            f"has type {history_period.type_name} but the versioned one has type {period.type_name}",
            column=period.name,
            relation=str(history),
            type_name=history_period.type_name,
        )
    if options.increment_version:
        check_version_column(catalog, history, options.version_column_name)


def excluded_columns(options: VersioningOptions) -> Tuple[str, ...]:
    if options.increment_version:
        return (options.sys_period, options.version_column_name)
    return (options.sys_period,)


def common_columns(
    catalog: SchemaCatalog,
    table: TableRef,
    history: TableRef,
    options: VersioningOptions,
) -> Tuple[str, ...]:
    """Columns archived into history, in current-table order."""
    excluded = excluded_columns(options)
    history_names = {column.name for column in live_columns(catalog, history)}
    return tuple(
        column.name
        for column in live_columns(catalog, table)
        if column.name in history_names and column.name not in excluded
    )


def comparison_columns(
    catalog: SchemaCatalog,
    table: TableRef,
    common: Tuple[str, ...],
    options: VersioningOptions,
) -> Tuple[str, ...]:
    if common:
        return common
    excluded = excluded_columns(options)
    return tuple(
        column.name for column in live_columns(catalog, table) if column.name not in excluded
    )


def check_comparable(catalog: SchemaCatalog, table: TableRef, columns: Tuple[str, ...]) -> None:
    """Ensure every compared column supports equality.

    Raises:
        UnsupportedComparisonError: On the first column that does not
    """
    types = {column.name: column.type_name for column in live_columns(catalog, table)}
    for name in columns:
        type_name = types[name]
        if not catalog.type_has_equality(type_name):
            raise UnsupportedComparisonError(name, type_name, str(table))


def check_matching_types(
    catalog: SchemaCatalog,
    table: TableRef,
    history: TableRef,
    columns: Tuple[str, ...],
) -> None:
    """Ensure archived columns have the same type in both tables.

    Raises:
        DatatypeMismatchError: On the first column whose types differ
    """
    history_types = {column.name: column.type_name for column in live_columns(catalog, history)}
    for column in live_columns(catalog, table):
        if column.name not in columns:
            continue
        if history_types[column.name] != column.type_name:
            raise DatatypeMismatchError(
                f'column "{column.name}" of relation "{table}" is of type {column.type_name} '
                f'but column "{column.name}" of history relation "{history}" is of type '
                f"{history_types[column.name]}",
                column=column.name,
                relation=str(history),
                type_name=history_types[column.name],
            )


def resolve_history_target(
    catalog: SchemaCatalog,
    table: TableRef,
    options: VersioningOptions,
    period: Optional[ColumnInfo] = None,
) -> HistoryTarget:
    """Validate the history table and reconcile column sets.

    Args:
        catalog: Catalog to read from
        table: Current table
        options: Versioning options naming the history table
        period: Already validated period column of ``table``

    Returns:
        HistoryTarget with freshly computed column lists
    """
    if period is None:
        period = check_period_column(catalog, table, options.sys_period)
    history = resolve_table(catalog, options.history_table)
    check_history_table(catalog, history, period, options)
    common = common_columns(catalog, table, history, options)
    if not common:
        logger.debug(
            f"No common columns between {table} and {history}",
            extra={"table": str(table), "history": str(history)},
        )
    return HistoryTarget(
        table=table,
        history=history,
        period_type=period.type_name,
        common_columns=common,
        comparison_columns=comparison_columns(catalog, table, common, options),
    )


def validate_current_table(
    catalog: SchemaCatalog,
    table: TableRef,
    options: VersioningOptions,
) -> ColumnInfo:
    """Checks made on the current table before any row work."""
    period = check_period_column(catalog, table, options.sys_period)
    if options.increment_version:
        check_version_column(catalog, table, options.version_column_name)
    return period

