"""
Row-versioning trigger procedures.

This module implements the archive-then-advance protocol that keeps a
history table next to every versioned table. Two procedures share it:

- VersioningTrigger: the dynamic engine. Reads its options from the
  trigger arguments and introspects the schema on every invocation, so it
  is always correct after a schema change.
- CompiledVersioningTrigger: the same protocol with options and column
  lists fixed ahead of time by codegen.generator. No catalog reads per row.

Per-row flow (UPDATE shown, INSERT/DELETE are subsets):

    clock ──> effective time
    OLD, NEW ──> [version read] ──> [unchanged?] ──> [same txn?]
        ──> [period valid? conflict?] ──> archive OLD into history
        ──> NEW with period [now, ∞) (and version + 1)

Invariants:
    - Per row, period lower bounds strictly increase; a write that would
      break this raises UpdateConflictError unless mitigation is enabled
    - Every UPDATE/DELETE archives exactly one closed history row, except
      for the two documented no-ops (unchanged values, same transaction)
    - Archived values equal the pre-write values of the common columns

How to change safely:
    - Any behavioral change must be mirrored in the PL/pgSQL emitted by
      codegen.generator; the integration tests run both procedures over
      the same scenarios
    - Never cache column lists in VersioningTrigger
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional
import logging

from ..catalog.base import ColumnInfo
from ..clock import ONE_MICROSECOND, Clock, SystemClock
from ..errors import (
    InvalidPeriodError,
    NullValueError,
    TriggerProtocolError,
    UpdateConflictError,
)
from .checks import (
    HistoryTarget,
    check_comparable,
    resolve_history_target,
    validate_current_table,
)
from .options import VersioningOptions
from .period import Period
from .statements import ClosePeriod, HistoryRowExists, InsertHistoryRow, Projection, project
from .trigger import (
    ROW_OPERATIONS,
    Row,
    TriggerEvent,
    TriggerLevel,
    TriggerOperation,
    TriggerTiming,
)

logger = logging.getLogger(__name__)

INVALID_PERIOD_HINT = "valid ranges must be non-empty and unbounded on the high side"


@dataclass(frozen=True)
class VersioningPlan:
    """Everything a compiled procedure needs, resolved at generation time."""
    options: VersioningOptions
    target: HistoryTarget


class VersioningProcedure:
    """Base class holding the archive-then-advance protocol.

    Subclasses decide where options and column lists come from.

    Args:
        clock: Source of the effective time; defaults to the transaction
            timestamp
    """

    function_name = "versioning"

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    def __call__(self, event: TriggerEvent) -> Optional[Row]:
        return self.fire(event)

    def fire(self, event: TriggerEvent) -> Optional[Row]:
        """Run the protocol for one row.

        Returns:
            The row to write (INSERT/UPDATE), or OLD to let a DELETE proceed

        Raises:
            MisconfigurationError: Trigger or tables set up wrong
            DataInvariantError: Existing row carries an invalid period or
                version
            UpdateConflictError: Effective time not after the row's period
            UnsupportedComparisonError: Change detection over a type
                without equality
        """
        now = self.clock.now(event.transaction_timestamp)
        self.check_protocol(event)
        options = self.options_for(event)
        period = self.check_current_table(event, options)
        return self._version_row(
            event,
            options,
            now,
            lambda: self.history_target(event, options, period),
        )

    # Hooks

    def options_for(self, event: TriggerEvent) -> VersioningOptions:
        raise NotImplementedError

    def check_current_table(
        self, event: TriggerEvent, options: VersioningOptions
    ) -> Optional[ColumnInfo]:
        raise NotImplementedError

    def history_target(
        self,
        event: TriggerEvent,
        options: VersioningOptions,
        period: Optional[ColumnInfo],
    ) -> HistoryTarget:
        raise NotImplementedError

    def check_comparable(self, event: TriggerEvent, target: HistoryTarget) -> None:
        raise NotImplementedError

    # Protocol

    def check_protocol(self, event: TriggerEvent) -> None:
        if event.timing != TriggerTiming.BEFORE or event.level != TriggerLevel.ROW:
            raise TriggerProtocolError(
                f'function "{self.function_name}" must be fired BEFORE ROW',
                details={"timing": str(event.timing), "level": str(event.level)},
            )
        if event.operation not in ROW_OPERATIONS:
            raise TriggerProtocolError(
                f'function "{self.function_name}" must be fired for INSERT or UPDATE or DELETE',
                details={"operation": str(event.operation)},
            )

    def _version_row(
        self,
        event: TriggerEvent,
        options: VersioningOptions,
        now: datetime,
        resolve_target: Callable[[], HistoryTarget],
    ) -> Optional[Row]:
        operation = event.operation
        old: Mapping[str, Any] = event.old or {}
        new: Mapping[str, Any] = event.new or {}
        backend = event.backend
        include_current = options.include_current_version_in_history

        existing_version: Optional[int] = None
        if options.increment_version:
            if operation == TriggerOperation.INSERT:
                existing_version = 0
            else:
                existing_version = old.get(options.version_column_name)
                if existing_version is None:
                    raise NullValueError(
                        f'version column "{options.version_column_name}" of relation '
                        f'"{event.table}" must not be null',
                        details={"column": options.version_column_name, "relation": str(event.table)},
                    )

        target: Optional[HistoryTarget] = None
        if options.ignore_unchanged_values and operation == TriggerOperation.UPDATE:
            target = resolve_target()
            self.check_comparable(event, target)
            if project(old, target.comparison_columns) == project(new, target.comparison_columns):
                logger.debug(
                    f"Skipping unchanged update on {event.table}",
                    extra={"table": str(event.table)},
                )
                return dict(old)

        if operation != TriggerOperation.INSERT or include_current:
            if (
                not include_current
                and event.old_xmin is not None
                and event.old_xmin == backend.current_transaction_id()
            ):
                logger.debug(
                    f"Row of {event.table} already versioned in this transaction",
                    extra={"table": str(event.table), "xmin": event.old_xmin},
                )
                return dict(old) if operation == TriggerOperation.DELETE else dict(new)

            if target is None:
                target = resolve_target()
            sys_period = options.sys_period

            if operation != TriggerOperation.INSERT:
                existing = self._existing_period(event, sys_period)
                range_lower = existing.lower
                if range_lower is not None and range_lower >= now:
                    if not options.mitigate_update_conflicts:
                        raise UpdateConflictError(
                            f'system period value of relation "{event.table}" cannot be set to a '
                            "valid period because a row that is attempted to modify was also "
                            "modified by another transaction",
                            details={
                                "relation": str(event.table),
                                "lower": range_lower.isoformat(),
                                "effective_time": now.isoformat(),
                            },
                        )
                    now = range_lower + ONE_MICROSECOND

                archived = Period(range_lower, now)
                old_image = project(old, target.common_columns)
                archived_row = old_image + ((sys_period, archived),) + self._version_value(
                    options, existing_version
                )

                if options.migrates:
                    probe = HistoryRowExists(target.history, sys_period, old_image)
                    if not backend.execute(probe):
                        logger.info(
                            f"Backfilling current version of {event.table} into {target.history}",
                            extra={"table": str(event.table), "history": str(target.history)},
                        )
                        backend.execute(InsertHistoryRow(target.history, archived_row))

                if include_current:
                    backend.execute(
                        ClosePeriod(target.history, sys_period, old_image, existing, archived)
                    )
                else:
                    backend.execute(InsertHistoryRow(target.history, archived_row))

            if include_current and operation != TriggerOperation.DELETE:
                current_row = (
                    project(new, target.common_columns)
                    + ((sys_period, Period.starting(now)),)
                    + self._version_value(options, None if existing_version is None else existing_version + 1)
                )
                backend.execute(InsertHistoryRow(target.history, current_row))

        if operation == TriggerOperation.DELETE:
            return dict(old)
        result = dict(new)
        result[options.sys_period] = Period.starting(now)
        if options.increment_version:
            result[options.version_column_name] = existing_version + 1
        return result

    @staticmethod
    def _version_value(options: VersioningOptions, value: Optional[int]) -> Projection:
        if not options.increment_version:
            return ()
        return ((options.version_column_name, value),)

    @staticmethod
    def _existing_period(event: TriggerEvent, sys_period: str) -> Period:
        value = (event.old or {}).get(sys_period)
        if value is None:
            raise NullValueError(
                f'system period column "{sys_period}" of relation "{event.table}" must not be null',
                details={"column": sys_period, "relation": str(event.table)},
            )
        if isinstance(value, str):
            value = Period.parse(value)
        if not isinstance(value, Period) or not value.is_current:
            raise InvalidPeriodError(
                f'system period column "{sys_period}" of relation "{event.table}" contains invalid value',
                details={"column": sys_period, "relation": str(event.table), "value": str(value)},
                hint=INVALID_PERIOD_HINT,
            )
        return value


class VersioningTrigger(VersioningProcedure):
    """Dynamic versioning trigger.

    Arguments are positional text, as given at trigger creation:
    ``sys_period, history_table[, mitigate_update_conflicts
    [, ignore_unchanged_values[, include_current_version_in_history
    [, enable_migration_mode[, increment_version[, version_column_name]]]]]]``.

    Example:
        >>> db.create_trigger(
        ...     "users", "versioning_trigger", VersioningTrigger(),
        ...     args=("sys_period", "users_history", "true"),
        ... )
    """

    def options_for(self, event: TriggerEvent) -> VersioningOptions:
        return VersioningOptions.from_trigger_args(event.args, self.function_name)

    def check_current_table(
        self, event: TriggerEvent, options: VersioningOptions
    ) -> Optional[ColumnInfo]:
        return validate_current_table(event.backend.catalog, event.table, options)

    def history_target(
        self,
        event: TriggerEvent,
        options: VersioningOptions,
        period: Optional[ColumnInfo],
    ) -> HistoryTarget:
        return resolve_history_target(event.backend.catalog, event.table, options, period)

    def check_comparable(self, event: TriggerEvent, target: HistoryTarget) -> None:
        check_comparable(event.backend.catalog, event.table, target.comparison_columns)


class CompiledVersioningTrigger(VersioningProcedure):
    """Versioning trigger specialized for one table.

    Built by codegen.generator.GeneratedTrigger.procedure(); everything the
    dynamic trigger looks up per row is fixed in ``plan``. Trigger
    arguments are ignored.
    """

    def __init__(self, plan: VersioningPlan, clock: Optional[Clock] = None) -> None:
        super().__init__(clock)
        self.plan = plan
        self.function_name = f"{plan.target.table.name}_versioning"

    def check_protocol(self, event: TriggerEvent) -> None:
        super().check_protocol(event)
        if event.table != self.plan.target.table:
            raise TriggerProtocolError(
                f'function "{self.function_name}" was generated for relation '
                f'"{self.plan.target.table}" but fired on "{event.table}"',
                details={"expected": str(self.plan.target.table), "actual": str(event.table)},
            )

    def options_for(self, event: TriggerEvent) -> VersioningOptions:
        return self.plan.options

    def check_current_table(
        self, event: TriggerEvent, options: VersioningOptions
    ) -> Optional[ColumnInfo]:
        return None

    def history_target(
        self,
        event: TriggerEvent,
        options: VersioningOptions,
        period: Optional[ColumnInfo],
    ) -> HistoryTarget:
        return self.plan.target

    def check_comparable(self, event: TriggerEvent, target: HistoryTarget) -> None:
        # Checked when the plan was generated
        return None


versioning = VersioningTrigger()
