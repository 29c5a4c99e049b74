"""
In-memory relational backend for testing.

This module provides a small row store that behaves like the parts of
PostgreSQL the versioning triggers rely on:
- Tables with attribute positions, dropped columns and defaults
- Transactions with ids, a fixed start timestamp and rollback
- Per-row ``xmin`` (id of the transaction that last wrote the row)
- BEFORE/AFTER, ROW/STATEMENT triggers fired in name order
- A schema catalog, and ALTER TABLE events published on an EventBus

It is used for:
- Unit and integration tests of both versioning engines
- Local development without a database server

Invariants:
    - All data is lost on process exit
    - A BEFORE ROW trigger returning None skips the row
    - DDL is not transactional; only row contents are rolled back
    - Thread-safe through a single re-entrant lock

How to change safely:
    - Keep behavior aligned with PostgreSQL where tests depend on it
    - Keep the catalog methods compatible with catalog.base.SchemaCatalog
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import singledispatchmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)
import itertools
import logging
import threading

from ..catalog.base import TIMESTAMPTZ, ColumnInfo, TableRef, resolve_table
from ..clock import Clock, SystemTime
from ..errors import TemporalTablesError, UndefinedColumnError, UndefinedTableError
from ..events import EventBus, SchemaAltered
from ..versioning.period import Period
from ..versioning.statements import ClosePeriod, HistoryRowExists, InsertHistoryRow
from ..versioning.trigger import (
    Row,
    TriggerEvent,
    TriggerLevel,
    TriggerOperation,
    TriggerTiming,
)

if TYPE_CHECKING:
    from ..codegen.generator import GeneratedTrigger

logger = logging.getLogger(__name__)

RANGE_SUBTYPES: Dict[str, str] = {
    "tstzrange": TIMESTAMPTZ,
    "tsrange": "timestamp without time zone",
    "daterange": "date",
    "int4range": "integer",
    "int8range": "bigint",
    "numrange": "numeric",
}

# Types PostgreSQL defines no "=" operator for
DEFAULT_INCOMPARABLE_TYPES: FrozenSet[str] = frozenset({"json", "xml", "point"})

TYPE_ALIASES: Dict[str, str] = {
    "int": "integer",
    "int4": "integer",
    "int2": "smallint",
    "int8": "bigint",
    "bool": "boolean",
    "varchar": "character varying",
    "float4": "real",
    "float8": "double precision",
    "timestamptz": TIMESTAMPTZ,
    "timestamp": "timestamp without time zone",
}

ALL_ROW_OPERATIONS: FrozenSet[TriggerOperation] = frozenset(
    {TriggerOperation.INSERT, TriggerOperation.UPDATE, TriggerOperation.DELETE}
)

Where = Union[None, Mapping[str, Any], Callable[[Row], bool]]


class DuplicateObjectError(TemporalTablesError):
    """Object (table, trigger) already exists."""

    code = "42710"


class NoActiveTransactionError(TemporalTablesError):
    """Operation requires an open transaction."""

    code = "25P01"


def normalize_type(type_name: str) -> str:
    """Spell a type name the way format_type() would."""
    name = " ".join(type_name.strip().lower().split())
    suffix = ""
    while name.endswith("[]"):
        name = name[:-2].rstrip()
        suffix += "[]"
    return TYPE_ALIASES.get(name, name) + suffix


def current_period(db: InMemoryDatabase) -> Period:
    """Column default ``tstzrange(current_timestamp, null)``."""
    return Period.starting(db.transaction_timestamp())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MemoryColumn:
    """Column definition of an in-memory table."""
    name: str
    type_name: str
    position: int
    default: Any = None
    dropped: bool = False

    def info(self) -> ColumnInfo:
        return ColumnInfo(
            name=self.name,
            type_name=self.type_name,
            position=self.position,
            dimensions=self.type_name.count("[]"),
            dropped=self.dropped,
        )


@dataclass
class StoredRow:
    values: Dict[str, Any]
    xmin: int


@dataclass(frozen=True)
class InstalledTrigger:
    """Trigger bound to a table."""
    name: str
    procedure: Callable[[TriggerEvent], Optional[Row]]
    timing: TriggerTiming = TriggerTiming.BEFORE
    level: TriggerLevel = TriggerLevel.ROW
    operations: FrozenSet[TriggerOperation] = ALL_ROW_OPERATIONS
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InstalledFunction:
    """Procedure installed from generated source."""
    name: TableRef
    procedure: Callable[[TriggerEvent], Optional[Row]]
    source: str


@dataclass
class MemoryTable:
    ref: TableRef
    columns: List[MemoryColumn] = field(default_factory=list)
    rows: List[StoredRow] = field(default_factory=list)
    triggers: Dict[str, InstalledTrigger] = field(default_factory=dict)

    def live_columns(self) -> List[MemoryColumn]:
        return [column for column in self.columns if not column.dropped]

    def column(self, name: str) -> Optional[MemoryColumn]:
        for column in self.columns:
            if column.name == name and not column.dropped:
                return column
        return None

    def next_position(self) -> int:
        return len(self.columns) + 1


@dataclass
class MemoryTransaction:
    id: int
    timestamp: datetime
    snapshot: Dict[TableRef, List[StoredRow]]


class InMemoryDatabase:
    """In-memory implementation of VersioningBackend, TriggerInstaller and
    SchemaCatalog for testing.

    Args:
        clock: Clock given to installed generated procedures; plays the
            part of the ``user_defined.system_time`` session setting
        now: Source of transaction start timestamps
        events: Bus receiving SchemaAltered after structural changes
        search_schema: Schema unqualified names resolve to
        incomparable_types: Types reported as lacking equality

    Example:
        >>> db = InMemoryDatabase()
        >>> db.create_table("users", [("id", "integer"), ("sys_period", "tstzrange", current_period)])
        >>> db.create_table_like("users_history", "users")
        >>> db.create_trigger("users", "versioning_trigger", VersioningTrigger(),
        ...                   args=("sys_period", "users_history", "true"))
        >>> db.insert("users", {"id": 1})
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        now: Optional[Callable[[], datetime]] = None,
        events: Optional[EventBus] = None,
        search_schema: str = "public",
        incomparable_types: FrozenSet[str] = DEFAULT_INCOMPARABLE_TYPES,
    ) -> None:
        self.clock = clock or SystemTime()
        self.events = events
        self.search_schema = search_schema
        self.incomparable_types = incomparable_types
        self.functions: Dict[TableRef, InstalledFunction] = {}
        self._now = now or _utcnow
        self._tables: Dict[TableRef, MemoryTable] = {}
        self._txids = itertools.count(1000)
        self._tx: Optional[MemoryTransaction] = None
        self._lock = threading.RLock()

    # ---------------------------------------------------------------
    # SchemaCatalog
    # ---------------------------------------------------------------

    @property
    def catalog(self) -> InMemoryDatabase:
        return self

    def current_schema(self) -> str:
        return self.search_schema

    def table_exists(self, table: TableRef) -> bool:
        return table in self._tables

    def columns(self, table: TableRef) -> List[ColumnInfo]:
        if table not in self._tables:
            return []
        return [column.info() for column in self._tables[table].columns]

    def type_has_equality(self, type_name: str) -> bool:
        return normalize_type(type_name).rstrip("[]") not in self.incomparable_types

    def range_subtype(self, type_name: str) -> Optional[str]:
        return RANGE_SUBTYPES.get(normalize_type(type_name))

    # ---------------------------------------------------------------
    # DDL
    # ---------------------------------------------------------------

    def create_table(
        self,
        name: Union[str, TableRef],
        columns: Sequence[Union[Tuple[str, str], Tuple[str, str, Any]]],
    ) -> TableRef:
        """Create a table.

        Args:
            name: Table name, optionally schema-qualified
            columns: ``(name, type)`` or ``(name, type, default)`` tuples;
                a callable default is called with the database

        Raises:
            DuplicateObjectError: If the table exists
        """
        with self._lock:
            ref = resolve_table(self, name)
            if ref in self._tables:
                raise DuplicateObjectError(f'relation "{ref}" already exists')
            table = MemoryTable(ref)
            for spec in columns:
                column_name, type_name = spec[0], spec[1]
                default = spec[2] if len(spec) > 2 else None
                table.columns.append(
                    MemoryColumn(column_name, normalize_type(type_name), table.next_position(), default)
                )
            self._tables[ref] = table
            logger.debug(f"Created table {ref}", extra={"table": str(ref)})
            return ref

    def create_table_like(
        self,
        name: Union[str, TableRef],
        source: Union[str, TableRef],
        exclude: Sequence[str] = (),
    ) -> TableRef:
        """``CREATE TABLE name (LIKE source)`` without defaults."""
        table = self._table(source)
        return self.create_table(
            name,
            [(c.name, c.type_name) for c in table.live_columns() if c.name not in exclude],
        )

    def drop_table(self, name: Union[str, TableRef]) -> None:
        with self._lock:
            ref = self._table(name).ref
            del self._tables[ref]

    def add_column(
        self,
        table: Union[str, TableRef],
        name: str,
        type_name: str,
        default: Any = None,
    ) -> None:
        with self._lock:
            t = self._table(table)
            if t.column(name) is not None:
                raise DuplicateObjectError(f'column "{name}" of relation "{t.ref}" already exists')
            column = MemoryColumn(name, normalize_type(type_name), t.next_position(), default)
            t.columns.append(column)
            for row in t.rows:
                row.values[name] = self._default_value(column)
            self._altered(t.ref)

    def drop_column(self, table: Union[str, TableRef], name: str) -> None:
        with self._lock:
            t = self._table(table)
            column = self._column(t, name)
            column.dropped = True
            column.name = f"........pg.dropped.{column.position}........"
            for row in t.rows:
                row.values.pop(name, None)
            self._altered(t.ref)

    def rename_column(self, table: Union[str, TableRef], name: str, new_name: str) -> None:
        with self._lock:
            t = self._table(table)
            column = self._column(t, name)
            if t.column(new_name) is not None:
                raise DuplicateObjectError(f'column "{new_name}" of relation "{t.ref}" already exists')
            column.name = new_name
            for row in t.rows:
                row.values[new_name] = row.values.pop(name, None)
            self._altered(t.ref)

    def alter_column_type(self, table: Union[str, TableRef], name: str, type_name: str) -> None:
        with self._lock:
            t = self._table(table)
            self._column(t, name).type_name = normalize_type(type_name)
            self._altered(t.ref)

    def create_trigger(
        self,
        table: Union[str, TableRef],
        name: str,
        procedure: Callable[[TriggerEvent], Optional[Row]],
        timing: TriggerTiming = TriggerTiming.BEFORE,
        level: TriggerLevel = TriggerLevel.ROW,
        operations: Sequence[TriggerOperation] = tuple(ALL_ROW_OPERATIONS),
        args: Sequence[str] = (),
        replace: bool = False,
    ) -> InstalledTrigger:
        with self._lock:
            t = self._table(table)
            if name in t.triggers and not replace:
                raise DuplicateObjectError(f'trigger "{name}" for relation "{t.ref}" already exists')
            trigger = InstalledTrigger(
                name=name,
                procedure=procedure,
                timing=TriggerTiming(timing),
                level=TriggerLevel(level),
                operations=frozenset(TriggerOperation(op) for op in operations),
                args=tuple(args),
            )
            t.triggers[name] = trigger
            return trigger

    def drop_trigger(self, table: Union[str, TableRef], name: str, if_exists: bool = False) -> None:
        with self._lock:
            t = self._table(table)
            if name not in t.triggers:
                if if_exists:
                    return
                raise UndefinedTableError(
                    str(t.ref), f'trigger "{name}" for table "{t.ref}" does not exist'
                )
            del t.triggers[name]

    def trigger(self, table: Union[str, TableRef], name: str) -> Optional[InstalledTrigger]:
        return self._table(table).triggers.get(name)

    # ---------------------------------------------------------------
    # TriggerInstaller
    # ---------------------------------------------------------------

    def install_generated_trigger(self, generated: GeneratedTrigger) -> None:
        """Install a generated procedure and (re)bind its trigger.

        The procedure runs as a CompiledVersioningTrigger using this
        database's clock.
        """
        with self._lock:
            t = self._table(generated.table)
            procedure = generated.procedure(self.clock)
            self.functions[generated.function_name] = InstalledFunction(
                generated.function_name, procedure, generated.sql
            )
            t.triggers[generated.trigger_name] = InstalledTrigger(
                name=generated.trigger_name, procedure=procedure
            )
            logger.info(
                f"Installed {generated.trigger_name} on {t.ref}",
                extra={"table": str(t.ref), "function": str(generated.function_name)},
            )

    # ---------------------------------------------------------------
    # Transactions
    # ---------------------------------------------------------------

    def begin(self) -> MemoryTransaction:
        with self._lock:
            if self._tx is not None:
                raise TemporalTablesError("there is already a transaction in progress", code="25001")
            snapshot = {
                ref: [StoredRow(dict(row.values), row.xmin) for row in table.rows]
                for ref, table in self._tables.items()
            }
            self._tx = MemoryTransaction(next(self._txids), self._now(), snapshot)
            return self._tx

    def commit(self) -> None:
        with self._lock:
            self._require_transaction()
            self._tx = None

    def rollback(self) -> None:
        with self._lock:
            tx = self._require_transaction()
            for ref, rows in tx.snapshot.items():
                if ref in self._tables:
                    self._tables[ref].rows = rows
            self._tx = None
            logger.debug(f"Rolled back transaction {tx.id}")

    @contextmanager
    def transaction(self) -> Iterator[MemoryTransaction]:
        """Run a block in a transaction, joining one already open."""
        with self._lock:
            if self._tx is not None:
                yield self._tx
                return
            tx = self.begin()
            try:
                yield tx
            except BaseException:
                self.rollback()
                raise
            self.commit()

    def current_transaction_id(self) -> int:
        return self._require_transaction().id % (2 ** 32)

    def transaction_timestamp(self) -> datetime:
        return self._require_transaction().timestamp

    # ---------------------------------------------------------------
    # DML
    # ---------------------------------------------------------------

    def insert(self, table: Union[str, TableRef], values: Optional[Mapping[str, Any]] = None) -> Optional[Row]:
        """Insert one row, firing triggers.

        Returns:
            The stored row, or None if a trigger skipped it
        """
        with self._lock, self.transaction() as tx:
            t = self._table(table)
            self._check_columns(t, values or {})
            self._fire_statement(t, TriggerTiming.BEFORE, TriggerOperation.INSERT)
            new = {column.name: self._default_value(column) for column in t.live_columns()}
            new.update(self._coerce(t, values or {}))
            result = self._fire_before_row(t, TriggerOperation.INSERT, None, new, None, tx)
            stored = None
            if result is not None:
                stored = StoredRow(self._conform(t, result), tx.id)
                t.rows.append(stored)
                self._fire_after_row(t, TriggerOperation.INSERT, None, stored.values, tx)
            self._fire_statement(t, TriggerTiming.AFTER, TriggerOperation.INSERT)
            return dict(stored.values) if stored is not None else None

    def update(
        self,
        table: Union[str, TableRef],
        changes: Mapping[str, Any],
        where: Where = None,
    ) -> int:
        """Update matching rows, firing triggers.

        Args:
            table: Target table
            changes: Column values; a callable is called with the old row
            where: Column equality mapping or row predicate; None for all

        Returns:
            Number of rows updated
        """
        with self._lock, self.transaction() as tx:
            t = self._table(table)
            self._check_columns(t, changes)
            self._fire_statement(t, TriggerTiming.BEFORE, TriggerOperation.UPDATE)
            count = 0
            for stored in list(t.rows):
                if not self._matches(stored.values, where):
                    continue
                old = dict(stored.values)
                new = dict(old)
                for name, value in changes.items():
                    new[name] = value(old) if callable(value) else value
                new = {**new, **self._coerce(t, {k: new[k] for k in changes})}
                result = self._fire_before_row(t, TriggerOperation.UPDATE, old, new, stored.xmin, tx)
                if result is None:
                    continue
                stored.values = self._conform(t, result)
                stored.xmin = tx.id
                count += 1
                self._fire_after_row(t, TriggerOperation.UPDATE, old, stored.values, tx)
            self._fire_statement(t, TriggerTiming.AFTER, TriggerOperation.UPDATE)
            return count

    def delete(self, table: Union[str, TableRef], where: Where = None) -> int:
        """Delete matching rows, firing triggers.

        Returns:
            Number of rows deleted
        """
        with self._lock, self.transaction() as tx:
            t = self._table(table)
            self._fire_statement(t, TriggerTiming.BEFORE, TriggerOperation.DELETE)
            count = 0
            for stored in list(t.rows):
                if not self._matches(stored.values, where):
                    continue
                old = dict(stored.values)
                result = self._fire_before_row(t, TriggerOperation.DELETE, old, None, stored.xmin, tx)
                if result is None:
                    continue
                t.rows.remove(stored)
                count += 1
                self._fire_after_row(t, TriggerOperation.DELETE, old, None, tx)
            self._fire_statement(t, TriggerTiming.AFTER, TriggerOperation.DELETE)
            return count

    def truncate(self, table: Union[str, TableRef]) -> None:
        with self._lock, self.transaction():
            t = self._table(table)
            self._fire_statement(t, TriggerTiming.BEFORE, TriggerOperation.TRUNCATE)
            t.rows = []
            self._fire_statement(t, TriggerTiming.AFTER, TriggerOperation.TRUNCATE)

    def select(
        self,
        table: Union[str, TableRef],
        where: Where = None,
        order_by: Optional[Callable[[Row], Any]] = None,
    ) -> List[Row]:
        """Return copies of matching rows (live columns only)."""
        with self._lock:
            t = self._table(table)
            rows = [dict(row.values) for row in t.rows if self._matches(row.values, where)]
            if order_by is not None:
                rows.sort(key=order_by)
            return rows

    def xmin(self, table: Union[str, TableRef], where: Where = None) -> List[int]:
        with self._lock:
            t = self._table(table)
            return [row.xmin for row in t.rows if self._matches(row.values, where)]

    # ---------------------------------------------------------------
    # VersioningBackend
    # ---------------------------------------------------------------

    @singledispatchmethod
    def execute(self, statement: Any) -> Any:
        raise TypeError(f"unsupported statement: {type(statement).__name__}")

    @execute.register
    def _(self, statement: InsertHistoryRow) -> int:
        return 0 if self.insert(statement.table, dict(statement.values)) is None else 1

    @execute.register
    def _(self, statement: ClosePeriod) -> int:
        return self.update(
            statement.table,
            {statement.period_column: statement.closed},
            where=statement.applies_to,
        )

    @execute.register
    def _(self, statement: HistoryRowExists) -> bool:
        with self._lock:
            t = self._table(statement.table)
            return any(statement.applies_to(row.values) for row in t.rows)

    # ---------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------

    def _table(self, name: Union[str, TableRef]) -> MemoryTable:
        ref = resolve_table(self, name)
        table = self._tables.get(ref)
        if table is None:
            raise UndefinedTableError(str(ref))
        return table

    @staticmethod
    def _column(table: MemoryTable, name: str) -> MemoryColumn:
        column = table.column(name)
        if column is None:
            raise UndefinedColumnError(
                f'column "{name}" of relation "{table.ref}" does not exist',
                column=name,
                relation=str(table.ref),
            )
        return column

    def _check_columns(self, table: MemoryTable, values: Mapping[str, Any]) -> None:
        for name in values:
            self._column(table, name)

    def _default_value(self, column: MemoryColumn) -> Any:
        if callable(column.default):
            return column.default(self)
        return column.default

    def _coerce(self, table: MemoryTable, values: Mapping[str, Any]) -> Dict[str, Any]:
        result = dict(values)
        for name, value in values.items():
            column = table.column(name)
            if column is not None and isinstance(value, str) and column.type_name in RANGE_SUBTYPES:
                result[name] = Period.parse(value)
        return result

    @staticmethod
    def _conform(table: MemoryTable, row: Mapping[str, Any]) -> Dict[str, Any]:
        return {column.name: row.get(column.name) for column in table.live_columns()}

    @staticmethod
    def _matches(row: Mapping[str, Any], where: Where) -> bool:
        if where is None:
            return True
        if callable(where):
            return bool(where(dict(row)))
        return all(row.get(name) == value for name, value in where.items())

    def _require_transaction(self) -> MemoryTransaction:
        if self._tx is None:
            raise NoActiveTransactionError("no transaction in progress")
        return self._tx

    def _triggers(
        self,
        table: MemoryTable,
        timing: TriggerTiming,
        level: TriggerLevel,
        operation: TriggerOperation,
    ) -> List[InstalledTrigger]:
        return [
            trigger
            for _, trigger in sorted(table.triggers.items())
            if trigger.timing == timing and trigger.level == level and operation in trigger.operations
        ]

    def _event(
        self,
        table: MemoryTable,
        trigger: InstalledTrigger,
        operation: TriggerOperation,
        old: Optional[Mapping[str, Any]] = None,
        new: Optional[Mapping[str, Any]] = None,
        old_xmin: Optional[int] = None,
    ) -> TriggerEvent:
        return TriggerEvent(
            timing=trigger.timing,
            level=trigger.level,
            operation=operation,
            table=table.ref,
            backend=self,
            transaction_timestamp=self.transaction_timestamp(),
            args=trigger.args,
            old=dict(old) if old is not None else None,
            new=dict(new) if new is not None else None,
            old_xmin=old_xmin,
            trigger_name=trigger.name,
        )

    def _fire_statement(self, table: MemoryTable, timing: TriggerTiming, operation: TriggerOperation) -> None:
        for trigger in self._triggers(table, timing, TriggerLevel.STATEMENT, operation):
            trigger.procedure(self._event(table, trigger, operation))

    def _fire_before_row(
        self,
        table: MemoryTable,
        operation: TriggerOperation,
        old: Optional[Row],
        new: Optional[Row],
        old_xmin: Optional[int],
        tx: MemoryTransaction,
    ) -> Optional[Row]:
        current = new if operation != TriggerOperation.DELETE else old
        for trigger in self._triggers(table, TriggerTiming.BEFORE, TriggerLevel.ROW, operation):
            event = self._event(
                table,
                trigger,
                operation,
                old=old,
                new=current if operation != TriggerOperation.DELETE else None,
                old_xmin=old_xmin,
            )
            result = trigger.procedure(event)
            if result is None:
                logger.debug(
                    f"Trigger {trigger.name} skipped {operation.value} on {table.ref}",
                    extra={"table": str(table.ref), "trigger": trigger.name, "txid": tx.id},
                )
                return None
            current = dict(result)
        return current

    def _fire_after_row(
        self,
        table: MemoryTable,
        operation: TriggerOperation,
        old: Optional[Row],
        new: Optional[Row],
        tx: MemoryTransaction,
    ) -> None:
        for trigger in self._triggers(table, TriggerTiming.AFTER, TriggerLevel.ROW, operation):
            trigger.procedure(self._event(table, trigger, operation, old=old, new=new))

    def _altered(self, table: TableRef) -> None:
        logger.debug(f"Altered table {table}", extra={"table": str(table)})
        if self.events is not None:
            self.events.publish(SchemaAltered(table))
