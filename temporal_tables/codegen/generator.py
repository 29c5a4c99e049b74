"""
Static trigger generator.

Compiles the versioning protocol for one table ahead of time. The schema
is introspected once, here; the emitted PL/pgSQL function has the column
lists, the period column and every option decision written into it, so it
never reads the catalog or builds dynamic SQL while rows are written.

Output, in order:
    1. Header comments (versioned table, history table, options, columns)
    2. CREATE OR REPLACE FUNCTION <schema>.<table>_versioning()
    3. DROP TRIGGER IF EXISTS <table>_versioning_trigger
    4. CREATE TRIGGER <table>_versioning_trigger BEFORE INSERT OR UPDATE
       OR DELETE ... FOR EACH ROW

Invariants:
    - Same schema and options produce byte-identical output
    - Every check the dynamic trigger makes on table structure happens
      here instead, so a broken setup is never installed
    - Disabled options leave no trace in the generated body
    - The generated function and CompiledVersioningTrigger implement the
      same protocol as versioning.engine

How to change safely:
    - Change versioning.engine first, then mirror it in _ProcedureBuilder
    - Keep local variable names prefixed (v_) so they cannot collide with
      history table columns inside SQL statements
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
import logging

from .._version import __version__
from ..catalog.base import TSTZRANGE, SchemaCatalog, TableRef, resolve_table
from ..clock import SYSTEM_TIME_SETTING, Clock
from ..storage.base import TriggerInstaller
from ..versioning.checks import (
    check_comparable,
    check_matching_types,
    check_table_exists,
    resolve_history_target,
    validate_current_table,
)
from ..versioning.engine import (
    INVALID_PERIOD_HINT,
    CompiledVersioningTrigger,
    VersioningPlan,
)
from ..versioning.options import DEFAULT_SYS_PERIOD, DEFAULT_VERSION_COLUMN, VersioningOptions
from .ast import (
    Assign,
    BinaryOp,
    Block,
    Call,
    Cast,
    CreateTrigger,
    Declaration,
    DropTrigger,
    Exists,
    Expression,
    FieldRef,
    FunctionDefinition,
    Identifier,
    If,
    InList,
    InsertInto,
    IsNull,
    Keyword,
    Literal,
    Not,
    QualifiedName,
    Raise,
    Return,
    RowExpr,
    Script,
    SelectInto,
    Statement,
    UpdateSet,
    Variable,
    and_,
    or_,
)
from .render import render

logger = logging.getLogger(__name__)

# xmin is a 32-bit transaction id; txid_current() carries an epoch
XID_MODULUS = 2 ** 32

EFFECTIVE_TIME = Variable("v_effective_time")
RANGE_LOWER = Variable("v_range_lower")
EXISTING_RANGE = Variable("v_existing_range")
RECORD_EXISTS = Variable("v_record_exists")
EXISTING_VERSION = Variable("v_existing_version")

TG_OP = Keyword("TG_OP")
OLD = Keyword("OLD")
NEW = Keyword("NEW")


@dataclass(frozen=True)
class GeneratedTrigger:
    """Output of the static generator.

    Attributes:
        table: Versioned table
        function_name: Generated function, in the table's schema
        trigger_name: Trigger binding the function to the table
        plan: Options and column lists resolved at generation time
        script: Syntax tree of the generated SQL
    """
    table: TableRef
    function_name: TableRef
    trigger_name: str
    plan: VersioningPlan
    script: Script

    @property
    def sql(self) -> str:
        return render(self.script)

    def procedure(self, clock: Optional[Clock] = None) -> CompiledVersioningTrigger:
        """Python procedure equivalent to the generated function."""
        return CompiledVersioningTrigger(self.plan, clock)


def _eq(left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(left, "=", right)


def _op_is(*operations: str) -> Expression:
    if len(operations) == 1:
        return _eq(TG_OP, Literal(operations[0]))
    return InList(TG_OP, tuple(Literal(op) for op in operations))


def _period(lower: Expression, upper: Expression) -> Call:
    return Call(TSTZRANGE, (lower, upper, Literal("[)")))


class _ProcedureBuilder:
    """Assembles the body of the generated function from a plan."""

    def __init__(self, plan: VersioningPlan, function_name: str) -> None:
        self.plan = plan
        self.options = plan.options
        self.target = plan.target
        self.function_name = function_name
        self.history = QualifiedName(self.target.history.schema, self.target.history.name)

    # Helpers

    def _fields(self, record: str, columns: Tuple[str, ...]) -> Tuple[Expression, ...]:
        return tuple(FieldRef(record, name) for name in columns)

    def _matches(self, record: str, columns: Tuple[str, ...]) -> Optional[Expression]:
        if not columns:
            return None
        return BinaryOp(
            RowExpr(tuple(Identifier(name) for name in columns)),
            "IS NOT DISTINCT FROM",
            RowExpr(self._fields(record, columns)),
        )

    def _history_insert(self, record: str, period: Expression, version: Optional[Expression]) -> InsertInto:
        columns = self.target.common_columns + (self.options.sys_period,)
        values = self._fields(record, self.target.common_columns) + (period,)
        if self.options.increment_version:
            columns += (self.options.version_column_name,)
            values += (version,)
        return InsertInto(self.history, columns, values)

    def _raise(self, message: str, *args: Expression, errcode: str, **extra) -> Raise:
        return Raise(message, tuple(args), errcode=errcode, **extra)

    # Sections

    def effective_time(self) -> List[Statement]:
        setting = Call("current_setting", (Literal(SYSTEM_TIME_SETTING), Literal(True)))
        return [
            Block(
                body=(Assign(EFFECTIVE_TIME, Cast(Call("NULLIF", (setting, Literal(""))), "timestamptz")),),
                on_error=(Assign(EFFECTIVE_TIME, Literal(None)),),
            ),
            Assign(EFFECTIVE_TIME, Call("COALESCE", (EFFECTIVE_TIME, Keyword("CURRENT_TIMESTAMP")))),
        ]

    def protocol_checks(self) -> List[Statement]:
        table = self.target.table
        fired_on = BinaryOp(
            BinaryOp(Keyword("TG_TABLE_SCHEMA"), "||", Literal(".")), "||", Keyword("TG_TABLE_NAME")
        )
        return [
            If(
                or_(
                    BinaryOp(Keyword("TG_WHEN"), "<>", Literal("BEFORE")),
                    BinaryOp(Keyword("TG_LEVEL"), "<>", Literal("ROW")),
                ),
                (self._raise(
                    'function "%" must be fired BEFORE ROW',
                    Literal(self.function_name),
                    errcode="trigger_protocol_violated",
                ),),
            ),
            If(
                InList(TG_OP, (Literal("INSERT"), Literal("UPDATE"), Literal("DELETE")), negated=True),
                (self._raise(
                    'function "%" must be fired for INSERT or UPDATE or DELETE',
                    Literal(self.function_name),
                    errcode="trigger_protocol_violated",
                ),),
            ),
            If(
                or_(
                    BinaryOp(Keyword("TG_TABLE_SCHEMA"), "<>", Literal(table.schema)),
                    BinaryOp(Keyword("TG_TABLE_NAME"), "<>", Literal(table.name)),
                ),
                (self._raise(
                    'function "%" was generated for relation "%" but fired on "%"',
                    Literal(self.function_name),
                    Literal(str(table)),
                    fired_on,
                    errcode="trigger_protocol_violated",
                ),),
            ),
        ]

    def version_read(self) -> List[Statement]:
        if not self.options.increment_version:
            return []
        column = self.options.version_column_name
        return [
            If(
                _op_is("INSERT"),
                (Assign(EXISTING_VERSION, Literal(0)),),
                (
                    Assign(EXISTING_VERSION, FieldRef("OLD", column)),
                    If(
                        IsNull(EXISTING_VERSION),
                        (self._raise(
                            'version column "%" of relation "%" must not be null',
                            Literal(column),
                            Literal(str(self.target.table)),
                            errcode="null_value_not_allowed",
                        ),),
                    ),
                ),
            )
        ]

    def unchanged_check(self) -> List[Statement]:
        if not self.options.ignore_unchanged_values:
            return []
        columns = self.target.comparison_columns
        return [
            If(
                _op_is("UPDATE"),
                (
                    If(
                        BinaryOp(
                            RowExpr(self._fields("NEW", columns)),
                            "IS NOT DISTINCT FROM",
                            RowExpr(self._fields("OLD", columns)),
                        ),
                        (Return(OLD),),
                    ),
                ),
            )
        ]

    def same_transaction_check(self) -> List[Statement]:
        if self.options.include_current_version_in_history:
            return []
        current_xid = BinaryOp(Call("txid_current"), "%", Literal(XID_MODULUS))
        return [
            If(
                _eq(Cast(FieldRef("OLD", "xmin"), "text"), Cast(current_xid, "text")),
                (
                    If(_op_is("DELETE"), (Return(OLD),)),
                    Return(NEW),
                ),
            )
        ]

    def archive(self) -> List[Statement]:
        sys_period = self.options.sys_period
        table = Literal(str(self.target.table))
        closed = _period(RANGE_LOWER, EFFECTIVE_TIME)
        version = EXISTING_VERSION if self.options.increment_version else None
        body: List[Statement] = [
            Assign(EXISTING_RANGE, FieldRef("OLD", sys_period)),
            If(
                IsNull(EXISTING_RANGE),
                (self._raise(
                    'system period column "%" of relation "%" must not be null',
                    Literal(sys_period),
                    table,
                    errcode="null_value_not_allowed",
                ),),
            ),
            If(
                or_(Call("isempty", (EXISTING_RANGE,)), Not(Call("upper_inf", (EXISTING_RANGE,)))),
                (self._raise(
                    'system period column "%" of relation "%" contains invalid value',
                    Literal(sys_period),
                    table,
                    errcode="data_exception",
                    hint=INVALID_PERIOD_HINT,
                ),),
            ),
            Assign(RANGE_LOWER, Call("lower", (EXISTING_RANGE,))),
        ]
        conflict = BinaryOp(RANGE_LOWER, ">=", EFFECTIVE_TIME)
        if self.options.mitigate_update_conflicts:
            body.append(
                If(
                    conflict,
                    (Assign(
                        EFFECTIVE_TIME,
                        BinaryOp(RANGE_LOWER, "+", Cast(Literal("1 microseconds"), "interval")),
                    ),),
                )
            )
        else:
            body.append(
                If(
                    conflict,
                    (self._raise(
                        'system period value of relation "%" cannot be set to a valid period '
                        "because a row that is attempted to modify was also modified by another "
                        "transaction",
                        table,
                        errcode="data_exception",
                        detail="the effective time is not after the lower bound of the current period",
                    ),),
                )
            )

        old_match = self._matches("OLD", self.target.common_columns)
        if self.options.migrates:
            open_row = Call("upper_inf", (Identifier(sys_period),))
            condition = and_(old_match, open_row) if old_match is not None else open_row
            body.append(SelectInto(Exists(self.history, condition), RECORD_EXISTS))
            body.append(If(Not(RECORD_EXISTS), (self._history_insert("OLD", closed, version),)))

        if self.options.include_current_version_in_history:
            same_period = _eq(Identifier(sys_period), FieldRef("OLD", sys_period))
            where = and_(old_match, same_period) if old_match is not None else same_period
            body.append(UpdateSet(self.history, ((sys_period, closed),), where))
        else:
            body.append(self._history_insert("OLD", closed, version))
        return body

    def current_version_row(self) -> List[Statement]:
        if not self.options.include_current_version_in_history:
            return []
        version = BinaryOp(EXISTING_VERSION, "+", Literal(1)) if self.options.increment_version else None
        return [
            If(
                _op_is("INSERT", "UPDATE"),
                (self._history_insert("NEW", _period(EFFECTIVE_TIME, Literal(None)), version),),
            )
        ]

    def result(self) -> List[Statement]:
        assignments: List[Statement] = [
            Assign(FieldRef("NEW", self.options.sys_period), _period(EFFECTIVE_TIME, Literal(None)))
        ]
        if self.options.increment_version:
            assignments.append(
                Assign(
                    FieldRef("NEW", self.options.version_column_name),
                    BinaryOp(EXISTING_VERSION, "+", Literal(1)),
                )
            )
        assignments.append(Return(NEW))
        return [If(_op_is("INSERT", "UPDATE"), tuple(assignments)), Return(OLD)]

    def declarations(self) -> Tuple[Declaration, ...]:
        result = [
            Declaration(EFFECTIVE_TIME.name, "timestamptz"),
            Declaration(RANGE_LOWER.name, "timestamptz"),
            Declaration(EXISTING_RANGE.name, self.target.period_type),
        ]
        if self.options.migrates:
            result.append(Declaration(RECORD_EXISTS.name, "boolean"))
        if self.options.increment_version:
            result.append(Declaration(EXISTING_VERSION.name, "integer"))
        return tuple(result)

    def body(self) -> Tuple[Statement, ...]:
        statements: List[Statement] = []
        statements.extend(self.effective_time())
        statements.extend(self.protocol_checks())
        statements.extend(self.version_read())
        statements.extend(self.unchanged_check())

        if self.options.include_current_version_in_history:
            tracked: List[Statement] = [If(_op_is("UPDATE", "DELETE"), tuple(self.archive()))]
            tracked.extend(self.current_version_row())
            statements.extend(tracked)
        else:
            tracked = self.same_transaction_check() + self.archive()
            statements.append(If(_op_is("UPDATE", "DELETE"), tuple(tracked)))

        statements.extend(self.result())
        return tuple(statements)


def _header(plan: VersioningPlan) -> Tuple[str, ...]:
    options = plan.options
    flags = ", ".join(
        f"{name}={'true' if value else 'false'}"
        for name, value in (
            ("mitigate_update_conflicts", options.mitigate_update_conflicts),
            ("ignore_unchanged_values", options.ignore_unchanged_values),
            ("include_current_version_in_history", options.include_current_version_in_history),
            ("enable_migration_mode", options.enable_migration_mode),
            ("increment_version", options.increment_version),
        )
    )
    lines = [
        f"Generated by temporal_tables {__version__}. Do not edit; regenerate instead.",
        f"versioned table: {plan.target.table}",
        f"history table: {plan.target.history}",
        f"system period column: {options.sys_period}",
        f"options: {flags}",
    ]
    if options.increment_version:
        lines.append(f"version column: {options.version_column_name}")
    lines.append(f"common columns: {', '.join(plan.target.common_columns) or '(none)'}")
    return tuple(lines)


def build_static_versioning_trigger(
    catalog: SchemaCatalog,
    table_name: Union[str, TableRef],
    history_table: Union[str, TableRef],
    sys_period: str = DEFAULT_SYS_PERIOD,
    ignore_unchanged_values: bool = False,
    include_current_version_in_history: bool = False,
    mitigate_update_conflicts: bool = False,
    enable_migration_mode: bool = False,
    increment_version: bool = False,
    version_column_name: str = DEFAULT_VERSION_COLUMN,
) -> GeneratedTrigger:
    """Validate the schema and build a specialized versioning trigger.

    Args:
        catalog: Catalog the schema is read from, once
        table_name: Versioned table, optionally schema-qualified
        history_table: History table, optionally schema-qualified
        sys_period: Period column name
        ignore_unchanged_values: Skip UPDATEs that change nothing
        include_current_version_in_history: Keep an open history row for
            the current version
        mitigate_update_conflicts: Nudge colliding timestamps forward
        enable_migration_mode: Backfill missing open history rows
        increment_version: Maintain a version counter
        version_column_name: Version counter column name

    Returns:
        GeneratedTrigger with the SQL and the compiled Python procedure

    Raises:
        SchemaMismatchError: Missing relation or column, or wrong type
        UnsupportedComparisonError: ignore_unchanged_values over a column
            type without equality

    Example:
        >>> generated = build_static_versioning_trigger(
        ...     catalog, "public.users", "users_history",
        ...     mitigate_update_conflicts=True,
        ... )
        >>> print(generated.sql)
    """
    table = resolve_table(catalog, table_name)
    history = resolve_table(catalog, history_table)
    options = VersioningOptions(
        sys_period=sys_period,
        history_table=history.qualified,
        mitigate_update_conflicts=mitigate_update_conflicts,
        ignore_unchanged_values=ignore_unchanged_values,
        include_current_version_in_history=include_current_version_in_history,
        enable_migration_mode=enable_migration_mode,
        increment_version=increment_version,
        version_column_name=version_column_name,
    )

    check_table_exists(catalog, table)
    period = validate_current_table(catalog, table, options)
    target = resolve_history_target(catalog, table, options, period)
    check_matching_types(catalog, table, target.history, target.common_columns)
    if options.ignore_unchanged_values:
        check_comparable(catalog, table, target.comparison_columns)

    plan = VersioningPlan(options=options, target=target)
    function_name = TableRef(table.schema, f"{table.name}_versioning")
    trigger_name = f"{table.name}_versioning_trigger"
    function_ref = QualifiedName(function_name.schema, function_name.name)
    table_ref = QualifiedName(table.schema, table.name)

    builder = _ProcedureBuilder(plan, function_name.name)
    script = Script(
        header=_header(plan),
        statements=(
            FunctionDefinition(function_ref, builder.declarations(), builder.body()),
            DropTrigger(trigger_name, table_ref),
            CreateTrigger(trigger_name, table_ref, function_ref),
        ),
    )
    logger.debug(
        f"Generated {function_name} for {table}",
        extra={"table": str(table), "history": str(target.history), "columns": len(target.common_columns)},
    )
    return GeneratedTrigger(
        table=table,
        function_name=function_name,
        trigger_name=trigger_name,
        plan=plan,
        script=script,
    )


def generate_static_versioning_trigger(catalog: SchemaCatalog, table_name, history_table, **options) -> str:
    """Return the SQL of a specialized versioning trigger.

    Accepts the same arguments as build_static_versioning_trigger().
    """
    return build_static_versioning_trigger(catalog, table_name, history_table, **options).sql


def render_versioning_trigger(installer: TriggerInstaller, table_name, history_table, **options) -> GeneratedTrigger:
    """Generate a specialized versioning trigger and install it.

    The schema is read from ``installer.catalog``. Nothing is installed if
    validation fails.
    """
    generated = build_static_versioning_trigger(installer.catalog, table_name, history_table, **options)
    installer.install_generated_trigger(generated)
    logger.info(
        f"Rendered {generated.trigger_name} on {generated.table}",
        extra={"table": str(generated.table), "trigger": generated.trigger_name},
    )
    return generated
