"""
PL/Python adapter for the dynamic versioning trigger.

Runs VersioningTrigger inside PostgreSQL through ``plpython3u``, for
databases where the generated PL/pgSQL is not wanted. Install with
install_plpython_function(), then create triggers exactly as for the C or
PL/pgSQL implementation:

    CREATE TRIGGER versioning_trigger
    BEFORE INSERT OR UPDATE OR DELETE ON users
    FOR EACH ROW EXECUTE PROCEDURE versioning('sys_period', 'users_history', true);

Invariants:
    - Every query goes through plpy.prepare() with typed parameters
    - Range values cross the boundary as PostgreSQL range literals
    - xmin of OLD is looked up through the primary key, or by matching
      every comparable column when the table has none
    - The system time override is cast by PostgreSQL in the session's
      TimeZone, as in the generated PL/pgSQL
    - Library errors surface as PostgreSQL errors with their SQLSTATE

How to change safely:
    - plpy is only available inside the server; keep it a parameter so
      tests can pass a fake
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import re

from sqlalchemy import text

from ..catalog.base import TableRef, live_columns, quote_ident
from ..catalog.postgres import PostgresCatalog
from ..clock import SYSTEM_TIME_SETTING
from ..errors import TemporalTablesError
from .engine import VersioningProcedure, VersioningTrigger
from .period import Period
from .statements import HistoryRowExists, HistoryStatement, Param
from .trigger import Row, TriggerEvent, TriggerLevel, TriggerOperation, TriggerTiming

logger = logging.getLogger(__name__)

_NAMED_PARAM = re.compile(r"(?<![:\w]):(\w+)")

TRANSACTION_TIMESTAMP_SQL = (
    "SELECT to_char(transaction_timestamp() AT TIME ZONE 'UTC', "
    "'YYYY-MM-DD\"T\"HH24:MI:SS.US') AS ts"
)

TRANSACTION_ID_SQL = "SELECT (txid_current() % 4294967296)::bigint AS txid"

SYSTEM_TIME_SQL = (
    "SELECT to_char(NULLIF(current_setting(:setting, true), '')::timestamptz AT TIME ZONE 'UTC', "
    "'YYYY-MM-DD\"T\"HH24:MI:SS.US') AS value"
)

PRIMARY_KEY_SQL = """
SELECT a.attname AS name
FROM pg_index i
JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
WHERE i.indrelid = to_regclass(:relation)
  AND i.indisprimary
ORDER BY array_position(i.indkey::int2[], a.attnum)
"""

PLPYTHON_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION {schema}.versioning()
RETURNS trigger
LANGUAGE plpython3u
AS $versioning$
from temporal_tables.versioning.plpython import handle
return handle(TD, plpy)
$versioning$
"""


class PlPyRunner:
    """QueryRunner over PL/Python's plpy module.

    Converts ``:name`` placeholders to ``$n``; every parameter is passed
    as text unless a type is given.
    """

    def __init__(self, plpy: Any) -> None:
        self.plpy = plpy
        self._plans: Dict[Tuple[str, Tuple[str, ...]], Any] = {}

    def execute(self, sql: str, values: Sequence[Any], types: Sequence[str]) -> Any:
        """Run a $n-style statement and return the plpy result object."""
        key = (sql, tuple(types))
        plan = self._plans.get(key)
        if plan is None:
            plan = self.plpy.prepare(sql, list(types))
            self._plans[key] = plan
        return self.plpy.execute(plan, list(values))

    def run(self, sql: str, values: Sequence[Any], types: Sequence[str]) -> List[Dict[str, Any]]:
        return [dict(row) for row in self.execute(sql, values, types)]

    def fetch(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        names: List[str] = []

        def placeholder(match: re.Match) -> str:
            name = match.group(1)
            if name not in names:
                names.append(name)
            return f"${names.index(name) + 1}"

        converted = _NAMED_PARAM.sub(placeholder, sql)
        return self.run(converted, [params[name] for name in names], ["text"] * len(names))


class PlPyBackend:
    """VersioningBackend for a trigger running inside PostgreSQL."""

    def __init__(self, plpy: Any) -> None:
        self.runner = PlPyRunner(plpy)
        self._catalog = PostgresCatalog(self.runner)

    @property
    def catalog(self) -> PostgresCatalog:
        return self._catalog

    def current_transaction_id(self) -> int:
        return int(self.runner.fetch(TRANSACTION_ID_SQL, {})[0]["txid"])

    def transaction_timestamp(self) -> datetime:
        value = self.runner.fetch(TRANSACTION_TIMESTAMP_SQL, {})[0]["ts"]
        return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)

    def execute(self, statement: HistoryStatement) -> Any:
        sql, params = statement.to_sql()
        types = self._param_types(statement.table, params)
        values = [str(p.value) if isinstance(p.value, Period) else p.value for p in params]
        result = self.runner.execute(sql, values, types)
        if isinstance(statement, HistoryRowExists):
            rows = [dict(row) for row in result]
            return bool(rows and rows[0]["present"])
        return result.nrows()

    def row_xmin(self, table: TableRef, row: Mapping[str, Any]) -> Optional[int]:
        """xmin of the stored row matching ``row``, or None.

        The row is found by primary key. Tables without one are matched on
        every live column whose type has equality, first match wins.
        """
        keys = [r["name"] for r in self.runner.fetch(PRIMARY_KEY_SQL, {"relation": table.qualified})]
        if keys:
            params = [Param(key, row.get(key)) for key in keys]
            where = " AND ".join(f"{quote_ident(key)} = ${i}" for i, key in enumerate(keys, 1))
        else:
            params = [
                Param(c.name, row[c.name])
                for c in live_columns(self.catalog, table)
                if c.name in row and self.catalog.type_has_equality(c.type_name)
            ]
            if not params:
                return None
            columns = ", ".join(quote_ident(p.column) for p in params)
            placeholders = ", ".join(f"${i}" for i in range(1, len(params) + 1))
            where = f"ROW({columns}) IS NOT DISTINCT FROM ROW({placeholders})"
        sql = f"SELECT xmin::text::bigint AS xmin FROM {table.qualified} WHERE {where} LIMIT 1"
        values = [str(p.value) if isinstance(p.value, Period) else p.value for p in params]
        rows = self.runner.run(sql, values, self._param_types(table, params))
        return int(rows[0]["xmin"]) if rows else None

    def _param_types(self, table: TableRef, params: Sequence[Param]) -> List[str]:
        types = {c.name: c.type_name for c in self.catalog.columns(table) if not c.dropped}
        return [types.get(p.column, "text") for p in params]


class SessionClock:
    """Clock reading the ``user_defined.system_time`` session setting.

    The value is cast by PostgreSQL in the session's TimeZone, as the
    generated PL/pgSQL does. An unset or unparseable value falls back to
    the transaction timestamp.
    """

    def __init__(self, runner: PlPyRunner) -> None:
        self.runner = runner

    def now(self, fallback: datetime) -> datetime:
        try:
            rows = self.runner.fetch(SYSTEM_TIME_SQL, {"setting": SYSTEM_TIME_SETTING})
        except self.runner.plpy.SPIError as e:
            logger.warning(f"Ignoring unparseable {SYSTEM_TIME_SETTING}: {e}")
            return fallback
        value = rows[0]["value"] if rows else None
        if not value:
            return fallback
        return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _decode_row(row: Optional[Mapping[str, Any]], period_column: Optional[str]) -> Optional[Row]:
    if row is None:
        return None
    decoded = dict(row)
    value = decoded.get(period_column) if period_column else None
    if isinstance(value, str):
        decoded[period_column] = Period.parse(value)
    return decoded


def trigger_event_from_td(TD: Mapping[str, Any], backend: PlPyBackend) -> TriggerEvent:
    """Build a TriggerEvent from PL/Python's trigger dictionary."""
    args = tuple(str(arg) for arg in (TD.get("args") or ()))
    period_column = args[0] if args else None
    table = TableRef(TD["table_schema"], TD["table_name"])
    operation = TriggerOperation(TD["event"])
    old = _decode_row(TD.get("old"), period_column)
    old_xmin = None
    if old is not None and operation in (TriggerOperation.UPDATE, TriggerOperation.DELETE):
        old_xmin = backend.row_xmin(table, old)
    return TriggerEvent(
        timing=TriggerTiming(TD["when"]),
        level=TriggerLevel(TD["level"]),
        operation=operation,
        table=table,
        backend=backend,
        transaction_timestamp=backend.transaction_timestamp(),
        args=args,
        old=old,
        new=_decode_row(TD.get("new"), period_column),
        old_xmin=old_xmin,
        trigger_name=TD.get("name", ""),
    )


def _encode_row(row: Mapping[str, Any]) -> Row:
    return {k: str(v) if isinstance(v, Period) else v for k, v in row.items()}


def handle(TD: Dict[str, Any], plpy: Any, procedure: Optional[VersioningProcedure] = None) -> Optional[str]:
    """Entry point called from the plpython3u ``versioning()`` function.

    Returns:
        "MODIFY" with TD["new"] replaced for INSERT/UPDATE, None to let a
        DELETE proceed, "SKIP" if the procedure suppressed the row
    """
    backend = PlPyBackend(plpy)
    if procedure is None:
        procedure = VersioningTrigger(SessionClock(backend.runner))
    try:
        event = trigger_event_from_td(TD, backend)
        result = procedure(event)
    except TemporalTablesError as e:
        plpy.error(e.message, detail=str(e.details) if e.details else None, hint=e.hint, sqlstate=e.code)
        raise
    if result is None:
        return "SKIP"
    if event.is_delete:
        return None
    TD["new"] = _encode_row(result)
    return "MODIFY"


def install_plpython_function(connection: Any, schema: str = "public") -> None:
    """Create the plpython3u ``versioning()`` function in ``schema``.

    Requires the plpython3u extension and temporal_tables importable by
    the server's Python.
    """
    connection.execute(text("CREATE EXTENSION IF NOT EXISTS plpython3u"))
    connection.execute(text(PLPYTHON_FUNCTION_SQL.format(schema=quote_ident(schema))))
    logger.info(f"Installed {schema}.versioning() (plpython3u)")
