"""
PostgreSQL schema catalog.

Answers SchemaCatalog questions from pg_catalog. The SQL is issued through
a small runner interface so the same queries work from a SQLAlchemy engine
(generator, CLI, listener) and from inside the server through PL/Python's
``plpy`` module (versioning.plpython).

Invariants:
    - Queries only use named ``:param`` placeholders
    - Relations are looked up with to_regclass(), so search_path applies
      exactly as it does for the trigger itself

How to change safely:
    - Keep the queries compatible with PostgreSQL 11+
    - Any new query must also be answerable by storage.memory
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Union
import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from .base import ColumnInfo, TableRef

logger = logging.getLogger(__name__)


CURRENT_SCHEMA_SQL = "SELECT current_schema() AS schema_name"

TABLE_EXISTS_SQL = "SELECT to_regclass(:relation) IS NOT NULL AS present"

COLUMNS_SQL = """
SELECT a.attname AS name,
       format_type(a.atttypid, NULL) AS type_name,
       a.attnum AS position,
       a.attndims AS dimensions,
       a.attisdropped AS dropped
FROM pg_attribute a
WHERE a.attrelid = to_regclass(:relation)
  AND a.attnum > 0
ORDER BY a.attnum
"""

TYPE_HAS_EQUALITY_SQL = """
SELECT EXISTS (
    SELECT 1
    FROM pg_type t
    WHERE t.oid = to_regtype(:type_name)
      AND (
        t.typcategory IN ('A', 'R')
        OR EXISTS (
            SELECT 1 FROM pg_operator o
            WHERE o.oprname = '='
              AND o.oprleft = t.oid
              AND o.oprright = t.oid
        )
      )
) AS has_equality
"""

RANGE_SUBTYPE_SQL = """
SELECT format_type(r.rngsubtype, NULL) AS subtype
FROM pg_range r
WHERE r.rngtypid = to_regtype(:type_name)
"""


class QueryRunner(Protocol):
    """Executes a read-only catalog query and returns rows as dicts."""

    def fetch(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...


class SqlAlchemyRunner:
    """QueryRunner over a SQLAlchemy engine or an open connection.

    Passing a connection keeps catalog reads inside the caller's
    transaction, which matters when DDL has not been committed yet.
    """

    def __init__(self, bind: Union[Engine, Connection]) -> None:
        self.bind = bind

    def fetch(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        if isinstance(self.bind, Connection):
            result = self.bind.execute(text(sql), params)
            return [dict(row._mapping) for row in result]
        with self.bind.connect() as conn:
            result = conn.execute(text(sql), params)
            return [dict(row._mapping) for row in result]


class PostgresCatalog:
    """SchemaCatalog backed by pg_catalog.

    Example:
        >>> engine = create_engine("postgresql+psycopg2://localhost/app")
        >>> catalog = PostgresCatalog(SqlAlchemyRunner(engine))
        >>> catalog.table_exists(TableRef("public", "users"))
        True
    """

    def __init__(self, runner: QueryRunner) -> None:
        self.runner = runner

    def current_schema(self) -> str:
        rows = self.runner.fetch(CURRENT_SCHEMA_SQL, {})
        # current_schema() is NULL when search_path names no existing schema
        return (rows[0]["schema_name"] if rows else None) or "public"

    def table_exists(self, table: TableRef) -> bool:
        rows = self.runner.fetch(TABLE_EXISTS_SQL, {"relation": table.qualified})
        return bool(rows and rows[0]["present"])

    def columns(self, table: TableRef) -> List[ColumnInfo]:
        rows = self.runner.fetch(COLUMNS_SQL, {"relation": table.qualified})
        return [
            ColumnInfo(
                name=row["name"],
                type_name=row["type_name"],
                position=int(row["position"]),
                dimensions=int(row["dimensions"] or 0),
                dropped=bool(row["dropped"]),
            )
            for row in rows
        ]

    def type_has_equality(self, type_name: str) -> bool:
        rows = self.runner.fetch(TYPE_HAS_EQUALITY_SQL, {"type_name": type_name})
        return bool(rows and rows[0]["has_equality"])

    def range_subtype(self, type_name: str) -> Optional[str]:
        rows = self.runner.fetch(RANGE_SUBTYPE_SQL, {"type_name": type_name})
        if not rows:
            return None
        return rows[0]["subtype"]
