"""
Schema catalog access.

Provides:
- SchemaCatalog: Protocol for structural metadata lookups
- PostgresCatalog: pg_catalog-backed implementation
- TableRef / ColumnInfo: identifier and attribute types
"""

from .base import (
    INTEGER,
    TIMESTAMPTZ,
    TSTZRANGE,
    ColumnInfo,
    SchemaCatalog,
    TableRef,
    find_column,
    live_columns,
    quote_ident,
    resolve_table,
    split_table_name,
)
from .postgres import PostgresCatalog, QueryRunner, SqlAlchemyRunner

__all__ = [
    "INTEGER",
    "TIMESTAMPTZ",
    "TSTZRANGE",
    "ColumnInfo",
    "SchemaCatalog",
    "TableRef",
    "find_column",
    "live_columns",
    "quote_ident",
    "resolve_table",
    "split_table_name",
    "PostgresCatalog",
    "QueryRunner",
    "SqlAlchemyRunner",
]
