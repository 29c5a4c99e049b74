"""
Schema catalog protocol and identifier types.

The catalog is the read-only view over a database's structural metadata
that both versioning engines depend on: table existence, per-table column
lists (including dropped attributes), column types, range subtypes and
equality support.

Invariants:
    - Column lists are ordered by attribute position
    - Dropped columns are reported with ``dropped=True``, never omitted
    - Type names use PostgreSQL's format_type() spelling

How to change safely:
    - Protocol changes require updating every implementation
      (catalog.postgres, storage.memory)
    - Keep this module free of database driver imports
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, runtime_checkable
import re

TSTZRANGE = "tstzrange"
TIMESTAMPTZ = "timestamp with time zone"
INTEGER = "integer"

_QUOTED_PART = re.compile(r'"((?:[^"]|"")*)"|([^."]+)')

# Identifiers PostgreSQL refuses to accept unquoted
RESERVED_KEYWORDS = frozenset(
    """
    all analyse analyze and any array as asc asymmetric authorization binary
    both case cast check collate collation column concurrently constraint
    create cross current_catalog current_date current_role current_schema
    current_time current_timestamp current_user default deferrable desc
    distinct do else end except false fetch for foreign freeze from full
    grant group having ilike in initially inner intersect into is isnull join
    lateral leading left like limit localtime localtimestamp natural not
    notnull null offset on only or order outer overlaps placing primary
    references returning right select session_user similar some symmetric
    system_user table tablesample then to trailing true union unique user
    using variadic verbose when where window with
    """.split()
)

_SAFE_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")


def quote_ident(name: str) -> str:
    """Quote an identifier the way PostgreSQL's quote_ident() does.

    Example:
        >>> quote_ident("users")
        'users'
        >>> quote_ident("b b")
        '"b b"'
    """
    if _SAFE_IDENTIFIER.match(name) and name not in RESERVED_KEYWORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class TableRef:
    """Schema-qualified relation name.

    Attributes:
        schema: Schema (namespace) name, unquoted
        name: Relation name, unquoted
    """
    schema: str
    name: str

    @property
    def qualified(self) -> str:
        """Quoted ``schema.name`` suitable for SQL text."""
        return f"{quote_ident(self.schema)}.{quote_ident(self.name)}"

    def with_suffix(self, suffix: str) -> TableRef:
        return TableRef(self.schema, self.name + suffix)

    def __str__(self) -> str:
        return f"{self.schema}.{self.name}"


def split_table_name(text: str) -> Tuple[Optional[str], str]:
    """Split ``schema.table`` into its parts.

    Double-quoted parts keep their case and may contain dots; unquoted parts
    are folded to lower case like PostgreSQL does.

    Raises:
        ValueError: If the name is empty or has more than two parts
    """
    parts: List[str] = []
    position = 0
    text = text.strip()
    while position < len(text):
        match = _QUOTED_PART.match(text, position)
        if match is None:
            raise ValueError(f"invalid relation name: {text!r}")
        if match.group(1) is not None:
            parts.append(match.group(1).replace('""', '"'))
        else:
            parts.append(match.group(2).strip().lower())
        position = match.end()
        if position < len(text):
            if text[position] != ".":
                raise ValueError(f"invalid relation name: {text!r}")
            position += 1
            if position == len(text):
                raise ValueError(f"invalid relation name: {text!r}")
    if not parts or len(parts) > 2 or not all(parts):
        raise ValueError(f"invalid relation name: {text!r}")
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], parts[1]


@dataclass(frozen=True)
class ColumnInfo:
    """One attribute of a relation.

    Attributes:
        name: Column name
        type_name: format_type() spelling, e.g. ``tstzrange`` or ``integer``
        position: Attribute number (1-based, stable across drops)
        dimensions: Declared array dimensions
        dropped: True for columns removed by ALTER TABLE ... DROP COLUMN
    """
    name: str
    type_name: str
    position: int
    dimensions: int = 0
    dropped: bool = False

    @property
    def is_array(self) -> bool:
        return self.dimensions > 0 or self.type_name.endswith("[]")


@runtime_checkable
class SchemaCatalog(Protocol):
    """Read-only structural metadata of a database."""

    def current_schema(self) -> str:
        """Schema that unqualified names resolve to."""
        ...

    def table_exists(self, table: TableRef) -> bool:
        ...

    def columns(self, table: TableRef) -> List[ColumnInfo]:
        """All attributes of a table, dropped ones included, by position."""
        ...

    def type_has_equality(self, type_name: str) -> bool:
        """Whether ``=`` is defined for two values of this type."""
        ...

    def range_subtype(self, type_name: str) -> Optional[str]:
        """Element type of a range type, or None if not a range."""
        ...


def resolve_table(catalog: SchemaCatalog, name: str | TableRef) -> TableRef:
    """Normalize a possibly unqualified name to a TableRef.

    Unqualified names resolve against the catalog's current schema.
    """
    if isinstance(name, TableRef):
        return name
    schema, table = split_table_name(name)
    return TableRef(schema or catalog.current_schema(), table)


def live_columns(catalog: SchemaCatalog, table: TableRef) -> List[ColumnInfo]:
    """Non-dropped columns of a table, by position."""
    return [column for column in catalog.columns(table) if not column.dropped]


def find_column(catalog: SchemaCatalog, table: TableRef, name: str) -> Optional[ColumnInfo]:
    """Look up a non-dropped column by exact name."""
    for column in catalog.columns(table):
        if column.name == name and not column.dropped:
            return column
    return None
