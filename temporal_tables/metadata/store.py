"""
Versioning configuration store.

Durable mapping from a versioned table to everything needed to regenerate
its trigger. Rows are written by operators (``temporal-tables register``
or a plain INSERT) and read by the schema-change listener.

Invariants:
    - Key is (table_name, table_schema); one configuration per table
    - No validation beyond key uniqueness; referenced tables are checked
      when a trigger is generated
    - Rows are never deleted automatically

How to change safely:
    - New columns need a server default so existing rows stay readable
    - The column set must stay in sync with VersioningConfig
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
import logging

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from ..catalog.base import TableRef, split_table_name
from ..versioning.options import (
    DEFAULT_SYS_PERIOD,
    DEFAULT_VERSION_COLUMN,
    VersioningOptions,
    parse_bool,
)

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "versioning_tables_metadata"

_BOOLEAN_OPTIONS = (
    "ignore_unchanged_values",
    "include_current_version_in_history",
    "mitigate_update_conflicts",
    "enable_migration_mode",
    "increment_version",
)


def versioning_tables_metadata(
    metadata: sa.MetaData,
    schema: Optional[str] = None,
    name: str = DEFAULT_TABLE_NAME,
) -> sa.Table:
    """Table definition of the configuration store."""
    return sa.Table(
        name,
        metadata,
        sa.Column("table_name", sa.Text(), primary_key=True),
        sa.Column("table_schema", sa.Text(), primary_key=True),
        sa.Column("history_table", sa.Text(), nullable=False),
        sa.Column("history_table_schema", sa.Text(), nullable=False),
        sa.Column("sys_period", sa.Text(), nullable=False, server_default=sa.text(f"'{DEFAULT_SYS_PERIOD}'")),
        *[
            sa.Column(option, sa.Boolean(), nullable=False, server_default=sa.false())
            for option in _BOOLEAN_OPTIONS
        ],
        sa.Column(
            "version_column_name",
            sa.Text(),
            nullable=False,
            server_default=sa.text(f"'{DEFAULT_VERSION_COLUMN}'"),
        ),
        schema=schema,
    )


def _split(data: Mapping[str, Any], name_key: str, schema_key: str) -> Tuple[Optional[str], str]:
    # An explicit schema means the name is stored verbatim
    if data.get(schema_key):
        return str(data[schema_key]), str(data[name_key])
    return split_table_name(str(data[name_key]))


@dataclass(frozen=True)
class VersioningConfig:
    """Stored versioning configuration of one table."""
    table_name: str
    table_schema: str
    history_table: str
    history_table_schema: str
    sys_period: str = DEFAULT_SYS_PERIOD
    ignore_unchanged_values: bool = False
    include_current_version_in_history: bool = False
    mitigate_update_conflicts: bool = False
    enable_migration_mode: bool = False
    increment_version: bool = False
    version_column_name: str = DEFAULT_VERSION_COLUMN

    @property
    def table(self) -> TableRef:
        return TableRef(self.table_schema, self.table_name)

    @property
    def history(self) -> TableRef:
        return TableRef(self.history_table_schema, self.history_table)

    def generator_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for build_static_versioning_trigger()."""
        kwargs: Dict[str, Any] = {
            "table_name": self.table,
            "history_table": self.history,
            "sys_period": self.sys_period,
            "version_column_name": self.version_column_name,
        }
        for option in _BOOLEAN_OPTIONS:
            kwargs[option] = getattr(self, option)
        return kwargs

    def to_options(self) -> VersioningOptions:
        """Equivalent dynamic-trigger options."""
        return VersioningOptions(
            sys_period=self.sys_period,
            history_table=self.history.qualified,
            mitigate_update_conflicts=self.mitigate_update_conflicts,
            ignore_unchanged_values=self.ignore_unchanged_values,
            include_current_version_in_history=self.include_current_version_in_history,
            enable_migration_mode=self.enable_migration_mode,
            increment_version=self.increment_version,
            version_column_name=self.version_column_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], default_schema: str = "public") -> VersioningConfig:
        """Build from a row or a user-supplied mapping (YAML/JSON).

        ``table_name`` and ``history_table`` may be schema-qualified when
        the matching ``*_schema`` key is absent.

        Raises:
            KeyError: If table_name or history_table is missing
            InvalidParameterError: If a boolean option is not a boolean
        """
        values: Dict[str, Any] = {}
        table_schema, table_name = _split(data, "table_name", "table_schema")
        values["table_name"] = table_name
        values["table_schema"] = table_schema or default_schema
        history_schema, history_name = _split(data, "history_table", "history_table_schema")
        values["history_table"] = history_name
        values["history_table_schema"] = history_schema or values["table_schema"]
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key in values or key not in known or value is None:
                continue
            values[key] = parse_bool(value, key) if key in _BOOLEAN_OPTIONS else str(value)
        return cls(**values)


class VersioningConfigStore:
    """SQLAlchemy-backed configuration store.

    Works on PostgreSQL in production and on SQLite in tests.

    Example:
        >>> store = VersioningConfigStore(create_engine("sqlite://"))
        >>> store.create_table()
        >>> store.put(VersioningConfig("users", "public", "users_history", "public"))
        >>> store.get(TableRef("public", "users")).history_table
        'users_history'
    """

    def __init__(
        self,
        engine: Engine,
        schema: Optional[str] = None,
        table_name: str = DEFAULT_TABLE_NAME,
    ) -> None:
        self.engine = engine
        self.table = versioning_tables_metadata(sa.MetaData(), schema, table_name)

    def create_table(self) -> None:
        """Create the store table if it does not exist."""
        self.table.create(self.engine, checkfirst=True)
        logger.info(f"Ensured configuration table {self.table.fullname}")

    def _key(self, table: TableRef):
        return sa.and_(
            self.table.c.table_name == table.name,
            self.table.c.table_schema == table.schema,
        )

    def put(self, config: VersioningConfig) -> None:
        """Insert or replace the configuration of ``config.table``."""
        values = config.to_dict()
        with self.engine.begin() as conn:
            result = conn.execute(
                sa.update(self.table).where(self._key(config.table)).values(**values)
            )
            if result.rowcount == 0:
                conn.execute(sa.insert(self.table).values(**values))
        logger.info(
            f"Stored versioning configuration for {config.table}",
            extra={"table": str(config.table), "history": str(config.history)},
        )

    def get(self, table: TableRef) -> Optional[VersioningConfig]:
        with self.engine.connect() as conn:
            row = conn.execute(sa.select(self.table).where(self._key(table))).first()
        return VersioningConfig.from_mapping(row._mapping) if row is not None else None

    def find_by_history(self, history: TableRef) -> List[VersioningConfig]:
        """Configurations whose history table is ``history``, by table."""
        query = (
            sa.select(self.table)
            .where(
                sa.and_(
                    self.table.c.history_table == history.name,
                    self.table.c.history_table_schema == history.schema,
                )
            )
            .order_by(self.table.c.table_schema, self.table.c.table_name)
        )
        with self.engine.connect() as conn:
            return [VersioningConfig.from_mapping(row._mapping) for row in conn.execute(query)]

    def list(self) -> List[VersioningConfig]:
        query = sa.select(self.table).order_by(self.table.c.table_schema, self.table.c.table_name)
        with self.engine.connect() as conn:
            return [VersioningConfig.from_mapping(row._mapping) for row in conn.execute(query)]

    def remove(self, table: Union[TableRef, VersioningConfig]) -> bool:
        """Delete a configuration. Returns True if one was deleted."""
        if isinstance(table, VersioningConfig):
            table = table.table
        with self.engine.begin() as conn:
            result = conn.execute(sa.delete(self.table).where(self._key(table)))
        return result.rowcount > 0
