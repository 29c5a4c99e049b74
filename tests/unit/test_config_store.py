"""
Unit tests for the versioning configuration store.

Tests cover:
- VersioningConfig construction from user mappings and stored rows
- Store round trips on SQLite
- Lookup by history table
"""

import pytest
import sqlalchemy as sa

from temporal_tables.catalog.base import TableRef
from temporal_tables.errors import InvalidParameterError
from temporal_tables.metadata import (
    VersioningConfig,
    VersioningConfigStore,
    versioning_tables_metadata,
)


@pytest.fixture
def store(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'metadata.db'}")
    store = VersioningConfigStore(engine)
    store.create_table()
    yield store
    engine.dispose()


class TestVersioningConfig:
    """Tests for VersioningConfig."""

    def test_from_mapping_qualified_names(self):
        config = VersioningConfig.from_mapping(
            {"table_name": "app.users", "history_table": "audit.users_history"}
        )
        assert config.table == TableRef("app", "users")
        assert config.history == TableRef("audit", "users_history")

    def test_history_defaults_to_table_schema(self):
        config = VersioningConfig.from_mapping({"table_name": "app.users", "history_table": "users_history"})
        assert config.history == TableRef("app", "users_history")

    def test_default_schema(self):
        config = VersioningConfig.from_mapping(
            {"table_name": "users", "history_table": "users_history"}, default_schema="tenant"
        )
        assert config.table == TableRef("tenant", "users")

    def test_explicit_schema_keeps_name_verbatim(self):
        config = VersioningConfig.from_mapping(
            {
                "table_name": "Users.v2",
                "table_schema": "public",
                "history_table": "Users.v2_history",
                "history_table_schema": "public",
            }
        )
        assert config.table == TableRef("public", "Users.v2")
        assert config.history == TableRef("public", "Users.v2_history")

    def test_options(self):
        config = VersioningConfig.from_mapping(
            {
                "table_name": "users",
                "history_table": "users_history",
                "mitigate_update_conflicts": "yes",
                "increment_version": True,
                "version_column_name": "rev",
                "comment": "ignored",
            }
        )
        assert config.mitigate_update_conflicts
        assert config.increment_version
        assert not config.ignore_unchanged_values
        assert config.version_column_name == "rev"

    def test_invalid_flag(self):
        with pytest.raises(InvalidParameterError):
            VersioningConfig.from_mapping(
                {"table_name": "users", "history_table": "h", "increment_version": "sometimes"}
            )

    def test_missing_history(self):
        with pytest.raises(KeyError):
            VersioningConfig.from_mapping({"table_name": "users"})

    def test_to_options(self):
        config = VersioningConfig("users", "public", "users_history", "audit", ignore_unchanged_values=True)
        options = config.to_options()
        assert options.history_table == "audit.users_history"
        assert options.ignore_unchanged_values

    def test_generator_kwargs(self):
        config = VersioningConfig("users", "public", "users_history", "public", increment_version=True)
        kwargs = config.generator_kwargs()
        assert kwargs["table_name"] == TableRef("public", "users")
        assert kwargs["history_table"] == TableRef("public", "users_history")
        assert kwargs["increment_version"] is True
        assert kwargs["sys_period"] == "sys_period"


class TestTableDefinition:
    def test_columns(self):
        table = versioning_tables_metadata(sa.MetaData(), schema="meta")
        assert table.fullname == "meta.versioning_tables_metadata"
        assert [c.name for c in table.primary_key.columns] == ["table_name", "table_schema"]
        assert "version_column_name" in table.c


class TestVersioningConfigStore:
    """Tests for VersioningConfigStore on SQLite."""

    def test_put_and_get(self, store):
        config = VersioningConfig("users", "public", "users_history", "public", mitigate_update_conflicts=True)
        store.put(config)
        assert store.get(TableRef("public", "users")) == config

    def test_get_missing(self, store):
        assert store.get(TableRef("public", "nope")) is None

    def test_put_replaces(self, store):
        store.put(VersioningConfig("users", "public", "users_history", "public"))
        store.put(VersioningConfig("users", "public", "users_archive", "audit", increment_version=True))
        stored = store.get(TableRef("public", "users"))
        assert stored.history == TableRef("audit", "users_archive")
        assert stored.increment_version
        assert len(store.list()) == 1

    def test_same_name_in_other_schema(self, store):
        store.put(VersioningConfig("users", "public", "users_history", "public"))
        store.put(VersioningConfig("users", "tenant", "users_history", "tenant"))
        assert [c.table for c in store.list()] == [TableRef("public", "users"), TableRef("tenant", "users")]

    def test_find_by_history(self, store):
        store.put(VersioningConfig("users", "public", "users_history", "audit"))
        (config,) = store.find_by_history(TableRef("audit", "users_history"))
        assert config.table == TableRef("public", "users")
        assert store.find_by_history(TableRef("public", "users_history")) == []

    def test_find_by_history_returns_every_table(self, store):
        store.put(VersioningConfig("users", "public", "audit_log", "audit"))
        store.put(VersioningConfig("members", "public", "audit_log", "audit"))
        store.put(VersioningConfig("orders", "public", "orders_history", "audit"))
        configs = store.find_by_history(TableRef("audit", "audit_log"))
        assert [c.table.name for c in configs] == ["members", "users"]

    def test_remove(self, store):
        config = VersioningConfig("users", "public", "users_history", "public")
        store.put(config)
        assert store.remove(config) is True
        assert store.remove(TableRef("public", "users")) is False
        assert store.list() == []

    def test_plain_insert_uses_server_defaults(self, store):
        with store.engine.begin() as conn:
            conn.execute(
                sa.insert(store.table).values(
                    table_name="users",
                    table_schema="public",
                    history_table="users_history",
                    history_table_schema="public",
                )
            )
        config = store.get(TableRef("public", "users"))
        assert config.sys_period == "sys_period"
        assert config.version_column_name == "version"
        assert not config.include_current_version_in_history

    def test_create_table_is_idempotent(self, store):
        store.create_table()
