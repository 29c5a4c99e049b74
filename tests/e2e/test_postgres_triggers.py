"""
End-to-end tests for generated triggers on PostgreSQL.

Tests cover:
- Period bookkeeping on insert, update and delete
- Same-transaction updates
- user_defined.system_time overrides and update conflicts
- Trigger regeneration after ALTER TABLE through the listener
"""

import pytest
import sqlalchemy as sa

from temporal_tables.codegen.generator import render_versioning_trigger
from temporal_tables.events import EventBus
from temporal_tables.listener import SchemaChangeListener, watch_engine
from temporal_tables.metadata import VersioningConfig, VersioningConfigStore
from temporal_tables.storage.postgres import PostgresInstaller


@pytest.fixture
def installer(engine):
    return PostgresInstaller(engine)


@pytest.fixture
def versioned(installer, schema, users):
    """Callable installing the generated trigger on ``users``."""
    def install(**options):
        return render_versioning_trigger(installer, users, f"{schema}.users_history", **options)

    return install


def scalar(engine, sql):
    with engine.connect() as conn:
        return conn.exec_driver_sql(sql).scalar()


class TestGeneratedTrigger:
    """Tests for the installed PL/pgSQL function."""

    def test_insert_opens_period(self, engine, schema, versioned):
        versioned()
        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
            row = conn.exec_driver_sql(
                f"SELECT lower(sys_period) = CURRENT_TIMESTAMP, upper_inf(sys_period) FROM {schema}.users"
            ).one()
        assert tuple(row) == (True, True)
        assert scalar(engine, f"SELECT count(*) FROM {schema}.users_history") == 0

    def test_update_archives_previous_version(self, engine, schema, versioned):
        versioned()
        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
        with engine.begin() as conn:
            conn.exec_driver_sql(f"UPDATE {schema}.users SET name = 'b' WHERE id = 1")
        with engine.connect() as conn:
            history = conn.exec_driver_sql(
                f"SELECT h.name, upper(h.sys_period) = lower(u.sys_period) "
                f"FROM {schema}.users_history h JOIN {schema}.users u USING (id)"
            ).all()
        assert [tuple(r) for r in history] == [("a", True)]

    def test_same_transaction_update_not_archived(self, engine, schema, versioned):
        versioned()
        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
            conn.exec_driver_sql(f"UPDATE {schema}.users SET name = 'b' WHERE id = 1")
        assert scalar(engine, f"SELECT count(*) FROM {schema}.users_history") == 0
        assert scalar(engine, f"SELECT name FROM {schema}.users") == "b"

    def test_delete_archives_row(self, engine, schema, versioned):
        versioned()
        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
        with engine.begin() as conn:
            conn.exec_driver_sql(f"DELETE FROM {schema}.users WHERE id = 1")
        assert scalar(engine, f"SELECT count(*) FROM {schema}.users") == 0
        assert scalar(engine, f"SELECT upper_inf(sys_period) FROM {schema}.users_history") is False

    def test_system_time_override(self, engine, schema, versioned):
        versioned()
        with engine.begin() as conn:
            conn.exec_driver_sql("SET LOCAL user_defined.system_time = '2001-02-03 04:05:06+00'")
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
        assert scalar(
            engine, f"SELECT lower(sys_period) = '2001-02-03 04:05:06+00'::timestamptz FROM {schema}.users"
        ) is True

    def test_update_conflict(self, engine, schema, versioned):
        versioned()
        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
        with pytest.raises(sa.exc.DBAPIError) as exc_info:
            with engine.begin() as conn:
                conn.exec_driver_sql("SET LOCAL user_defined.system_time = '2000-01-01 00:00:00+00'")
                conn.exec_driver_sql(f"UPDATE {schema}.users SET name = 'b' WHERE id = 1")
        assert exc_info.value.orig.pgcode == "22000"
        assert scalar(engine, f"SELECT name FROM {schema}.users") == "a"

    def test_update_conflict_mitigated(self, engine, schema, versioned):
        versioned(mitigate_update_conflicts=True)
        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name) VALUES (1, 'a')")
        with engine.begin() as conn:
            conn.exec_driver_sql("SET LOCAL user_defined.system_time = '2000-01-01 00:00:00+00'")
            conn.exec_driver_sql(f"UPDATE {schema}.users SET name = 'b' WHERE id = 1")
        with engine.connect() as conn:
            row = conn.exec_driver_sql(
                f"SELECT lower(u.sys_period) = lower(h.sys_period) + interval '1 microsecond', "
                f"upper(h.sys_period) = lower(u.sys_period) "
                f"FROM {schema}.users u JOIN {schema}.users_history h USING (id)"
            ).one()
        assert tuple(row) == (True, True)


class TestListenerOnPostgres:
    """ALTER TABLE committed through a watched engine regenerates the trigger."""

    def test_added_column_is_archived(self, engine, schema, users, installer):
        store = VersioningConfigStore(engine, schema=schema)
        store.create_table()
        config = VersioningConfig("users", schema, "users_history", schema)
        store.put(config)
        render_versioning_trigger(installer, **config.generator_kwargs())

        bus = EventBus()
        listener = SchemaChangeListener(store, installer)
        listener.register(bus)
        remove = watch_engine(engine, bus)
        try:
            with engine.begin() as conn:
                conn.exec_driver_sql(f"ALTER TABLE {schema}.users ADD COLUMN email text")
                conn.exec_driver_sql(f"ALTER TABLE {schema}.users_history ADD COLUMN email text")
        finally:
            remove()
            listener.unregister()

        source = scalar(engine, f"SELECT prosrc FROM pg_proc WHERE oid = '{schema}.users_versioning'::regproc")
        assert "email" in source

        with engine.begin() as conn:
            conn.exec_driver_sql(f"INSERT INTO {schema}.users (id, name, email) VALUES (1, 'a', 'a@example.com')")
        with engine.begin() as conn:
            conn.exec_driver_sql(f"DELETE FROM {schema}.users WHERE id = 1")
        assert scalar(engine, f"SELECT email FROM {schema}.users_history") == "a@example.com"
