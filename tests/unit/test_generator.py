"""
Unit tests for the static trigger generator.

Tests cover:
- Function and trigger naming
- Generated PL/pgSQL per option
- Generation-time schema validation
- Installation through a TriggerInstaller
"""

import pytest

from temporal_tables.catalog.base import TableRef
from temporal_tables.codegen.generator import (
    build_static_versioning_trigger,
    generate_static_versioning_trigger,
    render_versioning_trigger,
)
from temporal_tables.errors import (
    DatatypeMismatchError,
    UndefinedColumnError,
    UndefinedTableError,
    UnsupportedComparisonError,
)
from temporal_tables.storage.memory import InMemoryDatabase

from ..helpers import create_users


@pytest.fixture
def catalog():
    db = InMemoryDatabase()
    create_users(db)
    return db


class TestNaming:
    """Tests for generated object names."""

    def test_names(self, catalog):
        generated = build_static_versioning_trigger(catalog, "users", "users_history")
        assert generated.table == TableRef("public", "users")
        assert generated.function_name == TableRef("public", "users_versioning")
        assert generated.trigger_name == "users_versioning_trigger"

    def test_trigger_statements(self, catalog):
        sql = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert "CREATE OR REPLACE FUNCTION public.users_versioning()" in sql
        assert "DROP TRIGGER IF EXISTS users_versioning_trigger ON public.users;" in sql
        assert (
            "CREATE TRIGGER users_versioning_trigger\n"
            "BEFORE INSERT OR UPDATE OR DELETE ON public.users\n"
            "FOR EACH ROW EXECUTE FUNCTION public.users_versioning();"
        ) in sql
        assert "$func$ LANGUAGE plpgsql;" in sql

    def test_header(self, catalog):
        sql = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert sql.startswith("-- Generated by temporal_tables")
        assert "-- versioned table: public.users\n" in sql
        assert "-- history table: public.users_history\n" in sql
        assert "-- common columns: id, name\n" in sql

    def test_qualified_history(self):
        db = InMemoryDatabase()
        create_users(db, history=None)
        db.create_table_like("audit.users_history", "users")
        sql = generate_static_versioning_trigger(db, "public.users", "audit.users_history")
        assert "INSERT INTO audit.users_history (id, name, sys_period)" in sql


class TestBody:
    """Tests for the generated function body."""

    def test_default_options(self, catalog):
        sql = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert "INSERT INTO public.users_history (id, name, sys_period)" in sql
        assert "VALUES (OLD.id, OLD.name, tstzrange(v_range_lower, v_effective_time, '[)'));" in sql
        assert "IF OLD.xmin::text = (txid_current() % 4294967296)::text THEN" in sql
        assert "NEW.sys_period := tstzrange(v_effective_time, NULL, '[)');" in sql
        assert "current_setting('user_defined.system_time', true)" in sql
        assert "    v_effective_time timestamptz;" in sql
        assert "    v_existing_range tstzrange;" in sql

    def test_disabled_options_leave_no_trace(self, catalog):
        sql = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert "v_existing_version" not in sql
        assert "v_record_exists" not in sql
        assert "IS NOT DISTINCT FROM" not in sql
        assert "UPDATE public.users_history" not in sql
        assert "'1 microseconds'" not in sql

    def test_conflict_raises_without_mitigation(self, catalog):
        sql = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert "IF v_range_lower >= v_effective_time THEN" in sql
        assert "cannot be set to a valid period" in sql

    def test_invalid_period_reported_as_hint(self, catalog):
        sql = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert "HINT = 'valid ranges must be non-empty and unbounded on the high side';" in sql
        assert "DETAIL = 'valid ranges" not in sql

    def test_mitigation(self, catalog):
        sql = generate_static_versioning_trigger(
            catalog, "users", "users_history", mitigate_update_conflicts=True
        )
        assert "v_effective_time := v_range_lower + '1 microseconds'::interval;" in sql
        assert "cannot be set to a valid period" not in sql

    def test_ignore_unchanged(self, catalog):
        sql = generate_static_versioning_trigger(
            catalog, "users", "users_history", ignore_unchanged_values=True
        )
        assert "IF ROW(NEW.id, NEW.name) IS NOT DISTINCT FROM ROW(OLD.id, OLD.name) THEN" in sql

    def test_include_current(self, catalog):
        sql = generate_static_versioning_trigger(
            catalog, "users", "users_history", include_current_version_in_history=True
        )
        assert "UPDATE public.users_history" in sql
        assert "SET sys_period = tstzrange(v_range_lower, v_effective_time, '[)')" in sql
        assert "VALUES (NEW.id, NEW.name, tstzrange(v_effective_time, NULL, '[)'));" in sql
        assert "txid_current" not in sql

    def test_migration(self, catalog):
        sql = generate_static_versioning_trigger(
            catalog,
            "users",
            "users_history",
            include_current_version_in_history=True,
            enable_migration_mode=True,
        )
        assert "EXISTS (SELECT FROM public.users_history WHERE" in sql
        assert "INTO v_record_exists;" in sql
        assert "    v_record_exists  boolean;" in sql

    def test_migration_needs_include_current(self, catalog):
        sql = generate_static_versioning_trigger(
            catalog, "users", "users_history", enable_migration_mode=True
        )
        assert "v_record_exists" not in sql

    def test_increment_version(self):
        db = InMemoryDatabase()
        create_users(db, extra=[("version", "integer")])
        sql = generate_static_versioning_trigger(db, "users", "users_history", increment_version=True)
        assert "    v_existing_version integer;" in sql
        assert "INSERT INTO public.users_history (id, name, sys_period, version)" in sql
        assert "NEW.version := v_existing_version + 1;" in sql
        assert "-- version column: version\n" in sql

    def test_unusual_column_name_is_quoted(self):
        db = InMemoryDatabase()
        create_users(db, extra=[("b b", "text")])
        sql = generate_static_versioning_trigger(db, "users", "users_history")
        assert 'INSERT INTO public.users_history (id, name, "b b", sys_period)' in sql
        assert 'OLD."b b"' in sql

    def test_deterministic(self, catalog):
        first = generate_static_versioning_trigger(catalog, "users", "users_history")
        second = generate_static_versioning_trigger(catalog, "users", "users_history")
        assert first == second

    def test_no_common_columns(self):
        db = InMemoryDatabase()
        create_users(db, history=None)
        db.create_table("users_history", [("sys_period", "tstzrange")])
        sql = generate_static_versioning_trigger(db, "users", "users_history")
        assert "INSERT INTO public.users_history (sys_period)" in sql
        assert "-- common columns: (none)" in sql


class TestValidation:
    """Tests for errors raised while generating."""

    def test_missing_table(self, catalog):
        with pytest.raises(UndefinedTableError):
            build_static_versioning_trigger(catalog, "missing", "users_history")

    def test_missing_history_table(self, catalog):
        with pytest.raises(UndefinedTableError) as exc_info:
            build_static_versioning_trigger(catalog, "users", "nope")
        assert exc_info.value.relation == "public.nope"

    def test_missing_period_column(self, catalog):
        with pytest.raises(UndefinedColumnError):
            build_static_versioning_trigger(catalog, "users", "users_history", sys_period="validity")

    def test_period_not_timestamptz(self):
        db = InMemoryDatabase()
        db.create_table("users", [("id", "integer"), ("sys_period", "tsrange")])
        db.create_table_like("users_history", "users")
        with pytest.raises(DatatypeMismatchError, match="not a range of timestamp with timezone"):
            build_static_versioning_trigger(db, "users", "users_history")

    def test_period_not_a_range(self):
        db = InMemoryDatabase()
        db.create_table("users", [("id", "integer"), ("sys_period", "timestamptz")])
        db.create_table_like("users_history", "users")
        with pytest.raises(DatatypeMismatchError, match="is not a range but type"):
            build_static_versioning_trigger(db, "users", "users_history")

    def test_history_lacks_period(self):
        db = InMemoryDatabase()
        create_users(db, history=None)
        db.create_table("users_history", [("id", "integer")])
        with pytest.raises(UndefinedColumnError) as exc_info:
            build_static_versioning_trigger(db, "users", "users_history")
        assert "history relation must contain system period column" in exc_info.value.hint

    def test_column_type_mismatch(self):
        db = InMemoryDatabase()
        create_users(db, history=None)
        db.create_table(
            "users_history",
            [("id", "integer"), ("name", "varchar"), ("sys_period", "tstzrange")],
        )
        with pytest.raises(DatatypeMismatchError) as exc_info:
            build_static_versioning_trigger(db, "users", "users_history")
        assert exc_info.value.column == "name"

    def test_version_column_must_be_integer(self):
        db = InMemoryDatabase()
        create_users(db, extra=[("version", "bigint")])
        with pytest.raises(DatatypeMismatchError, match="is not an integer"):
            build_static_versioning_trigger(db, "users", "users_history", increment_version=True)

    def test_version_column_missing(self, catalog):
        with pytest.raises(UndefinedColumnError, match='does not contain version column "version"'):
            build_static_versioning_trigger(catalog, "users", "users_history", increment_version=True)

    def test_history_needs_version_column(self):
        db = InMemoryDatabase()
        create_users(db, extra=[("version", "integer")], history=None)
        db.create_table_like("users_history", "users", exclude=["version"])
        with pytest.raises(UndefinedColumnError) as exc_info:
            build_static_versioning_trigger(db, "users", "users_history", increment_version=True)
        assert exc_info.value.relation == "public.users_history"

    def test_incomparable_column(self):
        db = InMemoryDatabase()
        create_users(db, extra=[("data", "json")])
        with pytest.raises(UnsupportedComparisonError) as exc_info:
            build_static_versioning_trigger(db, "users", "users_history", ignore_unchanged_values=True)
        assert exc_info.value.column == "data"

    def test_incomparable_column_without_change_detection(self):
        db = InMemoryDatabase()
        create_users(db, extra=[("data", "json")])
        build_static_versioning_trigger(db, "users", "users_history")


class TestRenderVersioningTrigger:
    """Tests for render_versioning_trigger()."""

    def test_installs_function_and_trigger(self, catalog):
        generated = render_versioning_trigger(catalog, "users", "users_history")
        function = catalog.functions[TableRef("public", "users_versioning")]
        assert function.source == generated.sql
        assert catalog.trigger("users", "users_versioning_trigger") is not None

    def test_invalid_setup_installs_nothing(self, catalog):
        with pytest.raises(UndefinedTableError):
            render_versioning_trigger(catalog, "users", "nope")
        assert catalog.functions == {}
        assert catalog.trigger("users", "users_versioning_trigger") is None

    def test_rerender_replaces_trigger(self, catalog):
        render_versioning_trigger(catalog, "users", "users_history")
        catalog.add_column("users", "email", "text")
        catalog.add_column("users_history", "email", "text")
        generated = render_versioning_trigger(catalog, "users", "users_history")
        assert generated.plan.target.common_columns == ("id", "name", "email")
        assert catalog.trigger("users", "users_versioning_trigger").procedure.plan is generated.plan
