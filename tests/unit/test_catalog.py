"""
Unit tests for catalog helpers and the in-memory catalog.

Tests cover:
- Identifier quoting
- Relation name splitting and resolution
- Column metadata including dropped columns
- Type capabilities (equality, range subtypes)
"""

import pytest

from temporal_tables.catalog.base import (
    TableRef,
    find_column,
    live_columns,
    quote_ident,
    resolve_table,
    split_table_name,
)
from temporal_tables.storage.memory import InMemoryDatabase

from ..helpers import create_users


class TestQuoteIdent:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("users", "users"),
            ("sys_period", "sys_period"),
            ("Users", '"Users"'),
            ("b b", '"b b"'),
            ("select", '"select"'),
            ('we"ird', '"we""ird"'),
            ("1abc", '"1abc"'),
        ],
    )
    def test_quote(self, name, expected):
        assert quote_ident(name) == expected


class TestSplitTableName:
    """Tests for split_table_name()."""

    def test_unqualified(self):
        assert split_table_name("users") == (None, "users")

    def test_qualified(self):
        assert split_table_name("audit.users_history") == ("audit", "users_history")

    def test_unquoted_folds_case(self):
        assert split_table_name("Audit.Users") == ("audit", "users")

    def test_quoted_keeps_case_and_dots(self):
        assert split_table_name('"My.Schema"."Users"') == ("My.Schema", "Users")

    def test_escaped_quote(self):
        assert split_table_name('"a""b"') == (None, 'a"b')

    @pytest.mark.parametrize("text", ["", "a.b.c", "a.", ".b"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            split_table_name(text)


class TestTableRef:
    def test_qualified_quotes_parts(self):
        assert TableRef("public", "Users").qualified == 'public."Users"'

    def test_str_is_plain(self):
        assert str(TableRef("public", "users")) == "public.users"

    def test_with_suffix(self):
        assert TableRef("s", "users").with_suffix("_history") == TableRef("s", "users_history")


class TestMemoryCatalog:
    """Tests for InMemoryDatabase as a SchemaCatalog."""

    @pytest.fixture
    def catalog(self):
        db = InMemoryDatabase(search_schema="app")
        create_users(db)
        return db

    def test_resolve_unqualified_uses_current_schema(self, catalog):
        assert resolve_table(catalog, "users") == TableRef("app", "users")

    def test_resolve_passes_table_ref_through(self, catalog):
        ref = TableRef("other", "t")
        assert resolve_table(catalog, ref) is ref

    def test_table_exists(self, catalog):
        assert catalog.table_exists(TableRef("app", "users"))
        assert not catalog.table_exists(TableRef("public", "users"))

    def test_columns_in_position_order(self, catalog):
        columns = catalog.columns(TableRef("app", "users"))
        assert [c.name for c in columns] == ["id", "name", "sys_period"]
        assert [c.position for c in columns] == [1, 2, 3]
        assert columns[0].type_name == "integer"

    def test_dropped_column_keeps_position(self, catalog):
        catalog.drop_column("users", "name")
        columns = catalog.columns(TableRef("app", "users"))
        assert len(columns) == 3
        assert columns[1].dropped
        assert [c.name for c in live_columns(catalog, TableRef("app", "users"))] == ["id", "sys_period"]
        assert find_column(catalog, TableRef("app", "users"), "name") is None

    def test_type_aliases_normalized(self):
        db = InMemoryDatabase()
        db.create_table("t", [("a", "int4"), ("b", "timestamptz"), ("c", "VARCHAR"), ("d", "int[]")])
        types = [c.type_name for c in db.columns(TableRef("public", "t"))]
        assert types == ["integer", "timestamp with time zone", "character varying", "integer[]"]
        assert db.columns(TableRef("public", "t"))[3].is_array

    def test_range_subtype(self, catalog):
        assert catalog.range_subtype("tstzrange") == "timestamp with time zone"
        assert catalog.range_subtype("tsrange") == "timestamp without time zone"
        assert catalog.range_subtype("integer") is None

    def test_type_has_equality(self, catalog):
        assert catalog.type_has_equality("text")
        assert catalog.type_has_equality("jsonb")
        assert not catalog.type_has_equality("json")
        assert not catalog.type_has_equality("point")
