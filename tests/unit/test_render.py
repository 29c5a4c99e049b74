"""
Unit tests for the PL/pgSQL syntax tree and renderer.

Tests cover:
- Literal and identifier quoting
- Dollar-quote tag selection
- Operator precedence through parenthesization
- Statement and function layout
- Node validation
"""

import pytest

from temporal_tables.codegen.ast import (
    Assign,
    BinaryOp,
    Block,
    Call,
    Cast,
    CreateTrigger,
    Declaration,
    DropTrigger,
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
    Script,
    Variable,
    and_,
)
from temporal_tables.codegen.render import (
    dollar_quote_tag,
    expression,
    quote_literal,
    render,
    statement,
)


class TestQuoting:
    """Tests for literal quoting and dollar tags."""

    def test_quote_literal(self):
        assert quote_literal("it's") == "'it''s'"

    def test_quote_literal_backslash(self):
        assert quote_literal("a\\b") == "E'a\\\\b'"

    def test_dollar_tag_default(self):
        assert dollar_quote_tag("BEGIN END;") == "$func$"

    def test_dollar_tag_avoids_collision(self):
        assert dollar_quote_tag("x $func$ y $func1$") == "$func2$"


class TestExpressions:
    """Tests for expression rendering."""

    def test_identifier_quoting(self):
        assert expression(Identifier("b b")) == '"b b"'
        assert expression(QualifiedName("public", "Users")) == 'public."Users"'

    def test_field_ref(self):
        assert expression(FieldRef("OLD", "name")) == "OLD.name"
        assert expression(FieldRef("NEW", "b b")) == 'NEW."b b"'

    def test_literals(self):
        assert expression(Literal(None)) == "NULL"
        assert expression(Literal(True)) == "true"
        assert expression(Literal(42)) == "42"
        assert expression(Literal("[)")) == "'[)'"

    def test_nested_binary_ops_are_parenthesized(self):
        node = and_(
            BinaryOp(Keyword("TG_OP"), "=", Literal("UPDATE")),
            Not(IsNull(Variable("v_x"))),
        )
        assert expression(node) == "(TG_OP = 'UPDATE') AND (NOT (v_x IS NULL))"

    def test_cast_of_compound(self):
        node = Cast(BinaryOp(Call("txid_current"), "%", Literal(4294967296)), "text")
        assert expression(node) == "(txid_current() % 4294967296)::text"

    def test_in_list(self):
        node = InList(Keyword("TG_OP"), (Literal("INSERT"), Literal("UPDATE")), negated=True)
        assert expression(node) == "TG_OP NOT IN ('INSERT', 'UPDATE')"


class TestValidation:
    """Tests for node validation."""

    def test_keyword_rejects_injection(self):
        with pytest.raises(ValueError):
            Keyword("TG_OP; DROP TABLE users")

    def test_field_ref_record(self):
        with pytest.raises(ValueError):
            FieldRef("ROW", "x")

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            BinaryOp(Literal(1), "~~", Literal(2))

    def test_raise_placeholder_count(self):
        with pytest.raises(ValueError):
            Raise('relation "%" and "%"', (Literal("a"),))

    def test_raise_allows_escaped_percent(self):
        Raise("100%% done")


class TestStatements:
    """Tests for statement rendering."""

    def test_if_else(self):
        node = If(IsNull(Variable("v_x")), (Return(Keyword("OLD")),), (Return(Keyword("NEW")),))
        assert statement(node, 0) == [
            "IF v_x IS NULL THEN",
            "    RETURN OLD;",
            "ELSE",
            "    RETURN NEW;",
            "END IF;",
        ]

    def test_raise_with_options(self):
        node = Raise(
            'column "%" is bad',
            (Literal("a"),),
            errcode="data_exception",
            hint="fix it",
        )
        assert statement(node, 1) == [
            "    RAISE EXCEPTION 'column \"%\" is bad', 'a' USING",
            "        ERRCODE = 'data_exception',",
            "        HINT = 'fix it';",
        ]

    def test_raise_without_options(self):
        assert statement(Raise("boom"), 0) == ["RAISE EXCEPTION 'boom';"]

    def test_insert(self):
        node = InsertInto(
            QualifiedName("public", "h"),
            ("id", "b b"),
            (FieldRef("OLD", "id"), FieldRef("OLD", "b b")),
        )
        assert statement(node, 0) == [
            'INSERT INTO public.h (id, "b b")',
            '    VALUES (OLD.id, OLD."b b");',
        ]

    def test_block_with_handler(self):
        node = Block((Assign(Variable("v_x"), Literal(1)),), (Assign(Variable("v_x"), Literal(None)),))
        assert statement(node, 0) == [
            "BEGIN",
            "    v_x := 1;",
            "EXCEPTION WHEN OTHERS THEN",
            "    v_x := NULL;",
            "END;",
        ]


class TestScript:
    """Tests for whole-script rendering."""

    @pytest.fixture
    def script(self):
        function = QualifiedName("public", "users_versioning")
        table = QualifiedName("public", "users")
        return Script(
            header=("first line", "second\nline"),
            statements=(
                FunctionDefinition(
                    function,
                    (Declaration("v_a", "integer"), Declaration("v_longer", "timestamptz")),
                    (Return(Keyword("NEW")),),
                ),
                DropTrigger("users_versioning_trigger", table),
                CreateTrigger("users_versioning_trigger", table, function),
            ),
        )

    def test_render(self, script):
        assert render(script) == (
            "-- first line\n"
            "-- second line\n"
            "\n"
            "CREATE OR REPLACE FUNCTION public.users_versioning()\n"
            "RETURNS TRIGGER AS $func$\n"
            "DECLARE\n"
            "    v_a      integer;\n"
            "    v_longer timestamptz;\n"
            "BEGIN\n"
            "    RETURN NEW;\n"
            "END;\n"
            "$func$ LANGUAGE plpgsql;\n"
            "\n"
            "DROP TRIGGER IF EXISTS users_versioning_trigger ON public.users;\n"
            "\n"
            "CREATE TRIGGER users_versioning_trigger\n"
            "BEFORE INSERT OR UPDATE OR DELETE ON public.users\n"
            "FOR EACH ROW EXECUTE FUNCTION public.users_versioning();\n"
        )

    def test_render_is_deterministic(self, script):
        assert render(script) == render(script)
