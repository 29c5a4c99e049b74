"""
Render the PL/pgSQL syntax tree to source text.

Rendering is a pure function of the tree: the same tree always renders to
the same bytes, which is what lets regeneration after an unrelated schema
change be a no-op.
"""

from __future__ import annotations

from functools import singledispatch
from typing import List

from ..catalog.base import quote_ident
from .ast import (
    Assign,
    BinaryOp,
    Block,
    Call,
    Cast,
    CreateTrigger,
    DropTrigger,
    Exists,
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
    RowExpr,
    Script,
    SelectInto,
    UpdateSet,
    Variable,
)

INDENT = "    "


def quote_literal(value: str) -> str:
    """Quote a string constant like PostgreSQL's quote_literal()."""
    if "\\" in value:
        return "E'" + value.replace("\\", "\\\\").replace("'", "''") + "'"
    return "'" + value.replace("'", "''") + "'"


def dollar_quote_tag(body: str, base: str = "func") -> str:
    """Pick a ``$tag$`` delimiter that does not occur in ``body``."""
    tag = f"${base}$"
    counter = 0
    while tag in body:
        counter += 1
        tag = f"${base}{counter}$"
    return tag


# ---------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------


@singledispatch
def expression(node) -> str:
    raise TypeError(f"not an expression node: {type(node).__name__}")


@expression.register
def _(node: Identifier) -> str:
    return quote_ident(node.name)


@expression.register
def _(node: QualifiedName) -> str:
    return f"{quote_ident(node.schema)}.{quote_ident(node.name)}"


@expression.register
def _(node: Literal) -> str:
    if node.value is None:
        return "NULL"
    if isinstance(node.value, bool):
        return "true" if node.value else "false"
    if isinstance(node.value, int):
        return str(node.value)
    return quote_literal(node.value)


@expression.register
def _(node: Keyword) -> str:
    return node.text


@expression.register
def _(node: Variable) -> str:
    return node.name


@expression.register
def _(node: FieldRef) -> str:
    return f"{node.record}.{quote_ident(node.column)}"


@expression.register
def _(node: Call) -> str:
    return f"{node.function}({', '.join(expression(arg) for arg in node.args)})"


@expression.register
def _(node: Cast) -> str:
    return f"{_operand(node.expression)}::{node.type_name}"


@expression.register
def _(node: BinaryOp) -> str:
    return f"{_operand(node.left)} {node.operator} {_operand(node.right)}"


@expression.register
def _(node: Not) -> str:
    return f"NOT {_operand(node.operand)}"


@expression.register
def _(node: IsNull) -> str:
    return f"{_operand(node.operand)} IS NULL"


@expression.register
def _(node: RowExpr) -> str:
    return f"ROW({', '.join(expression(item) for item in node.items)})"


@expression.register
def _(node: InList) -> str:
    keyword = "NOT IN" if node.negated else "IN"
    return f"{_operand(node.operand)} {keyword} ({', '.join(expression(i) for i in node.items)})"


@expression.register
def _(node: Exists) -> str:
    return f"EXISTS (SELECT FROM {expression(node.table)} WHERE {expression(node.condition)})"


def _operand(node) -> str:
    text = expression(node)
    if isinstance(node, (BinaryOp, Not, IsNull, InList)):
        return f"({text})"
    return text


# ---------------------------------------------------------------
# Statements
# ---------------------------------------------------------------


@singledispatch
def statement(node, depth: int) -> List[str]:
    raise TypeError(f"not a statement node: {type(node).__name__}")


def _block(nodes, depth: int) -> List[str]:
    lines: List[str] = []
    for node in nodes:
        lines.extend(statement(node, depth))
    return lines


@statement.register
def _(node: Assign, depth: int) -> List[str]:
    return [f"{INDENT * depth}{expression(node.target)} := {expression(node.value)};"]


@statement.register
def _(node: If, depth: int) -> List[str]:
    pad = INDENT * depth
    lines = [f"{pad}IF {expression(node.condition)} THEN"]
    lines.extend(_block(node.then, depth + 1))
    if node.otherwise:
        lines.append(f"{pad}ELSE")
        lines.extend(_block(node.otherwise, depth + 1))
    lines.append(f"{pad}END IF;")
    return lines


@statement.register
def _(node: Raise, depth: int) -> List[str]:
    pad = INDENT * depth
    options = []
    args = "".join(f", {expression(a)}" for a in node.args)
    head = f"{pad}RAISE EXCEPTION {quote_literal(node.message)}{args} USING"
    if node.errcode is not None:
        options.append(f"ERRCODE = {quote_literal(node.errcode)}")
    if node.detail is not None:
        options.append(f"DETAIL = {quote_literal(node.detail)}")
    if node.hint is not None:
        options.append(f"HINT = {quote_literal(node.hint)}")
    if not options:
        return [head[: -len(" USING")] + ";"]
    lines = [head]
    for index, option in enumerate(options):
        suffix = ";" if index == len(options) - 1 else ","
        lines.append(f"{pad}{INDENT}{option}{suffix}")
    return lines


@statement.register
def _(node: Return, depth: int) -> List[str]:
    return [f"{INDENT * depth}RETURN {expression(node.value)};"]


@statement.register
def _(node: InsertInto, depth: int) -> List[str]:
    pad = INDENT * depth
    columns = ", ".join(quote_ident(c) for c in node.columns)
    values = ", ".join(expression(v) for v in node.values)
    return [
        f"{pad}INSERT INTO {expression(node.table)} ({columns})",
        f"{pad}{INDENT}VALUES ({values});",
    ]


@statement.register
def _(node: UpdateSet, depth: int) -> List[str]:
    pad = INDENT * depth
    assignments = ", ".join(f"{quote_ident(c)} = {expression(v)}" for c, v in node.assignments)
    return [
        f"{pad}UPDATE {expression(node.table)}",
        f"{pad}{INDENT}SET {assignments}",
        f"{pad}{INDENT}WHERE {expression(node.where)};",
    ]


@statement.register
def _(node: SelectInto, depth: int) -> List[str]:
    return [f"{INDENT * depth}SELECT {expression(node.value)} INTO {expression(node.target)};"]


@statement.register
def _(node: Block, depth: int) -> List[str]:
    pad = INDENT * depth
    lines = [f"{pad}BEGIN"]
    lines.extend(_block(node.body, depth + 1))
    if node.on_error:
        lines.append(f"{pad}EXCEPTION WHEN OTHERS THEN")
        lines.extend(_block(node.on_error, depth + 1))
    lines.append(f"{pad}END;")
    return lines


# ---------------------------------------------------------------
# Top level
# ---------------------------------------------------------------


def render_function(node: FunctionDefinition) -> str:
    body_lines: List[str] = []
    if node.declarations:
        body_lines.append("DECLARE")
        width = max(len(d.name) for d in node.declarations)
        for declaration in node.declarations:
            body_lines.append(f"{INDENT}{declaration.name.ljust(width)} {declaration.type_name};")
    body_lines.append("BEGIN")
    body_lines.extend(_block(node.body, 1))
    body_lines.append("END;")
    body = "\n".join(body_lines)
    tag = dollar_quote_tag(body)
    return (
        f"CREATE OR REPLACE FUNCTION {expression(node.name)}()\n"
        f"RETURNS TRIGGER AS {tag}\n"
        f"{body}\n"
        f"{tag} LANGUAGE plpgsql;"
    )


def render_drop_trigger(node: DropTrigger) -> str:
    return f"DROP TRIGGER IF EXISTS {quote_ident(node.name)} ON {expression(node.table)};"


def render_create_trigger(node: CreateTrigger) -> str:
    return (
        f"CREATE TRIGGER {quote_ident(node.name)}\n"
        f"BEFORE {' OR '.join(node.events)} ON {expression(node.table)}\n"
        f"FOR EACH ROW EXECUTE FUNCTION {expression(node.function)}();"
    )


def render(script: Script) -> str:
    """Render a whole script, statements separated by blank lines."""
    parts: List[str] = []
    if script.header:
        parts.append("\n".join(f"-- {' '.join(line.splitlines())}" for line in script.header))
    for node in script.statements:
        if isinstance(node, FunctionDefinition):
            parts.append(render_function(node))
        elif isinstance(node, DropTrigger):
            parts.append(render_drop_trigger(node))
        elif isinstance(node, CreateTrigger):
            parts.append(render_create_trigger(node))
        else:
            raise TypeError(f"not a top-level node: {type(node).__name__}")
    return "\n\n".join(parts) + "\n"
