"""
Typed syntax tree for generated PL/pgSQL.

The generator assembles trigger procedures from these nodes instead of
pasting names into template strings. Table and column names only ever
enter the output through Identifier / QualifiedName (quote_ident rules)
or Literal (quote_literal rules), so unusual names cannot change the
structure of the generated code.

Invariants:
    - Nodes are immutable
    - Keyword and Variable only accept plain SQL words; anything coming
      from the catalog must be an Identifier or a Literal
    - BinaryOp only accepts operators from OPERATORS
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union
import re

_WORD = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*( [A-Za-z_][A-Za-z0-9_]*)*$")

OPERATORS = frozenset(
    {"=", "<>", ">=", "<=", ">", "<", "+", "-", "%", "||", "AND", "OR", "IS NOT DISTINCT FROM"}
)


def _require_word(value: str, kind: str) -> None:
    if not _WORD.match(value):
        raise ValueError(f"{kind} must be a plain SQL word, got {value!r}")


# ---------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------


@dataclass(frozen=True)
class Identifier:
    """Column or object name, rendered with quote_ident rules."""
    name: str


@dataclass(frozen=True)
class QualifiedName:
    """``schema.name``, both parts quoted as needed."""
    schema: str
    name: str


@dataclass(frozen=True)
class Literal:
    """Constant: str, bool, int or None (NULL)."""
    value: Union[str, bool, int, None]


@dataclass(frozen=True)
class Keyword:
    """Built-in word such as CURRENT_TIMESTAMP or TG_OP."""
    text: str

    def __post_init__(self) -> None:
        _require_word(self.text, "keyword")


@dataclass(frozen=True)
class Variable:
    """Local variable declared in the function."""
    name: str

    def __post_init__(self) -> None:
        _require_word(self.name, "variable name")


@dataclass(frozen=True)
class FieldRef:
    """``NEW.col`` / ``OLD.col``."""
    record: str
    column: str

    def __post_init__(self) -> None:
        if self.record not in ("NEW", "OLD"):
            raise ValueError(f"record must be NEW or OLD, got {self.record!r}")


@dataclass(frozen=True)
class Call:
    """Function call with positional arguments."""
    function: str
    args: Tuple["Expression", ...] = ()

    def __post_init__(self) -> None:
        _require_word(self.function, "function name")


@dataclass(frozen=True)
class Cast:
    expression: "Expression"
    type_name: str

    def __post_init__(self) -> None:
        _require_word(self.type_name, "type name")


@dataclass(frozen=True)
class BinaryOp:
    left: "Expression"
    operator: str
    right: "Expression"

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise ValueError(f"unsupported operator {self.operator!r}")


@dataclass(frozen=True)
class Not:
    operand: "Expression"


@dataclass(frozen=True)
class IsNull:
    operand: "Expression"


@dataclass(frozen=True)
class RowExpr:
    """``ROW(a, b, ...)``."""
    items: Tuple["Expression", ...]


@dataclass(frozen=True)
class InList:
    operand: "Expression"
    items: Tuple["Expression", ...]
    negated: bool = False


@dataclass(frozen=True)
class Exists:
    """``EXISTS (SELECT FROM table WHERE condition)``."""
    table: QualifiedName
    condition: "Expression"


Expression = Union[
    Identifier,
    QualifiedName,
    Literal,
    Keyword,
    Variable,
    FieldRef,
    Call,
    Cast,
    BinaryOp,
    Not,
    IsNull,
    RowExpr,
    InList,
    Exists,
]


def and_(*conditions: Expression) -> Expression:
    result = conditions[0]
    for condition in conditions[1:]:
        result = BinaryOp(result, "AND", condition)
    return result


def or_(*conditions: Expression) -> Expression:
    result = conditions[0]
    for condition in conditions[1:]:
        result = BinaryOp(result, "OR", condition)
    return result


# ---------------------------------------------------------------
# Statements
# ---------------------------------------------------------------


@dataclass(frozen=True)
class Assign:
    target: Union[Variable, FieldRef]
    value: Expression


@dataclass(frozen=True)
class If:
    condition: Expression
    then: Tuple["Statement", ...]
    otherwise: Tuple["Statement", ...] = ()


@dataclass(frozen=True)
class Raise:
    """``RAISE EXCEPTION`` with a format string and arguments.

    ``errcode`` is a condition name such as trigger_protocol_violated.
    """
    message: str
    args: Tuple[Expression, ...] = ()
    errcode: Optional[str] = None
    detail: Optional[str] = None
    hint: Optional[str] = None

    def __post_init__(self) -> None:
        if self.errcode is not None:
            _require_word(self.errcode, "error code name")
        if self.message.count("%") - 2 * self.message.count("%%") != len(self.args):
            raise ValueError("RAISE placeholder count does not match arguments")


@dataclass(frozen=True)
class Return:
    value: Expression


@dataclass(frozen=True)
class InsertInto:
    table: QualifiedName
    columns: Tuple[str, ...]
    values: Tuple[Expression, ...]

    def __post_init__(self) -> None:
        if len(self.columns) != len(self.values):
            raise ValueError("INSERT column and value counts differ")


@dataclass(frozen=True)
class UpdateSet:
    table: QualifiedName
    assignments: Tuple[Tuple[str, Expression], ...]
    where: Expression


@dataclass(frozen=True)
class SelectInto:
    value: Expression
    target: Variable


@dataclass(frozen=True)
class Block:
    """Nested ``BEGIN ... EXCEPTION WHEN OTHERS THEN ... END``."""
    body: Tuple["Statement", ...]
    on_error: Tuple["Statement", ...] = ()


Statement = Union[Assign, If, Raise, Return, InsertInto, UpdateSet, SelectInto, Block]


# ---------------------------------------------------------------
# Top level
# ---------------------------------------------------------------


@dataclass(frozen=True)
class Declaration:
    name: str
    type_name: str

    def __post_init__(self) -> None:
        _require_word(self.name, "variable name")
        _require_word(self.type_name, "type name")


@dataclass(frozen=True)
class FunctionDefinition:
    """``CREATE OR REPLACE FUNCTION name() RETURNS TRIGGER``."""
    name: QualifiedName
    declarations: Tuple[Declaration, ...]
    body: Tuple[Statement, ...]


@dataclass(frozen=True)
class DropTrigger:
    name: str
    table: QualifiedName


@dataclass(frozen=True)
class CreateTrigger:
    """BEFORE INSERT OR UPDATE OR DELETE ... FOR EACH ROW trigger."""
    name: str
    table: QualifiedName
    function: QualifiedName
    events: Tuple[str, ...] = ("INSERT", "UPDATE", "DELETE")

    def __post_init__(self) -> None:
        for event in self.events:
            _require_word(event, "trigger event")


@dataclass(frozen=True)
class Script:
    """Sequence of top-level statements, preceded by header comments."""
    header: Tuple[str, ...] = ()
    statements: Tuple[Union[FunctionDefinition, DropTrigger, CreateTrigger], ...] = field(default=())
