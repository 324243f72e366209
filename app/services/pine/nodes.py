"""
AST node types for the recognized Pine Script subset.

Expressions: Const | Name | Attribute | Index | Call | UnaryOp | BinOp |
Ternary | ArrayLiteral | Sink.
Statements: Comment | Declaration | Assign | Reassign | Destructure |
FunctionDef | ExprStmt.

Nodes are frozen; the translator builds new trees instead of mutating.
Statement line numbers are excluded from equality so a re-parsed rendering
compares equal to the original program.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional, Union


# =============================================================================
# Expressions
# =============================================================================


@dataclass(frozen=True, eq=False)
class Const:
    """Literal value. NaN (the na sentinel) compares equal to itself here."""

    value: Any

    def _key(self) -> tuple:
        v = self.value
        if isinstance(v, float) and math.isnan(v):
            return ("na",)
        return (type(v).__name__, v)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Const) and self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    @property
    def is_na(self) -> bool:
        return isinstance(self.value, float) and math.isnan(self.value)


@dataclass(frozen=True)
class Name:
    id: str


@dataclass(frozen=True)
class Attribute:
    obj: "Expr"
    attr: str


@dataclass(frozen=True)
class Index:
    """x[n]: history reference on series, element access on arrays."""

    obj: "Expr"
    index: "Expr"


@dataclass(frozen=True)
class Call:
    func: "Expr"
    args: tuple["Expr", ...] = ()
    kwargs: tuple[tuple[str, "Expr"], ...] = ()

    def kwarg(self, name: str) -> Optional["Expr"]:
        for key, value in self.kwargs:
            if key == name:
                return value
        return None


@dataclass(frozen=True)
class UnaryOp:
    op: str  # "-", "+", "not"
    operand: "Expr"


@dataclass(frozen=True)
class BinOp:
    op: str  # arithmetic, comparison, "and", "or"
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Ternary:
    condition: "Expr"
    when_true: "Expr"
    when_false: "Expr"


@dataclass(frozen=True)
class ArrayLiteral:
    items: tuple["Expr", ...] = ()


@dataclass(frozen=True)
class Sink:
    """
    Normalized output call: plot | hline | bgcolor | fill.

    `args` are keyword-normalized (series/price/color/title/linewidth/style/
    plot1/plot2) in a fixed order per sink kind.
    """

    kind: str
    args: tuple[tuple[str, "Expr"], ...] = ()

    def arg(self, name: str) -> Optional["Expr"]:
        for key, value in self.args:
            if key == name:
                return value
        return None


Expr = Union[
    Const, Name, Attribute, Index, Call, UnaryOp, BinOp, Ternary, ArrayLiteral, Sink
]


# =============================================================================
# Statements
# =============================================================================


@dataclass(frozen=True)
class Comment:
    text: str
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Declaration:
    """indicator(...) / strategy(...) / library(...): a title binding only."""

    kind: str
    title: Optional[str]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Assign:
    """
    New binding. mode is "let" (plain =), "var" or "varip" (mutable,
    initialized once).
    """

    target: str
    value: Expr
    mode: str = "let"
    type_name: Optional[str] = None
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Reassign:
    """Update an existing binding: :=, +=, -=, *=, /=, %=."""

    target: str
    op: str
    value: Expr
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Destructure:
    """[a, b, c] = expr"""

    targets: tuple[str, ...]
    value: Expr
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class FunctionDef:
    """Single-line user function: name(params) => expr"""

    name: str
    params: tuple[str, ...]
    body: Expr
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class ExprStmt:
    expr: Expr
    line: int = field(default=0, compare=False)


Statement = Union[
    Comment, Declaration, Assign, Reassign, Destructure, FunctionDef, ExprStmt
]


@dataclass(frozen=True)
class Program:
    body: tuple[Statement, ...] = ()
    version: Optional[int] = None  # from //@version=N, None when absent

    @property
    def statements(self) -> tuple[Statement, ...]:
        """Executable statements (comments skipped)."""
        return tuple(s for s in self.body if not isinstance(s, Comment))
