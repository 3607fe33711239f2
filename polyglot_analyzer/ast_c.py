"""AST_A: node types for the Grammar-A (C subset) parse tree.

Pure data.  Every node carries the span of the source it derives from; for
macro-expanded constructs that is the span of the invocation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .source import Span


@dataclass(frozen=True)
class TypeName:
    base: str
    pointer_depth: int = 0

    def __str__(self) -> str:
        return self.base + "*" * self.pointer_depth


# ── expressions ──────────────────────────────────────────────────


@dataclass(frozen=True)
class IntLiteral:
    span: Span
    value: int


@dataclass(frozen=True)
class FloatLiteral:
    span: Span
    value: float


@dataclass(frozen=True)
class CharLiteral:
    span: Span
    value: int


@dataclass(frozen=True)
class StringLiteral:
    span: Span
    value: str


@dataclass(frozen=True)
class Identifier:
    span: Span
    name: str


@dataclass(frozen=True)
class Unary:
    span: Span
    op: str  # - + ! ~ * &
    operand: Expr


@dataclass(frozen=True)
class IncDec:
    span: Span
    op: str  # ++ --
    operand: Expr
    prefix: bool


@dataclass(frozen=True)
class Binary:
    span: Span
    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Assign:
    span: Span
    op: str  # = += -= ...
    target: Expr
    value: Expr


@dataclass(frozen=True)
class Conditional:
    span: Span
    cond: Expr
    then: Expr
    other: Expr


@dataclass(frozen=True)
class Call:
    span: Span
    callee: Expr
    args: tuple[Expr, ...]


@dataclass(frozen=True)
class Index:
    span: Span
    base: Expr
    index: Expr


@dataclass(frozen=True)
class Cast:
    span: Span
    type_name: TypeName
    operand: Expr


@dataclass(frozen=True)
class SizeOf:
    span: Span
    target: Union[TypeName, Expr]


@dataclass(frozen=True)
class Comma:
    span: Span
    left: Expr
    right: Expr


Expr = Union[
    IntLiteral,
    FloatLiteral,
    CharLiteral,
    StringLiteral,
    Identifier,
    Unary,
    IncDec,
    Binary,
    Assign,
    Conditional,
    Call,
    Index,
    Cast,
    SizeOf,
    Comma,
]


# ── declarations and statements ──────────────────────────────────


@dataclass(frozen=True)
class InitList:
    span: Span
    items: tuple[Expr, ...]


@dataclass(frozen=True)
class Declarator:
    span: Span
    name: str
    pointer_depth: int = 0
    is_array: bool = False
    array_size: Expr | None = None
    init: Union[Expr, InitList, None] = None


@dataclass(frozen=True)
class Declaration:
    span: Span
    base_type: str
    qualifiers: tuple[str, ...]
    declarators: tuple[Declarator, ...]


@dataclass(frozen=True)
class ExprStmt:
    span: Span
    expr: Expr


@dataclass(frozen=True)
class Compound:
    span: Span
    items: tuple[Stmt, ...]


@dataclass(frozen=True)
class If:
    span: Span
    cond: Expr
    then: Stmt
    other: Stmt | None = None


@dataclass(frozen=True)
class While:
    span: Span
    cond: Expr
    body: Stmt


@dataclass(frozen=True)
class DoWhile:
    span: Span
    body: Stmt
    cond: Expr


@dataclass(frozen=True)
class For:
    span: Span
    init: Union[Declaration, ExprStmt, None]
    cond: Expr | None
    step: Expr | None
    body: Stmt


@dataclass(frozen=True)
class Return:
    span: Span
    value: Expr | None = None


@dataclass(frozen=True)
class Break:
    span: Span


@dataclass(frozen=True)
class Continue:
    span: Span


@dataclass(frozen=True)
class Empty:
    span: Span


Stmt = Union[
    Declaration, ExprStmt, Compound, If, While, DoWhile, For, Return, Break, Continue, Empty
]


@dataclass(frozen=True)
class Param:
    span: Span
    type_name: TypeName
    name: str | None = None


@dataclass(frozen=True)
class FunctionDecl:
    span: Span
    return_type: TypeName
    name: str
    params: tuple[Param, ...]
    variadic: bool = False


@dataclass(frozen=True)
class FunctionDef:
    span: Span
    return_type: TypeName
    name: str
    params: tuple[Param, ...]
    body: Compound
    variadic: bool = False


@dataclass(frozen=True)
class Program:
    span: Span
    items: tuple[Union[Declaration, FunctionDecl, FunctionDef], ...]
