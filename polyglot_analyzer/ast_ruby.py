"""AST_B: node types for the Grammar-B (Ruby subset) parse tree.

Pure data, never unified with AST_A.  Every node carries its source span.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from .source import Span


# ── literals ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class NilLit:
    span: Span


@dataclass(frozen=True)
class TrueLit:
    span: Span


@dataclass(frozen=True)
class FalseLit:
    span: Span


@dataclass(frozen=True)
class SelfRef:
    span: Span


@dataclass(frozen=True)
class IntLit:
    span: Span
    value: int


@dataclass(frozen=True)
class FloatLit:
    span: Span
    value: float


@dataclass(frozen=True)
class Str:
    """String literal; parts are plain text or interpolated ``Body`` nodes."""

    span: Span
    parts: tuple[Union[str, Body], ...]

    @property
    def is_plain(self) -> bool:
        return all(isinstance(part, str) for part in self.parts)


@dataclass(frozen=True)
class Sym:
    span: Span
    name: str


@dataclass(frozen=True)
class RegexLit:
    span: Span
    pattern: str


@dataclass(frozen=True)
class ArrayLit:
    span: Span
    items: tuple[Node, ...]


@dataclass(frozen=True)
class RangeLit:
    span: Span
    low: Node
    high: Node
    exclusive: bool = False


# ── variables and assignment ─────────────────────────────────────


@dataclass(frozen=True)
class LocalVar:
    span: Span
    name: str


@dataclass(frozen=True)
class GlobalVar:
    span: Span
    name: str  # includes the sigil: $ret, @x


@dataclass(frozen=True)
class Const:
    span: Span
    name: str


@dataclass(frozen=True)
class Index:
    span: Span
    receiver: Node
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Assign:
    span: Span
    target: Union[LocalVar, GlobalVar, Const, Index]
    value: Node


@dataclass(frozen=True)
class OpAssign:
    span: Span
    op: str  # + - * / % ** || && | & ^ << >>
    target: Union[LocalVar, GlobalVar, Const, Index]
    value: Node


# ── operators ────────────────────────────────────────────────────


@dataclass(frozen=True)
class BinOp:
    span: Span
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class And:
    span: Span
    left: Node
    right: Node
    op: str = "&&"


@dataclass(frozen=True)
class Or:
    span: Span
    left: Node
    right: Node
    op: str = "||"


@dataclass(frozen=True)
class Not:
    span: Span
    operand: Node


@dataclass(frozen=True)
class UnaryOp:
    span: Span
    op: str  # -@ +@ ~
    operand: Node


@dataclass(frozen=True)
class Ternary:
    span: Span
    cond: Node
    then: Node
    other: Node


@dataclass(frozen=True)
class Defined:
    span: Span
    operand: Node


# ── calls and blocks ─────────────────────────────────────────────


@dataclass(frozen=True)
class Splat:
    span: Span
    value: Node


@dataclass(frozen=True)
class BlockPass:
    span: Span
    value: Node


@dataclass(frozen=True)
class Param:
    span: Span
    name: str
    kind: str = "required"  # required | optional | splat | block
    default: Node | None = None


@dataclass(frozen=True)
class BlockNode:
    span: Span
    params: tuple[Param, ...]
    body: Body
    brace: bool = True


@dataclass(frozen=True)
class Call:
    span: Span
    receiver: Node | None
    name: str
    args: tuple[Node, ...] = ()
    block: BlockNode | None = None
    has_parens: bool = False
    name_span: Span | None = None

    @property
    def block_arg(self) -> BlockPass | None:
        for arg in self.args:
            if isinstance(arg, BlockPass):
                return arg
        return None

    @property
    def positional(self) -> tuple[Node, ...]:
        return tuple(arg for arg in self.args if not isinstance(arg, BlockPass))


@dataclass(frozen=True)
class Yield:
    span: Span
    args: tuple[Node, ...] = ()


# ── statements ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Body:
    span: Span
    statements: tuple[Node, ...]


@dataclass(frozen=True)
class Paren:
    span: Span
    body: Body


@dataclass(frozen=True)
class If:
    span: Span
    cond: Node
    then: Body
    other: Union[Body, If, None] = None


@dataclass(frozen=True)
class While:
    span: Span
    cond: Node
    body: Body
    until: bool = False


@dataclass(frozen=True)
class Def:
    span: Span
    name: str
    params: tuple[Param, ...]
    body: Body
    name_span: Span | None = None


@dataclass(frozen=True)
class Return:
    span: Span
    value: Node | None = None


@dataclass(frozen=True)
class Break:
    span: Span
    value: Node | None = None


@dataclass(frozen=True)
class Next:
    span: Span
    value: Node | None = None


@dataclass(frozen=True)
class Program:
    span: Span
    body: Body


Node = Any  # any of the node classes above


def literal_value(node: Node) -> Any:
    """Python value of a constant literal node (used by shim classification)."""
    if isinstance(node, (IntLit, FloatLit)):
        return node.value
    if isinstance(node, TrueLit):
        return True
    if isinstance(node, FalseLit):
        return False
    if isinstance(node, NilLit):
        return None
    if isinstance(node, Str) and node.is_plain:
        return "".join(node.parts)
    raise TypeError(f"{type(node).__name__} is not a constant literal")


def is_constant_literal(node: Node) -> bool:
    return isinstance(node, (NilLit, TrueLit, FalseLit, IntLit, FloatLit)) or (
        isinstance(node, Str) and node.is_plain
    )
