"""Shim registry: the Grammar-B stand-ins that reinterpret Grammar-A syntax.

A shim is a Ruby method whose name is a C type or function name (``int``,
``char``, ``main`` ...).  Calls are resolved here before any built-in
Grammar-B semantics.  The registry is an index-addressed table: every name
owns one slot and redefinition replaces the slot's contents in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable

from . import ast_ruby as rb
from . import constants
from .errors import ArityMismatch, ExpansionLimitExceeded, MissingBlock, UnresolvedShim
from .source import NO_SPAN, Span
from .tokens import Grammar

logger = logging.getLogger(__name__)


class ShimBehavior(str, Enum):
    PASS_THROUGH = "pass-through-args"
    CONSTANT = "constant-value"
    YIELD = "yield-to-block"
    REDEFINE = "redefine-self-on-call"
    METHOD_BODY = "method-body"


@dataclass(frozen=True)
class ShimArity:
    """Accepted argument counts; ``maximum`` of None means variadic."""

    minimum: int = 0
    maximum: int | None = None

    @classmethod
    def fixed(cls, count: int) -> ShimArity:
        return cls(count, count)

    @classmethod
    def variadic(cls, minimum: int = 0) -> ShimArity:
        return cls(minimum, None)

    @property
    def is_variadic(self) -> bool:
        return self.maximum is None

    def accepts(self, count: int) -> bool:
        return count >= self.minimum and (self.maximum is None or count <= self.maximum)

    def describe(self) -> str:
        if self.maximum is None:
            return f"{self.minimum}+"
        if self.minimum == self.maximum:
            return str(self.minimum)
        return f"{self.minimum}..{self.maximum}"


@dataclass(frozen=True)
class ShimDefinition:
    name: str
    arity: ShimArity
    behavior: ShimBehavior
    constant: Any = None
    # YIELD: the bound block once the slot has been redefined
    block: Any = None
    # METHOD_BODY: the def to run; REDEFINE/YIELD keep it for reference
    definition: rb.Def | None = None
    redefinable: bool = False
    span: Span = NO_SPAN


@dataclass(frozen=True)
class ShimInvocation:
    """What the executor must do for one resolved shim call."""

    definition: ShimDefinition
    args: tuple = ()
    # block to run for YIELD (the call's block or the bound one)
    block: Any = None
    redefined: bool = False


@dataclass
class _Slot:
    index: int
    definition: ShimDefinition
    history: list[ShimBehavior] = field(default_factory=list)


class ShimRegistry:
    """Index-addressed shim table with declare / redefine / lookup / invoke."""

    def __init__(
        self,
        shims: Iterable[ShimDefinition] = (),
        max_redefinitions: int = constants.MAX_SHIM_REDEFINITIONS,
    ):
        self._slots: list[_Slot] = []
        self._index: dict[str, int] = {}
        self._max_redefinitions = max_redefinitions
        self._redefinitions = 0
        for shim in shims:
            self.declare(shim)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def redefinitions(self) -> int:
        return self._redefinitions

    def slot(self, name: str) -> int | None:
        return self._index.get(name)

    def declare(self, definition: ShimDefinition) -> int:
        """Install *definition*, replacing any existing slot of the same name."""
        idx = self._index.get(definition.name)
        if idx is None:
            idx = len(self._slots)
            self._slots.append(_Slot(index=idx, definition=definition))
            self._index[definition.name] = idx
        else:
            self._slots[idx].definition = definition
        self._slots[idx].history.append(definition.behavior)
        logger.debug(
            "Declared shim %s (%s, arity %s) in slot %d",
            definition.name,
            definition.behavior.value,
            definition.arity.describe(),
            idx,
        )
        return idx

    def lookup(self, name: str) -> ShimDefinition | None:
        idx = self._index.get(name)
        return None if idx is None else self._slots[idx].definition

    def redefine(self, name: str, block: Any, span: Span = NO_SPAN) -> tuple[ShimDefinition, bool]:
        """Bind slot *name* to *block* as yield-to-block.

        Returns the slot's definition and whether anything changed; rebinding
        the block already bound is a no-op.
        """
        current = self.lookup(name)
        if current is None:
            raise UnresolvedShim(name, span)
        if current.behavior == ShimBehavior.YIELD and current.block == block:
            return current, False
        self._redefinitions += 1
        if self._redefinitions > self._max_redefinitions:
            raise ExpansionLimitExceeded(
                f"more than {self._max_redefinitions} shim redefinitions (last: '{name}')",
                span,
                Grammar.B,
            )
        redefined = replace(
            current,
            behavior=ShimBehavior.YIELD,
            arity=ShimArity.variadic(),
            block=block,
            redefinable=True,
            span=span if not span.is_unknown() else current.span,
        )
        self.declare(redefined)
        logger.debug("Redefined shim %s to yield its bound block", name)
        return redefined, True

    def invoke(
        self, name: str, args: tuple = (), block: Any = None, span: Span = NO_SPAN
    ) -> ShimInvocation:
        definition = self.lookup(name)
        if definition is None:
            if block is None:
                raise UnresolvedShim(name, span)
            # a C function definition read as Ruby: name(...) { body }
            self.declare(
                ShimDefinition(
                    name=name,
                    arity=ShimArity.variadic(),
                    behavior=ShimBehavior.REDEFINE,
                    redefinable=True,
                    span=span,
                )
            )
            definition, _ = self.redefine(name, block, span)
            return ShimInvocation(definition=definition, args=args, redefined=True)

        if not definition.arity.accepts(len(args)):
            raise ArityMismatch(name, definition.arity.describe(), len(args), span)

        behavior = definition.behavior
        if behavior == ShimBehavior.REDEFINE or (
            behavior == ShimBehavior.YIELD and definition.redefinable and block is not None
        ):
            if block is None:
                raise MissingBlock(name, span)
            definition, changed = self.redefine(name, block, span)
            return ShimInvocation(definition=definition, args=args, redefined=changed)
        if behavior == ShimBehavior.YIELD:
            target = block if block is not None else definition.block
            if target is None:
                raise MissingBlock(name, span)
            return ShimInvocation(definition=definition, args=args, block=target)
        return ShimInvocation(definition=definition, args=args, block=block)

    def snapshot(self) -> list[tuple[str, str]]:
        """(name, behavior) per slot, in slot order."""
        return [(s.definition.name, s.definition.behavior.value) for s in self._slots]


# ── classification of Ruby defs ──────────────────────────────────


def def_arity(node: rb.Def) -> ShimArity:
    required = sum(1 for p in node.params if p.kind == "required")
    optional = sum(1 for p in node.params if p.kind == "optional")
    if any(p.kind == "splat" for p in node.params):
        return ShimArity.variadic(required)
    return ShimArity(required, required + optional)


def _is_self_redefinition(stmt: Any, node: rb.Def) -> bool:
    if not isinstance(stmt, rb.Call) or stmt.name != constants.DEFINE_METHOD:
        return False
    if stmt.receiver is not None:
        return False
    positional = stmt.positional
    if len(positional) != 1 or not isinstance(positional[0], rb.Sym):
        return False
    if positional[0].name != node.name:
        return False
    block_param = next((p.name for p in node.params if p.kind == "block"), None)
    block_arg = stmt.block_arg
    return (
        block_param is not None
        and block_arg is not None
        and isinstance(block_arg.value, rb.LocalVar)
        and block_arg.value.name == block_param
    )


def classify_def(node: rb.Def) -> ShimDefinition:
    """Derive the shim behaviour of a Ruby ``def`` from its body."""
    arity = def_arity(node)
    statements = node.body.statements
    base = ShimDefinition(
        name=node.name,
        arity=arity,
        behavior=ShimBehavior.METHOD_BODY,
        definition=node,
        span=node.span,
    )
    if not statements:
        return replace(base, behavior=ShimBehavior.CONSTANT, constant=None)
    if len(statements) != 1:
        return base
    stmt = statements[0]
    splat = next((p.name for p in node.params if p.kind == "splat"), None)
    if isinstance(stmt, rb.LocalVar) and stmt.name == splat:
        return replace(base, behavior=ShimBehavior.PASS_THROUGH)
    if rb.is_constant_literal(stmt):
        return replace(base, behavior=ShimBehavior.CONSTANT, constant=rb.literal_value(stmt))
    if isinstance(stmt, rb.Yield) and not stmt.args:
        return replace(base, behavior=ShimBehavior.YIELD)
    if _is_self_redefinition(stmt, node):
        return replace(base, behavior=ShimBehavior.REDEFINE, redefinable=True)
    return base


def declaration_targets(call: rb.Call) -> tuple[str, ...]:
    """Names a declaration-that-is-a-call writes, or () if it is not one.

    ``int p = 1, i = 3`` read as Ruby is ``int(p = 1, i = 3)``: every
    argument is an assignment, evaluated in the caller's scope.
    """
    args = call.positional
    if not args:
        return ()
    names = []
    for arg in args:
        if not isinstance(arg, rb.Assign) or not isinstance(
            arg.target, (rb.LocalVar, rb.GlobalVar)
        ):
            return ()
        names.append(arg.target.name)
    return tuple(names)
