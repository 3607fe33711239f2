"""RubyExecutor: simulates the Grammar-B program with Ruby semantics.

Receiver-less calls resolve against the shim registry first, then the
kernel built-ins, then ``define_method``, then a same-named cell of the
shared store (a fixture read from inside a method body), and finally as an
implicit shim redefinition when a block is attached.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from ._base import BaseExecutor, BreakSignal, NextSignal, ReturnSignal
from .. import ast_ruby as rb
from .. import constants
from ..builtins import ExitSignal, RubyBuiltins, format_printf
from ..errors import ExecutionError, MissingBlock
from ..memory import MemoryCell, MemoryStore, ScopeKind
from ..shims import (
    ShimArity,
    ShimBehavior,
    ShimDefinition,
    ShimRegistry,
    classify_def,
    declaration_targets,
)
from ..source import Span
from ..tokens import Grammar
from ..trace_types import EffectKind, ExecutionTrace
from ..value_types import (
    Closure,
    RubyRange,
    RubyRegex,
    RubySymbol,
    ruby_class_name,
    ruby_inspect,
    ruby_to_s,
    ruby_truthy,
)

logger = logging.getLogger(__name__)

_MAIN_OBJECT = "main"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def ruby_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool) or a is None or b is None:
        return a is b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(ruby_equal(x, y) for x, y in zip(a, b))
    return a == b


class RubyExecutor(BaseExecutor):
    """Evaluates an ``ast_ruby.Program`` top to bottom."""

    GRAMMAR = Grammar.B

    def __init__(
        self,
        store: MemoryStore,
        registry: ShimRegistry,
        program_name: str = constants.DEFAULT_PROGRAM_NAME,
        program_args: tuple[str, ...] = (),
        max_steps: int = constants.MAX_STEPS,
    ):
        super().__init__(store, max_steps)
        self.registry = registry
        self._program_name = program_name
        self._program_args = tuple(program_args)
        # block of each active method invocation; ``yield`` targets the top
        self._block_stack: list[Closure | None] = [None]
        self._dispatch: dict[type, Callable[[Any], Any]] = {
            rb.NilLit: lambda n: None,
            rb.TrueLit: lambda n: True,
            rb.FalseLit: lambda n: False,
            rb.SelfRef: lambda n: _MAIN_OBJECT,
            rb.IntLit: lambda n: n.value,
            rb.FloatLit: lambda n: n.value,
            rb.Str: self._eval_str,
            rb.Sym: lambda n: RubySymbol(n.name),
            rb.RegexLit: lambda n: RubyRegex(n.pattern),
            rb.ArrayLit: lambda n: self._eval_list(n.items),
            rb.RangeLit: self._eval_range,
            rb.LocalVar: self._eval_local,
            rb.GlobalVar: self._eval_global,
            rb.Const: self._eval_const,
            rb.Index: self._eval_index,
            rb.Assign: self._eval_assign,
            rb.OpAssign: self._eval_op_assign,
            rb.BinOp: lambda n: self.binop(n.op, self.eval(n.left), self.eval(n.right), n.span),
            rb.And: self._eval_and,
            rb.Or: self._eval_or,
            rb.Not: lambda n: not ruby_truthy(self.eval(n.operand)),
            rb.UnaryOp: self._eval_unary,
            rb.Ternary: self._eval_ternary,
            rb.Defined: self._eval_defined,
            rb.Splat: lambda n: self.eval(n.value),
            rb.Call: self._eval_call,
            rb.Yield: self._eval_yield,
            rb.Body: self._eval_body,
            rb.Paren: lambda n: self._eval_body(n.body),
            rb.If: self._eval_if,
            rb.While: self._eval_while,
            rb.Def: self._eval_def,
            rb.Return: lambda n: self._raise(ReturnSignal, n),
            rb.Break: lambda n: self._raise(BreakSignal, n),
            rb.Next: lambda n: self._raise(NextSignal, n),
        }

    def _error(self, message: str, span: Span) -> ExecutionError:
        return ExecutionError(message, span, Grammar.B)

    # ── program ──────────────────────────────────────────────────

    def run(self, program: rb.Program) -> ExecutionTrace:
        logger.info("Executing Grammar B (%d statements)", len(program.body.statements))
        self.store.declare(
            constants.RUBY_ARGV,
            list(self._program_args),
            Grammar.B,
            program.span,
            frame=self.store.global_frame,
        )
        for name in constants.RUBY_PROGRAM_NAME_GLOBALS:
            self.store.declare(
                name, self._program_name, Grammar.B, program.span, frame=self.store.global_frame
            )
        try:
            with self.store.frame(
                ScopeKind.FUNCTION, constants.RUBY_MAIN_FRAME, parent=self.store.global_frame
            ):
                try:
                    self._eval_body(program.body)
                except ReturnSignal:
                    pass
                except BreakSignal as sig:
                    raise self._error("Invalid break", sig.span or program.span)
                except NextSignal as sig:
                    raise self._error("Invalid next", sig.span or program.span)
            self._exit_status = 0
        except ExitSignal as exc:
            self._exit_status = exc.status
        logger.info("Grammar B finished after %d steps", self._steps)
        return self.trace()

    # ── evaluation core ──────────────────────────────────────────

    def eval(self, node) -> Any:
        handler = self._dispatch.get(type(node))
        if handler is None:
            raise self._error(f"cannot evaluate {type(node).__name__}", node.span)
        return handler(node)

    def _eval_body(self, body: rb.Body) -> Any:
        result = None
        for stmt in body.statements:
            self.tick(stmt.span)
            result = self.eval(stmt)
        return result

    def _raise(self, signal: type, node) -> Any:
        value = self.eval(node.value) if node.value is not None else None
        raise signal(value, node.span)

    def _eval_list(self, items) -> list[Any]:
        values: list[Any] = []
        for item in items:
            if isinstance(item, rb.Splat):
                values.extend(self._splat(self.eval(item.value)))
            else:
                values.append(self.eval(item))
        return values

    @staticmethod
    def _splat(value: Any) -> list[Any]:
        if isinstance(value, list):
            return list(value)
        if isinstance(value, RubyRange):
            return value.to_list()
        return [] if value is None else [value]

    # ── literals and variables ───────────────────────────────────

    def _eval_str(self, node: rb.Str) -> str:
        return "".join(
            part if isinstance(part, str) else ruby_to_s(self._eval_body(part))
            for part in node.parts
        )

    def _eval_range(self, node: rb.RangeLit) -> RubyRange:
        low, high = self.eval(node.low), self.eval(node.high)
        if not isinstance(low, int) or not isinstance(high, int):
            raise self._error("bad value for range", node.span)
        return RubyRange(low, high, node.exclusive)

    def _eval_local(self, node: rb.LocalVar) -> Any:
        cell = self.store.lookup(node.name)
        return None if cell is None else cell.value

    def _eval_global(self, node: rb.GlobalVar) -> Any:
        cell = self.store.global_frame.cells.get(node.name)
        return None if cell is None else cell.value

    def _eval_const(self, node: rb.Const) -> Any:
        cell = self.store.global_frame.cells.get(node.name)
        if cell is None:
            raise self._error(f"uninitialized constant {node.name}", node.span)
        return cell.value

    def _eval_index(self, node: rb.Index) -> Any:
        receiver = self.eval(node.receiver)
        return self.index_value(receiver, self._eval_list(node.args), node.span)

    def index_value(self, receiver: Any, args: list[Any], span: Span) -> Any:
        if isinstance(receiver, int) and not isinstance(receiver, bool) and len(args) == 1:
            bit = self._integer_arg(args[0], span)
            return 0 if bit < 0 else (receiver >> bit) & 1
        if not isinstance(receiver, (list, str)):
            raise self._error(
                f"undefined method '[]' for an instance of {ruby_class_name(receiver)}", span
            )
        size = len(receiver)
        if len(args) == 1 and isinstance(args[0], RubyRange):
            rng = args[0]
            start = rng.low + size if rng.low < 0 else rng.low
            stop = rng.high + size if rng.high < 0 else rng.high
            if not rng.exclusive:
                stop += 1
            return receiver[start:stop] if 0 <= start <= size else None
        if len(args) == 2:
            start, length = args
            start = start + size if start < 0 else start
            if not 0 <= start <= size or length < 0:
                return None
            return receiver[start : start + length]
        if len(args) != 1:
            raise self._error(f"wrong number of arguments (given {len(args)}, expected 1..2)", span)
        idx = self._integer_arg(args[0], span)
        return receiver[idx] if -size <= idx < size else None

    # ── assignment ───────────────────────────────────────────────

    def _read_target(self, target) -> Any:
        if isinstance(target, rb.Index):
            return self._eval_index(target)
        if isinstance(target, rb.Const):
            cell = self.store.global_frame.cells.get(target.name)
            return None if cell is None else cell.value
        return self.eval(target)

    def _write_target(self, target, value: Any, span: Span) -> Any:
        if isinstance(target, rb.LocalVar):
            cell = self.store.assign(target.name, value, Grammar.B, span)
        elif isinstance(target, (rb.GlobalVar, rb.Const)):
            cell = self.store.declare(
                target.name, value, Grammar.B, span, frame=self.store.global_frame
            )
        elif isinstance(target, rb.Index):
            self._index_assign(target, value, span)
            return value
        else:
            raise self._error(f"cannot assign to {type(target).__name__}", span)
        self.after_write(cell, span)
        return value

    def _index_assign(self, target: rb.Index, value: Any, span: Span):
        receiver = self.eval(target.receiver)
        args = self._eval_list(target.args)
        if not isinstance(receiver, list) or len(args) != 1:
            raise self._error(
                f"undefined method '[]=' for an instance of {ruby_class_name(receiver)}", span
            )
        idx = self._integer_arg(args[0], span)
        if idx < 0:
            idx += len(receiver)
            if idx < 0:
                raise self._error(f"index {idx - len(receiver)} too small for array", span)
        receiver.extend([None] * (idx + 1 - len(receiver)))
        receiver[idx] = value

    def _integer_arg(self, value: Any, span: Span) -> int:
        """Integer conversion for index and count arguments; floats truncate."""
        if isinstance(value, float) and value == value and abs(value) != float("inf"):
            return int(value)
        if value is None:
            raise self._error("no implicit conversion from nil to integer", span)
        if not isinstance(value, int) or isinstance(value, bool):
            raise self._error(
                f"no implicit conversion of {ruby_class_name(value)} into Integer", span
            )
        return value

    def _eval_assign(self, node: rb.Assign) -> Any:
        return self._write_target(node.target, self.eval(node.value), node.span)

    def _eval_op_assign(self, node: rb.OpAssign) -> Any:
        current = self._read_target(node.target)
        if node.op == "||" and ruby_truthy(current):
            return current
        if node.op == "&&" and not ruby_truthy(current):
            return current
        value = self.eval(node.value)
        if node.op not in ("||", "&&"):
            value = self.binop(node.op, current, value, node.span)
        return self._write_target(node.target, value, node.span)

    # ── operators ────────────────────────────────────────────────

    def _eval_and(self, node: rb.And) -> Any:
        left = self.eval(node.left)
        if not ruby_truthy(left):
            self.emit_short_circuit(node.op, node.span)
            return left
        return self.eval(node.right)

    def _eval_or(self, node: rb.Or) -> Any:
        left = self.eval(node.left)
        if ruby_truthy(left):
            self.emit_short_circuit(node.op, node.span)
            return left
        return self.eval(node.right)

    def _eval_unary(self, node: rb.UnaryOp) -> Any:
        value = self.eval(node.operand)
        if node.op == "~" and isinstance(value, int) and not isinstance(value, bool):
            return ~value
        if node.op in ("-@", "+@") and _is_number(value):
            return -value if node.op == "-@" else value
        raise self._error(
            f"undefined method '{node.op}' for an instance of {ruby_class_name(value)}", node.span
        )

    def binop(self, op: str, a: Any, b: Any, span: Span) -> Any:
        if op in ("==", "!="):
            same = ruby_equal(a, b)
            return same if op == "==" else not same
        if op in ("=~", "!~"):
            return self._match(op, a, b, span)
        if _is_number(a) and _is_number(b):
            return self._numeric(op, a, b, span)
        if isinstance(a, str):
            return self._string_op(op, a, b, span)
        if isinstance(a, list):
            return self._list_op(op, a, b, span)
        raise self._error(
            f"undefined method '{op}' for an instance of {ruby_class_name(a)}", span
        )

    def _numeric(self, op: str, a: Any, b: Any, span: Span) -> Any:
        integral = isinstance(a, int) and isinstance(b, int)
        if op in ("/", "%"):
            if b == 0:
                if integral:
                    raise self._error("divided by 0", span)
                if op == "%":
                    return float("nan")
                return float("nan") if a == 0 else float("inf") if a > 0 else float("-inf")
            return a // b if op == "/" and integral else a / b if op == "/" else a % b
        if op == "**":
            if integral and b < 0:
                return float(a) ** b
            return a**b
        if op in ("&", "|", "^", "<<", ">>"):
            if not integral:
                raise self._error(f"undefined method '{op}' for an instance of Float", span)
            return {
                "&": lambda: a & b,
                "|": lambda: a | b,
                "^": lambda: a ^ b,
                "<<": lambda: a << b if b >= 0 else a >> -b,
                ">>": lambda: a >> b if b >= 0 else a << -b,
            }[op]()
        table: dict[str, Callable[[], Any]] = {
            "+": lambda: a + b,
            "-": lambda: a - b,
            "*": lambda: a * b,
            "<": lambda: a < b,
            ">": lambda: a > b,
            "<=": lambda: a <= b,
            ">=": lambda: a >= b,
            "<=>": lambda: (a > b) - (a < b),
        }
        if op not in table:
            raise self._error(f"undefined method '{op}' for an instance of Integer", span)
        return table[op]()

    def _string_op(self, op: str, a: str, b: Any, span: Span) -> Any:
        if op in ("+", "<<"):
            if not isinstance(b, str):
                raise self._error(f"no implicit conversion of {ruby_class_name(b)} into String", span)
            return a + b
        if op == "*":
            count = self._integer_arg(b, span)
            if count < 0:
                raise self._error("negative argument", span)
            return a * count
        if op == "%":
            args = b if isinstance(b, list) else [b]
            return format_printf(a, args, span, Grammar.B, to_text=ruby_to_s)
        if op in ("<", ">", "<=", ">=", "<=>") and isinstance(b, str):
            return {
                "<": a < b,
                ">": a > b,
                "<=": a <= b,
                ">=": a >= b,
                "<=>": (a > b) - (a < b),
            }[op]
        raise self._error(f"undefined method '{op}' for an instance of String", span)

    def _list_op(self, op: str, a: list, b: Any, span: Span) -> Any:
        if op == "<<":
            a.append(b)
            return a
        if op == "*" and isinstance(b, str):
            return b.join(ruby_to_s(v) for v in a)
        if op == "*" and isinstance(b, (int, float)) and not isinstance(b, bool):
            count = self._integer_arg(b, span)
            if count < 0:
                raise self._error("negative argument", span)
            return a * count
        if not isinstance(b, list):
            raise self._error(f"no implicit conversion of {ruby_class_name(b)} into Array", span)
        if op == "+":
            return a + b
        if op == "-":
            return [x for x in a if not any(ruby_equal(x, y) for y in b)]
        if op == "&":
            return [x for x in dict.fromkeys(a) if x in b]
        if op == "|":
            return list(dict.fromkeys(a + b))
        raise self._error(f"undefined method '{op}' for an instance of Array", span)

    def _match(self, op: str, a: Any, b: Any, span: Span) -> Any:
        if isinstance(a, RubyRegex):
            a, b = b, a
        if not isinstance(b, RubyRegex) or not isinstance(a, (str, type(None))):
            raise self._error(f"undefined method '{op}'", span)
        found = None if a is None else re.search(b.pattern, a)
        if op == "!~":
            return found is None
        return None if found is None else found.start()

    def _eval_ternary(self, node: rb.Ternary) -> Any:
        taken = ruby_truthy(self.eval(node.cond))
        self.emit_branch(taken, node.span)
        return self.eval(node.then if taken else node.other)

    def _eval_defined(self, node: rb.Defined) -> Any:
        operand = node.operand
        if isinstance(operand, rb.LocalVar):
            return "local-variable"
        if isinstance(operand, rb.GlobalVar):
            return "global-variable" if operand.name in self.store.global_frame.cells else None
        if isinstance(operand, rb.Const):
            return "expression" if operand.name in self.store.global_frame.cells else None
        if isinstance(operand, rb.Call) and operand.receiver is None:
            known = operand.name in self.registry or operand.name in RubyBuiltins.KERNEL
            return "method" if known else None
        if isinstance(operand, rb.Yield):
            return "yield" if self.current_block() is not None else None
        return "expression"

    # ── control flow ─────────────────────────────────────────────

    def _eval_if(self, node: rb.If) -> Any:
        taken = ruby_truthy(self.eval(node.cond))
        self.emit_branch(taken, node.span)
        if taken:
            return self._eval_body(node.then)
        if node.other is None:
            return None
        return self.eval(node.other)

    def _eval_while(self, node: rb.While) -> Any:
        while True:
            self.tick(node.span)
            value = ruby_truthy(self.eval(node.cond))
            taken = not value if node.until else value
            self.emit_branch(taken, node.span)
            if not taken:
                return None
            try:
                self._eval_body(node.body)
            except BreakSignal as sig:
                return sig.value
            except NextSignal:
                continue

    # ── methods, blocks and shims ────────────────────────────────

    def _eval_def(self, node: rb.Def) -> RubySymbol:
        definition = classify_def(node)
        self.registry.declare(definition)
        self.emit(EffectKind.SHIM, f"declare {node.name} as {definition.behavior.value}", node.span)
        logger.debug("def %s classified as %s", node.name, definition.behavior.value)
        return RubySymbol(node.name)

    def current_block(self) -> Closure | None:
        return self._block_stack[-1]

    def _closure(self, block: rb.BlockNode) -> Closure:
        return Closure(node=block, frame=self.store.current, outer_block=self.current_block())

    def call_block(self, block: Closure, args: list[Any], span: Span) -> Any:
        if not isinstance(block, Closure):
            raise self._error(f"wrong argument type {ruby_class_name(block)} (expected Proc)", span)
        self.tick(span)
        params = block.node.params
        positional = [p for p in params if p.kind in ("required", "optional")]
        if len(args) == 1 and isinstance(args[0], list) and len(positional) > 1:
            args = list(args[0])
        with self.store.frame(ScopeKind.BLOCK, "block", parent=block.frame):
            self._bind_params(params, args, None, span, strict=False)
            self._block_stack.append(block.outer_block)
            try:
                return self._eval_body(block.node.body)
            except NextSignal as sig:
                return sig.value
            finally:
                self._block_stack.pop()

    def _bind_params(
        self, params, args: list[Any], block: Closure | None, span: Span, strict: bool
    ):
        remaining = list(args)
        required = sum(1 for p in params if p.kind == "required")
        spare = len(args) - required
        for i, param in enumerate(params):
            if param.kind == "required":
                value = remaining.pop(0) if remaining else None
            elif param.kind == "optional":
                if spare > 0 and remaining:
                    value = remaining.pop(0)
                    spare -= 1
                else:
                    value = self.eval(param.default) if param.default is not None else None
            elif param.kind == "splat":
                after = sum(1 for q in params[i + 1 :] if q.kind == "required")
                take = max(len(remaining) - after, 0)
                value, remaining = remaining[:take], remaining[take:]
            else:
                value = block
            self.store.declare(param.name, value, Grammar.B, param.span)
        if strict and remaining:
            raise self._error(f"wrong number of arguments (given {len(args)})", span)

    def _call_def(self, node: rb.Def, args: list[Any], block: Closure | None, span: Span) -> Any:
        self.tick(span)
        with self.store.frame(ScopeKind.FUNCTION, node.name, parent=self.store.global_frame):
            self._bind_params(node.params, args, block, span, strict=True)
            self._block_stack.append(block)
            try:
                return self._eval_body(node.body)
            except ReturnSignal as sig:
                return sig.value
            finally:
                self._block_stack.pop()

    def _eval_yield(self, node: rb.Yield) -> Any:
        block = self.current_block()
        if block is None:
            raise MissingBlock("yield", node.span)
        return self.call_block(block, self._eval_list(node.args), node.span)

    def _call_args(self, node: rb.Call) -> tuple[list[Any], Closure | None]:
        args: list[Any] = []
        block = None
        for arg in node.args:
            if isinstance(arg, rb.BlockPass):
                block = self.eval(arg.value)
                if block is not None and not isinstance(block, Closure):
                    raise self._error(
                        f"wrong argument type {ruby_class_name(block)} (expected Proc)", arg.span
                    )
            elif isinstance(arg, rb.Splat):
                args.extend(self._splat(self.eval(arg.value)))
            else:
                args.append(self.eval(arg))
        if node.block is not None:
            block = self._closure(node.block)
        return args, block

    def _eval_call(self, node: rb.Call) -> Any:
        if node.receiver is not None and not isinstance(node.receiver, rb.SelfRef):
            receiver = self.eval(node.receiver)
            args, block = self._call_args(node)
            self.tick(node.span)
            return self._catching_break(
                node,
                lambda: RubyBuiltins.call_method(self, receiver, node.name, args, block, node.span),
            )
        args, block = self._call_args(node)
        return self._catching_break(node, lambda: self._call_function(node, args, block))

    @staticmethod
    def _catching_break(node: rb.Call, call: Callable[[], Any]) -> Any:
        if node.block is None and node.block_arg is None:
            return call()
        try:
            return call()
        except BreakSignal as sig:
            return sig.value

    def _call_function(self, node: rb.Call, args: list[Any], block: Closure | None) -> Any:
        name, span = node.name, node.span
        if name in self.registry:
            return self._invoke_shim(node, args, block)
        builtin = RubyBuiltins.KERNEL.get(name)
        if builtin is not None:
            self.tick(span)
            return builtin(self, args, block, span)
        if name == constants.DEFINE_METHOD:
            return self._define_method(args, block, span)
        if not args and block is None and not node.has_parens:
            cell = self.store.lookup(name)
            if cell is not None:
                return cell.value
        return self._invoke_shim(node, args, block)

    def _invoke_shim(self, node: rb.Call, args: list[Any], block: Closure | None) -> Any:
        name, span = node.name, node.span
        invocation = self.registry.invoke(name, tuple(args), block, span)
        definition = invocation.definition
        if invocation.redefined:
            self.emit(EffectKind.SHIM, f"redefine {name}", span)
        behavior = definition.behavior
        if behavior == ShimBehavior.YIELD and invocation.block is None:
            # the call rebound the slot (possibly to the same block)
            return RubySymbol(name)
        if behavior == ShimBehavior.PASS_THROUGH:
            self._mark_declarations(node)
            return list(invocation.args)
        if behavior == ShimBehavior.CONSTANT:
            return definition.constant
        if behavior == ShimBehavior.YIELD:
            self.emit(EffectKind.SHIM, f"yield {name}", span)
            try:
                return self.call_block(invocation.block, [], span)
            except BreakSignal as sig:
                return sig.value
        return self._call_def(definition.definition, list(invocation.args), invocation.block, span)

    def _mark_declarations(self, node: rb.Call):
        for name in declaration_targets(node):
            if name.startswith("$"):
                cell: MemoryCell | None = self.store.global_frame.cells.get(name)
            else:
                cell = self.store.lookup(name)
            if cell is not None:
                cell.via_shim = True

    def _define_method(self, args: list[Any], block: Closure | None, span: Span) -> RubySymbol:
        if len(args) != 1 or not isinstance(args[0], (RubySymbol, str)):
            raise self._error(
                f"{ruby_inspect(args[0]) if args else 'nothing'} is not a symbol nor a string", span
            )
        name = str(args[0])
        if block is None:
            raise MissingBlock(constants.DEFINE_METHOD, span)
        if name in self.registry:
            _, changed = self.registry.redefine(name, block, span)
        else:
            self.registry.declare(
                ShimDefinition(
                    name=name,
                    arity=ShimArity.variadic(),
                    behavior=ShimBehavior.YIELD,
                    block=block,
                    redefinable=True,
                    span=span,
                )
            )
            changed = True
        if changed:
            self.emit(EffectKind.SHIM, f"redefine {name}", span)
        return RubySymbol(name)
