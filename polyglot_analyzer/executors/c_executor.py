"""CExecutor: simulates the Grammar-A program with C semantics."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ._base import BaseExecutor, BreakSignal, NextSignal, ReturnSignal
from .. import ast_c
from .. import constants
from ..builtins import CBuiltins, ExitSignal, c_string_literal
from ..errors import ExecutionError
from ..memory import MemoryCell, MemoryStore, ScopeKind
from ..source import Span
from ..tokens import Grammar
from ..trace_types import ExecutionTrace
from ..value_types import CArray, Pointer

logger = logging.getLogger(__name__)

_TYPE_SIZES: dict[str, int] = {
    "char": 1,
    "_Bool": 1,
    "short": 2,
    "int": 4,
    "long": 8,
    "float": 4,
    "double": 8,
    "void": 1,
}
_POINTER_SIZE = 8


def _base_word(ctype: str) -> str:
    words = ctype.replace("*", " ").replace("[]", " ").split()
    return next((w for w in reversed(words) if w not in ("unsigned", "signed")), "int")


def coerce_c(value: Any, ctype: str | None) -> Any:
    """Convert *value* to what a cell of type *ctype* stores (wrapping ints)."""
    if ctype is None or "*" in ctype or ctype.endswith("[]"):
        return value
    if isinstance(value, (Pointer, CArray)):
        return value
    base = _base_word(ctype)
    if base in ("float", "double"):
        return float(value)
    if base == "void":
        return value
    if base == "_Bool":
        return int(bool(value))
    bits = constants.C_INT_BITS.get(base, 32)
    number = int(value)
    number &= (1 << bits) - 1
    if "unsigned" not in ctype.split() and number >= 1 << (bits - 1):
        number -= 1 << bits
    return number


def size_of(ctype: str) -> int:
    if "*" in ctype:
        return _POINTER_SIZE
    return _TYPE_SIZES.get(_base_word(ctype), 4)


def c_truthy(value: Any) -> bool:
    if isinstance(value, Pointer):
        return True
    return value != 0


class CExecutor(BaseExecutor):
    """Runs ``main(argc, argv)`` of an ``ast_c.Program``."""

    GRAMMAR = Grammar.A

    def __init__(
        self,
        store: MemoryStore,
        program_name: str = constants.DEFAULT_PROGRAM_NAME,
        program_args: tuple[str, ...] = (),
        max_steps: int = constants.MAX_STEPS,
    ):
        super().__init__(store, max_steps)
        self._program_name = program_name
        self._program_args = tuple(program_args)
        self._functions: dict[str, ast_c.FunctionDef] = {}
        self._stmt_dispatch: dict[type, Callable] = {
            ast_c.Declaration: self._exec_declaration,
            ast_c.ExprStmt: lambda s: self.eval(s.expr),
            ast_c.Compound: self._exec_compound,
            ast_c.If: self._exec_if,
            ast_c.While: self._exec_while,
            ast_c.DoWhile: self._exec_do_while,
            ast_c.For: self._exec_for,
            ast_c.Return: self._exec_return,
            ast_c.Break: self._exec_break,
            ast_c.Continue: self._exec_continue,
            ast_c.Empty: lambda s: None,
        }
        self._expr_dispatch: dict[type, Callable] = {
            ast_c.IntLiteral: lambda e: e.value,
            ast_c.CharLiteral: lambda e: e.value,
            ast_c.FloatLiteral: lambda e: e.value,
            ast_c.StringLiteral: lambda e: c_string_literal(e.value),
            ast_c.Identifier: self._eval_identifier,
            ast_c.Unary: self._eval_unary,
            ast_c.IncDec: self._eval_incdec,
            ast_c.Binary: self._eval_binary,
            ast_c.Assign: self._eval_assign,
            ast_c.Conditional: self._eval_conditional,
            ast_c.Call: self._eval_call,
            ast_c.Index: self._eval_index,
            ast_c.Cast: lambda e: coerce_c(self.eval(e.operand), str(e.type_name)),
            ast_c.SizeOf: self._eval_sizeof,
            ast_c.Comma: self._eval_comma,
        }

    def _error(self, message: str, span: Span) -> ExecutionError:
        return ExecutionError(message, span, Grammar.A)

    # ── program ──────────────────────────────────────────────────

    def run(self, program: ast_c.Program) -> ExecutionTrace:
        logger.info("Executing Grammar A (%d top-level items)", len(program.items))
        try:
            for item in program.items:
                if isinstance(item, ast_c.FunctionDef):
                    self._functions[item.name] = item
                elif isinstance(item, ast_c.Declaration):
                    self._exec_declaration(item)
            main = self._functions.get(constants.C_ENTRY_FUNCTION)
            if main is None:
                raise self._error("undefined reference to 'main'", program.span)
            status = self._call_function(main, self._main_args(main), main.span)
            self._exit_status = status if isinstance(status, int) else 0
        except ExitSignal as exc:
            self._exit_status = exc.status
        logger.info("Grammar A finished after %d steps", self._steps)
        return self.trace()

    def _main_args(self, main: ast_c.FunctionDef) -> list[Any]:
        argv = [c_string_literal(self._program_name)]
        argv.extend(c_string_literal(arg) for arg in self._program_args)
        values: list[Any] = [len(argv), Pointer(CArray(argv + [0], "char*"), 0)]
        return values[: len(main.params)]

    def _call_function(self, fn: ast_c.FunctionDef, args: list[Any], span: Span) -> Any:
        self.tick(span)
        if len(args) < len(fn.params) or (len(args) > len(fn.params) and not fn.variadic and fn.params):
            which = "few" if len(args) < len(fn.params) else "many"
            raise self._error(f"too {which} arguments to function '{fn.name}'", span)
        with self.store.frame(ScopeKind.FUNCTION, fn.name, parent=self.store.global_frame):
            for param, value in zip(fn.params, args):
                if param.name:
                    ctype = str(param.type_name)
                    self.store.declare(
                        param.name, coerce_c(value, ctype), Grammar.A, param.span, declared_type=ctype
                    )
            try:
                for item in fn.body.items:
                    self.execute(item)
            except ReturnSignal as ret:
                if ret.value is None:
                    return None
                return coerce_c(ret.value, str(fn.return_type))
        return None

    # ── statements ───────────────────────────────────────────────

    def execute(self, stmt):
        self.tick(stmt.span)
        self._stmt_dispatch[type(stmt)](stmt)

    def _exec_declaration(self, decl: ast_c.Declaration):
        for d in decl.declarators:
            ctype = decl.base_type + "*" * d.pointer_depth
            if d.is_array:
                value = self._array_value(d, ctype)
                cell = self.store.declare(d.name, value, Grammar.A, d.span, declared_type=ctype + "[]")
            else:
                value = 0
                if isinstance(d.init, ast_c.InitList):
                    value = self.eval(d.init.items[0]) if d.init.items else 0
                elif d.init is not None:
                    value = self.eval(d.init)
                cell = self.store.declare(
                    d.name, coerce_c(value, ctype), Grammar.A, d.span, declared_type=ctype
                )
            if d.init is not None:
                self.after_write(cell, d.span)

    def _array_value(self, d: ast_c.Declarator, ctype: str) -> CArray:
        values: list[Any] = []
        if isinstance(d.init, ast_c.InitList):
            values = [coerce_c(self.eval(item), ctype) for item in d.init.items]
        elif isinstance(d.init, ast_c.StringLiteral):
            values = CArray.from_string(d.init.value).elements
        elif d.init is not None:
            raise self._error("invalid initializer for array", d.span)
        size = len(values)
        if d.array_size is not None:
            size = int(self.eval(d.array_size))
            if size < 0:
                raise self._error(f"size of array '{d.name}' is negative", d.span)
        if len(values) > size:
            if not (isinstance(d.init, ast_c.StringLiteral) and len(values) == size + 1):
                raise self._error(f"excess elements in array initializer for '{d.name}'", d.span)
            values = values[:size]
        values.extend([0] * (size - len(values)))
        return CArray(values, ctype)

    def _exec_compound(self, stmt: ast_c.Compound):
        with self.store.frame(ScopeKind.BLOCK, "block"):
            for item in stmt.items:
                self.execute(item)

    def _exec_if(self, stmt: ast_c.If):
        taken = c_truthy(self.eval(stmt.cond))
        self.emit_branch(taken, stmt.span)
        if taken:
            self.execute(stmt.then)
        elif stmt.other is not None:
            self.execute(stmt.other)

    def _loop_body(self, body) -> bool:
        """Run one iteration; False means the loop was broken out of."""
        try:
            self.execute(body)
        except BreakSignal:
            return False
        except NextSignal:
            pass
        return True

    def _exec_while(self, stmt: ast_c.While):
        while True:
            self.tick(stmt.span)
            taken = c_truthy(self.eval(stmt.cond))
            self.emit_branch(taken, stmt.span)
            if not taken or not self._loop_body(stmt.body):
                return

    def _exec_do_while(self, stmt: ast_c.DoWhile):
        while True:
            self.tick(stmt.span)
            if not self._loop_body(stmt.body):
                return
            taken = c_truthy(self.eval(stmt.cond))
            self.emit_branch(taken, stmt.span)
            if not taken:
                return

    def _exec_for(self, stmt: ast_c.For):
        with self.store.frame(ScopeKind.BLOCK, "for"):
            if stmt.init is not None:
                self.execute(stmt.init)
            while True:
                self.tick(stmt.span)
                taken = True if stmt.cond is None else c_truthy(self.eval(stmt.cond))
                self.emit_branch(taken, stmt.span)
                if not taken or not self._loop_body(stmt.body):
                    return
                if stmt.step is not None:
                    self.eval(stmt.step)

    def _exec_return(self, stmt: ast_c.Return):
        value = self.eval(stmt.value) if stmt.value is not None else None
        raise ReturnSignal(value, stmt.span)

    def _exec_break(self, stmt: ast_c.Break):
        raise BreakSignal(span=stmt.span)

    def _exec_continue(self, stmt: ast_c.Continue):
        raise NextSignal(span=stmt.span)

    # ── memory access ────────────────────────────────────────────

    def _lookup(self, name: str, span: Span) -> MemoryCell:
        cell = self.store.lookup(name)
        if cell is None:
            raise self._error(f"'{name}' undeclared", span)
        return cell

    def _address(self, expr, span: Span) -> Pointer:
        """The location an lvalue expression designates."""
        if isinstance(expr, ast_c.Identifier):
            return Pointer(self._lookup(expr.name, expr.span), 0)
        if isinstance(expr, ast_c.Index):
            base = self.eval(expr.base)
            if not isinstance(base, Pointer):
                raise self._error("subscripted value is neither array nor pointer", expr.span)
            return base.offset(int(self.eval(expr.index)))
        if isinstance(expr, ast_c.Unary) and expr.op == "*":
            target = self.eval(expr.operand)
            if not isinstance(target, Pointer):
                raise self._error("invalid type argument of unary '*'", expr.span)
            return target
        raise self._error("lvalue required", span)

    def load(self, ptr: Pointer, span: Span) -> Any:
        target = ptr.target
        if isinstance(target, CArray):
            if not 0 <= ptr.index < len(target):
                raise self._error(f"array index {ptr.index} is out of bounds", span)
            return target.elements[ptr.index]
        if ptr.index != 0:
            raise self._error(f"pointer offset {ptr.index} is out of bounds", span)
        value = target.value
        if isinstance(value, CArray):
            return Pointer(value, 0)
        return value

    def store_at(self, ptr: Pointer, value: Any, span: Span) -> Any:
        target = ptr.target
        if isinstance(target, CArray):
            if not 0 <= ptr.index < len(target):
                raise self._error(f"array index {ptr.index} is out of bounds", span)
            stored = coerce_c(value, target.element_type)
            target.elements[ptr.index] = stored
            return stored
        if ptr.index != 0:
            raise self._error(f"pointer offset {ptr.index} is out of bounds", span)
        if isinstance(target.value, CArray):
            raise self._error(f"assignment to expression with array type '{target.name}'", span)
        stored = coerce_c(value, target.declared_type)
        target.value = stored
        self.after_write(target, span)
        return stored

    # ── expressions ──────────────────────────────────────────────

    def eval(self, expr) -> Any:
        return self._expr_dispatch[type(expr)](expr)

    def _eval_identifier(self, expr: ast_c.Identifier) -> Any:
        return self.load(Pointer(self._lookup(expr.name, expr.span), 0), expr.span)

    def _eval_unary(self, expr: ast_c.Unary) -> Any:
        if expr.op == "&":
            if isinstance(expr.operand, ast_c.Identifier):
                cell = self._lookup(expr.operand.name, expr.span)
                if isinstance(cell.value, CArray):
                    return Pointer(cell.value, 0)
                return Pointer(cell, 0)
            return self._address(expr.operand, expr.span)
        value = self.eval(expr.operand)
        if expr.op == "*":
            if not isinstance(value, Pointer):
                if value == 0:
                    raise self._error("null pointer dereference", expr.span)
                raise self._error("invalid type argument of unary '*'", expr.span)
            return self.load(value, expr.span)
        if expr.op == "!":
            return int(not c_truthy(value))
        if isinstance(value, Pointer):
            raise self._error(f"wrong type argument to unary '{expr.op}'", expr.span)
        if expr.op == "-":
            return -value
        if expr.op == "~":
            return ~int(value)
        return value

    def _eval_incdec(self, expr: ast_c.IncDec) -> Any:
        ptr = self._address(expr.operand, expr.span)
        old = self.load(ptr, expr.span)
        delta = 1 if expr.op == "++" else -1
        new = old.offset(delta) if isinstance(old, Pointer) else old + delta
        stored = self.store_at(ptr, new, expr.span)
        return stored if expr.prefix else old

    def _eval_binary(self, expr: ast_c.Binary) -> Any:
        if expr.op in ("&&", "||"):
            left = c_truthy(self.eval(expr.left))
            if (expr.op == "&&" and not left) or (expr.op == "||" and left):
                self.emit_short_circuit(expr.op, expr.span)
                return int(left)
            return int(c_truthy(self.eval(expr.right)))
        return self.binop(expr.op, self.eval(expr.left), self.eval(expr.right), expr.span)

    def binop(self, op: str, a: Any, b: Any, span: Span) -> Any:
        if isinstance(a, Pointer) or isinstance(b, Pointer):
            return self._pointer_binop(op, a, b, span)
        if op in ("/", "%"):
            if b == 0:
                raise self._error("division by zero", span)
            if isinstance(a, float) or isinstance(b, float):
                if op == "%":
                    raise self._error("invalid operands to binary %", span)
                return a / b
            quotient = abs(a) // abs(b)
            if (a < 0) != (b < 0):
                quotient = -quotient
            return quotient if op == "/" else a - b * quotient
        if op in ("<<", ">>", "&", "|", "^") and (isinstance(a, float) or isinstance(b, float)):
            raise self._error(f"invalid operands to binary {op}", span)
        if op in ("<<", ">>") and b < 0:
            raise self._error("shift count is negative", span)
        table: dict[str, Callable[[], Any]] = {
            "+": lambda: a + b,
            "-": lambda: a - b,
            "*": lambda: a * b,
            "<<": lambda: a << b,
            ">>": lambda: a >> b,
            "&": lambda: a & b,
            "|": lambda: a | b,
            "^": lambda: a ^ b,
            "<": lambda: int(a < b),
            ">": lambda: int(a > b),
            "<=": lambda: int(a <= b),
            ">=": lambda: int(a >= b),
            "==": lambda: int(a == b),
            "!=": lambda: int(a != b),
        }
        if op not in table:
            raise self._error(f"unsupported operator '{op}'", span)
        return table[op]()

    def _pointer_binop(self, op: str, a: Any, b: Any, span: Span) -> Any:
        if op == "+" and isinstance(a, Pointer) and isinstance(b, int):
            return a.offset(b)
        if op == "+" and isinstance(b, Pointer) and isinstance(a, int):
            return b.offset(a)
        if op == "-" and isinstance(a, Pointer) and isinstance(b, int):
            return a.offset(-b)
        if op == "-" and isinstance(a, Pointer) and isinstance(b, Pointer):
            if a.target is not b.target:
                raise self._error("subtraction of unrelated pointers", span)
            return a.index - b.index
        if op in ("==", "!="):
            same = a == b
            return int(same if op == "==" else not same)
        if op in ("<", ">", "<=", ">=") and isinstance(a, Pointer) and isinstance(b, Pointer):
            if a.target is not b.target:
                raise self._error("comparison of unrelated pointers", span)
            return self.binop(op, a.index, b.index, span)
        raise self._error(f"invalid operands to binary {op}", span)

    def _eval_assign(self, expr: ast_c.Assign) -> Any:
        ptr = self._address(expr.target, expr.span)
        value = self.eval(expr.value)
        if expr.op != "=":
            value = self.binop(expr.op[:-1], self.load(ptr, expr.span), value, expr.span)
        return self.store_at(ptr, value, expr.span)

    def _eval_conditional(self, expr: ast_c.Conditional) -> Any:
        taken = c_truthy(self.eval(expr.cond))
        self.emit_branch(taken, expr.span)
        return self.eval(expr.then if taken else expr.other)

    def _eval_call(self, expr: ast_c.Call) -> Any:
        if not isinstance(expr.callee, ast_c.Identifier):
            raise self._error("called object is not a function", expr.span)
        name = expr.callee.name
        args = [self.eval(arg) for arg in expr.args]
        fn = self._functions.get(name)
        if fn is not None:
            return self._call_function(fn, args, expr.span)
        builtin = CBuiltins.TABLE.get(name)
        if builtin is not None:
            self.tick(expr.span)
            return builtin(self, args, expr.span)
        raise self._error(f"implicit declaration of function '{name}'", expr.span)

    def _eval_index(self, expr: ast_c.Index) -> Any:
        base = self.eval(expr.base)
        index = self.eval(expr.index)
        if isinstance(index, Pointer) and isinstance(base, int):
            base, index = index, base
        if not isinstance(base, Pointer):
            raise self._error("subscripted value is neither array nor pointer", expr.span)
        return self.load(base.offset(int(index)), expr.span)

    def _eval_sizeof(self, expr: ast_c.SizeOf) -> int:
        target = expr.target
        if isinstance(target, ast_c.TypeName):
            return size_of(str(target))
        if isinstance(target, ast_c.StringLiteral):
            return len(target.value) + 1
        if isinstance(target, ast_c.Identifier):
            cell = self._lookup(target.name, target.span)
            if isinstance(cell.value, CArray):
                return len(cell.value) * size_of(cell.value.element_type)
            if cell.declared_type:
                return size_of(cell.declared_type)
        value = self.eval(target)
        if isinstance(value, Pointer):
            return _POINTER_SIZE
        return 8 if isinstance(value, float) else 4

    def _eval_comma(self, expr: ast_c.Comma) -> Any:
        self.eval(expr.left)
        return self.eval(expr.right)
