"""Built-in function implementations: the C library subset and Ruby's kernel.

Each table entry takes the calling executor, the evaluated arguments and the
call span.  Ruby entries also receive the call's block (or None).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from .errors import ExecutionError, MissingBlock
from .source import Span
from .tokens import Grammar
from .value_types import (
    CArray,
    Pointer,
    RubyRange,
    RubySymbol,
    read_c_string,
    ruby_class_name,
    ruby_inspect,
    ruby_to_s,
)

logger = logging.getLogger(__name__)


class ExitSignal(Exception):
    """Raised by ``exit`` to stop the program with *status*."""

    def __init__(self, status: int):
        self.status = status
        super().__init__(status)


# ── printf-style formatting ──────────────────────────────────────

_FORMAT_RE = re.compile(
    r"%([-+ #0]*)(\*|\d+)?(?:\.(\*|\d*))?(hh|h|ll|l|L|z|j|t|q)?([diouxXeEfFgGcsp%])"
)


def _as_int(value: Any, span: Span, grammar: Grammar) -> int:
    if isinstance(value, (bool, int)):
        return int(value)
    if isinstance(value, float):
        return int(value)
    if isinstance(value, Pointer):
        return value.index
    if grammar == Grammar.B and isinstance(value, str):
        try:
            return int(value.replace("_", ""), 0)
        except ValueError:
            pass
    if grammar == Grammar.B and value is None:
        raise ExecutionError("can't convert nil into Integer", span, grammar)
    raise ExecutionError(f"invalid value for integer conversion: {value!r}", span, grammar)


def format_printf(
    fmt: str,
    args: list[Any],
    span: Span,
    grammar: Grammar,
    to_text: Callable[[Any], str] = str,
) -> str:
    """Render a printf format string.

    Length modifiers are accepted and ignored.  ``to_text`` converts ``%s``
    arguments (C strings for Grammar A, ``to_s`` for Grammar B).
    """
    out: list[str] = []
    pos = 0
    consumed = 0

    def next_arg() -> Any:
        nonlocal consumed
        if consumed >= len(args):
            raise ExecutionError("too few arguments for format string", span, grammar)
        consumed += 1
        return args[consumed - 1]

    for m in _FORMAT_RE.finditer(fmt):
        out.append(fmt[pos : m.start()])
        pos = m.end()
        flags, width, precision, _, conv = m.groups()
        if conv == "%":
            out.append("%")
            continue
        if width == "*":
            w = _as_int(next_arg(), span, grammar)
            if w < 0:
                flags += "-"
            width = str(abs(w))
        if precision == "*":
            precision = str(max(_as_int(next_arg(), span, grammar), 0))
        elif precision == "":
            precision = "0"
        spec = "%" + flags + (width or "") + (f".{precision}" if precision is not None else "")
        value = next_arg()
        if conv in ("d", "i"):
            out.append((spec + "d") % _as_int(value, span, grammar))
        elif conv == "u":
            out.append((spec + "d") % (_as_int(value, span, grammar) & 0xFFFFFFFF))
        elif conv in ("o", "x", "X"):
            number = _as_int(value, span, grammar)
            if grammar == Grammar.A and number < 0:
                number &= 0xFFFFFFFF
            out.append((spec + conv) % number)
        elif conv in ("e", "E", "f", "F", "g", "G"):
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ExecutionError(f"can't convert {value!r} into Float", span, grammar)
            out.append((spec + conv.replace("F", "f")) % number)
        elif conv == "c":
            if isinstance(value, str):
                out.append((spec + "s") % value[:1])
            else:
                out.append((spec + "c") % (_as_int(value, span, grammar) & 0xFF))
        elif conv == "s":
            out.append((spec + "s") % to_text(value))
        else:  # p
            out.append("0x%x" % _as_int(value, span, grammar))
    out.append(fmt[pos:])
    return "".join(out)


# ── numeric parsing ──────────────────────────────────────────────

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _digits_value(text: str, i: int, base: int, underscores: bool) -> tuple[int, int]:
    value = 0
    start = i
    while i < len(text):
        ch = text[i].lower()
        if underscores and ch == "_" and i > start and i + 1 < len(text) and text[i + 1] != "_":
            i += 1
            continue
        digit = _DIGITS.find(ch)
        if digit < 0 or digit >= base:
            break
        value = value * base + digit
        i += 1
    return value, i


def parse_c_long(text: str, base: int = 10) -> tuple[int, int]:
    """``strtol`` semantics: returns (value, characters consumed)."""
    i = 0
    while i < len(text) and text[i] in " \t\n\r\f\v":
        i += 1
    sign = 1
    if i < len(text) and text[i] in "+-":
        sign = -1 if text[i] == "-" else 1
        i += 1
    rest = text[i:].lower()
    if base in (0, 16) and rest.startswith("0x") and len(rest) > 2 and rest[2] in _DIGITS[:16]:
        i += 2
        base = 16
    elif base == 0:
        base = 8 if rest.startswith("0") else 10
    start = i
    value, i = _digits_value(text, i, base, underscores=False)
    if i == start:
        return 0, 0
    return sign * value, i


def ruby_string_to_i(text: str, base: int = 10) -> int:
    """``String#to_i(base)``: leading integer, 0 when there is none."""
    i = 0
    while i < len(text) and text[i] in " \t\n\r\f\v":
        i += 1
    sign = 1
    if i < len(text) and text[i] in "+-":
        sign = -1 if text[i] == "-" else 1
        i += 1
    prefix = {16: "0x", 2: "0b", 8: "0o", 10: "0d"}.get(base)
    if prefix and text[i : i + 2].lower() == prefix:
        i += 2
    value, _ = _digits_value(text, i, base, underscores=True)
    return sign * value


# ── Grammar A: C library ─────────────────────────────────────────


def _c_string_arg(args: list[Any], idx: int, name: str, span: Span) -> str:
    if idx >= len(args):
        raise ExecutionError(f"too few arguments to function '{name}'", span, Grammar.A)
    try:
        return read_c_string(args[idx])
    except TypeError:
        raise ExecutionError(
            f"argument {idx + 1} of '{name}' is not a string", span, Grammar.A
        )


def _c_printf(ex, args: list[Any], span: Span) -> int:
    fmt = _c_string_arg(args, 0, "printf", span)
    text = format_printf(fmt, args[1:], span, Grammar.A, to_text=_c_text)
    ex.emit_output(text, span)
    return len(text)


def _c_text(value: Any) -> str:
    try:
        return read_c_string(value)
    except TypeError:
        return "(null)" if value == 0 else str(value)


def _c_puts(ex, args: list[Any], span: Span) -> int:
    text = _c_string_arg(args, 0, "puts", span) + "\n"
    ex.emit_output(text, span)
    return len(text)


def _c_putchar(ex, args: list[Any], span: Span) -> int:
    if not args:
        raise ExecutionError("too few arguments to function 'putchar'", span, Grammar.A)
    code = int(args[0]) & 0xFF
    ex.emit_output(chr(code), span)
    return code


def _c_strtol(ex, args: list[Any], span: Span) -> int:
    text = _c_string_arg(args, 0, "strtol", span)
    base = int(args[2]) if len(args) > 2 else 10
    value, consumed = parse_c_long(text, base)
    if len(args) > 1 and isinstance(args[1], Pointer) and not isinstance(args[1].target, CArray):
        source = args[0]
        args[1].target.value = source.offset(consumed) if isinstance(source, Pointer) else 0
    return value


def _c_atoi(ex, args: list[Any], span: Span) -> int:
    return parse_c_long(_c_string_arg(args, 0, "atoi", span), 10)[0]


def _c_abs(ex, args: list[Any], span: Span) -> int:
    if not args:
        raise ExecutionError("too few arguments to function 'abs'", span, Grammar.A)
    return abs(int(args[0]))


def _c_strlen(ex, args: list[Any], span: Span) -> int:
    return len(_c_string_arg(args, 0, "strlen", span))


def _c_exit(ex, args: list[Any], span: Span) -> Any:
    raise ExitSignal(int(args[0]) if args else 0)


class CBuiltins:
    """C library functions known to the Grammar-A executor."""

    TABLE: dict[str, Callable] = {
        "printf": _c_printf,
        "puts": _c_puts,
        "putchar": _c_putchar,
        "strtol": _c_strtol,
        "atoi": _c_atoi,
        "abs": _c_abs,
        "strlen": _c_strlen,
        "exit": _c_exit,
    }


# ── Grammar B: Ruby kernel ───────────────────────────────────────


def _puts_lines(value: Any) -> list[str]:
    if isinstance(value, list):
        if not value:
            return [""]
        return [line for item in value for line in _puts_lines(item)]
    return [ruby_to_s(value)]


def _rb_puts(ex, args: list[Any], block, span: Span) -> None:
    lines = [line for arg in args for line in _puts_lines(arg)] if args else [""]
    text = "".join(line if line.endswith("\n") else line + "\n" for line in lines)
    ex.emit_output(text, span)
    return None


def _rb_print(ex, args: list[Any], block, span: Span) -> None:
    ex.emit_output("".join(ruby_to_s(a) for a in args), span)
    return None


def _rb_p(ex, args: list[Any], block, span: Span) -> Any:
    if args:
        ex.emit_output("".join(ruby_inspect(a) + "\n" for a in args), span)
    if not args:
        return None
    return args[0] if len(args) == 1 else list(args)


def _rb_format(ex, args: list[Any], block, span: Span) -> str:
    if not args or not isinstance(args[0], str):
        raise ExecutionError("format string must be a String", span, Grammar.B)
    return format_printf(args[0], args[1:], span, Grammar.B, to_text=ruby_to_s)


def _rb_printf(ex, args: list[Any], block, span: Span) -> None:
    if args:
        ex.emit_output(_rb_format(ex, args, block, span), span)
    return None


def _rb_exit(ex, args: list[Any], block, span: Span) -> Any:
    status = args[0] if args else 0
    if status is True:
        status = 0
    elif status is False:
        status = 1
    raise ExitSignal(int(status))


def _rb_integer(ex, args: list[Any], block, span: Span) -> int:
    if not args:
        raise ExecutionError("wrong number of arguments (given 0, expected 1..2)", span, Grammar.B)
    value = args[0]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip().replace("_", ""), args[1] if len(args) > 1 else 0)
        except ValueError:
            pass
    raise ExecutionError(f"invalid value for Integer(): {ruby_inspect(value)}", span, Grammar.B)


def _rb_block_given(ex, args: list[Any], block, span: Span) -> bool:
    return ex.current_block() is not None


def _rb_loop(ex, args: list[Any], block, span: Span) -> Any:
    if block is None:
        raise MissingBlock("loop", span)
    while True:
        ex.tick(span)
        ex.call_block(block, [], span)


class RubyBuiltins:
    """Kernel functions and core-class methods of the Grammar-B executor."""

    KERNEL: dict[str, Callable] = {
        "puts": _rb_puts,
        "print": _rb_print,
        "p": _rb_p,
        "printf": _rb_printf,
        "format": _rb_format,
        "sprintf": _rb_format,
        "exit": _rb_exit,
        "Integer": _rb_integer,
        "block_given?": _rb_block_given,
        "loop": _rb_loop,
    }

    @staticmethod
    def call_method(ex, receiver: Any, name: str, args: list[Any], block, span: Span) -> Any:
        if isinstance(receiver, RubyRange):
            receiver_list = receiver.to_list()
            if name in ("to_a", "entries"):
                return receiver_list
            if name in ("first", "begin", "min"):
                return receiver.low
            if name in ("last", "end", "max"):
                return receiver.high
            if name in ("include?", "member?", "cover?", "==="):
                return args[0] in receiver_list if args else False
            return RubyBuiltins._list_method(ex, receiver_list, name, args, block, span)
        if isinstance(receiver, bool) or receiver is None:
            return RubyBuiltins._object_method(ex, receiver, name, args, span)
        if isinstance(receiver, int):
            return RubyBuiltins._int_method(ex, receiver, name, args, block, span)
        if isinstance(receiver, float):
            return RubyBuiltins._float_method(ex, receiver, name, args, span)
        if isinstance(receiver, str):
            return RubyBuiltins._str_method(ex, receiver, name, args, span)
        if isinstance(receiver, list):
            return RubyBuiltins._list_method(ex, receiver, name, args, block, span)
        if isinstance(receiver, RubySymbol) and name in ("to_sym", "to_s", "id2name", "length", "size"):
            if name == "to_sym":
                return receiver
            text = receiver.name
            return len(text) if name in ("length", "size") else text
        return RubyBuiltins._object_method(ex, receiver, name, args, span)

    @staticmethod
    def _no_method(receiver: Any, name: str, span: Span) -> ExecutionError:
        return ExecutionError(
            f"undefined method '{name}' for an instance of {ruby_class_name(receiver)}",
            span,
            Grammar.B,
        )

    @staticmethod
    def _object_method(ex, receiver: Any, name: str, args: list[Any], span: Span) -> Any:
        if name == "nil?":
            return receiver is None
        if name == "to_s":
            return ruby_to_s(receiver)
        if name == "inspect":
            return ruby_inspect(receiver)
        if name == "class":
            return ruby_class_name(receiver)
        if name in ("==", "eql?", "equal?"):
            return bool(args) and receiver == args[0]
        if name == "!":
            return receiver is None or receiver is False
        if receiver is None and name == "to_a":
            return []
        if receiver is None and name == "to_i":
            return 0
        if name == "dup":
            return receiver
        raise RubyBuiltins._no_method(receiver, name, span)

    @staticmethod
    def _int_method(ex, value: int, name: str, args: list[Any], block, span: Span) -> Any:
        if name == "times":
            if block is None:
                raise MissingBlock(name, span)
            for i in range(value):
                ex.tick(span)
                ex.call_block(block, [i], span)
            return value
        if name in ("upto", "downto"):
            if block is None:
                raise MissingBlock(name, span)
            limit = args[0]
            step = 1 if name == "upto" else -1
            i = value
            while (i <= limit) if step > 0 else (i >= limit):
                ex.tick(span)
                ex.call_block(block, [i], span)
                i += step
            return value
        if name == "to_s":
            base = args[0] if args else 10
            return _int_to_base(value, base)
        simple = {
            "to_i": lambda: value,
            "to_int": lambda: value,
            "to_f": lambda: float(value),
            "abs": lambda: abs(value),
            "even?": lambda: value % 2 == 0,
            "odd?": lambda: value % 2 == 1,
            "zero?": lambda: value == 0,
            "positive?": lambda: value > 0,
            "negative?": lambda: value < 0,
            "succ": lambda: value + 1,
            "next": lambda: value + 1,
            "pred": lambda: value - 1,
            "chr": lambda: chr(value & 0xFF),
            "ord": lambda: value,
        }
        if name in simple:
            return simple[name]()
        return RubyBuiltins._object_method(ex, value, name, args, span)

    @staticmethod
    def _float_method(ex, value: float, name: str, args: list[Any], span: Span) -> Any:
        simple = {
            "to_i": lambda: int(value),
            "to_f": lambda: value,
            "abs": lambda: abs(value),
            "floor": lambda: int(value // 1),
            "ceil": lambda: -int(-value // 1),
            "round": lambda: int(value + 0.5) if value >= 0 else -int(-value + 0.5),
            "zero?": lambda: value == 0.0,
        }
        if name in simple:
            return simple[name]()
        return RubyBuiltins._object_method(ex, value, name, args, span)

    @staticmethod
    def _str_method(ex, value: str, name: str, args: list[Any], span: Span) -> Any:
        if name == "to_i":
            base = args[0] if args else 10
            if not isinstance(base, int) or isinstance(base, bool) or not 2 <= base <= 36:
                raise ExecutionError(f"invalid radix {ruby_inspect(base)}", span, Grammar.B)
            return ruby_string_to_i(value, base)
        if name == "to_f":
            match = re.match(r"\s*[-+]?\d+(\.\d+)?([eE][-+]?\d+)?", value)
            return float(match.group(0)) if match else 0.0
        if name == "split":
            sep = args[0] if args else None
            parts = value.split() if sep in (None, " ") else value.split(sep)
            while parts and parts[-1] == "":
                parts.pop()
            return parts
        if name in ("include?", "start_with?", "end_with?"):
            needle = args[0] if args else ""
            if name == "include?":
                return needle in value
            return value.startswith(needle) if name == "start_with?" else value.endswith(needle)
        if name in ("ljust", "rjust", "center"):
            width = args[0]
            pad = args[1] if len(args) > 1 else " "
            if name == "ljust":
                return value.ljust(width, pad)
            return value.rjust(width, pad) if name == "rjust" else value.center(width, pad)
        simple = {
            "length": lambda: len(value),
            "size": lambda: len(value),
            "to_s": lambda: value,
            "to_str": lambda: value,
            "to_sym": lambda: RubySymbol(value),
            "upcase": lambda: value.upper(),
            "downcase": lambda: value.lower(),
            "capitalize": lambda: value[:1].upper() + value[1:].lower(),
            "reverse": lambda: value[::-1],
            "strip": lambda: value.strip(),
            "chomp": lambda: value[:-1] if value.endswith("\n") else value,
            "chars": lambda: list(value),
            "bytes": lambda: list(value.encode("utf-8")),
            "empty?": lambda: value == "",
            "ord": lambda: ord(value[0]),
        }
        if name in simple:
            if name == "ord" and not value:
                raise ExecutionError("empty string", span, Grammar.B)
            return simple[name]()
        return RubyBuiltins._object_method(ex, value, name, args, span)

    @staticmethod
    def _list_method(ex, value: list, name: str, args: list[Any], block, span: Span) -> Any:
        if name in ("each", "each_with_index", "map", "collect", "select", "filter", "reject"):
            if block is None:
                raise MissingBlock(name, span)
            results = []
            for i, item in enumerate(list(value)):
                ex.tick(span)
                block_args = [item, i] if name == "each_with_index" else [item]
                result = ex.call_block(block, block_args, span)
                if name in ("map", "collect"):
                    results.append(result)
                elif name in ("select", "filter") and result is not None and result is not False:
                    results.append(item)
                elif name == "reject" and (result is None or result is False):
                    results.append(item)
            return value if name in ("each", "each_with_index") else results
        if name in ("inject", "reduce"):
            if block is None:
                raise MissingBlock(name, span)
            items = list(value)
            acc = args[0] if args else (items.pop(0) if items else None)
            for item in items:
                ex.tick(span)
                acc = ex.call_block(block, [acc, item], span)
            return acc
        if name in ("push", "append", "<<"):
            value.extend(args)
            return value
        if name == "pop":
            return value.pop() if value else None
        if name == "shift":
            return value.pop(0) if value else None
        if name == "join":
            sep = args[0] if args else ""
            return sep.join(ruby_to_s(v) for v in value)
        if name == "include?":
            return bool(args) and args[0] in value
        if name == "index":
            return value.index(args[0]) if args and args[0] in value else None
        if name == "count":
            return value.count(args[0]) if args else len(value)
        if name == "first":
            return value[: args[0]] if args else (value[0] if value else None)
        if name == "last":
            return value[-args[0] :] if args else (value[-1] if value else None)
        simple = {
            "length": lambda: len(value),
            "size": lambda: len(value),
            "empty?": lambda: not value,
            "reverse": lambda: value[::-1],
            "sum": lambda: sum(value),
            "min": lambda: min(value) if value else None,
            "max": lambda: max(value) if value else None,
            "sort": lambda: sorted(value),
            "to_a": lambda: value,
            "uniq": lambda: list(dict.fromkeys(value)),
            "flatten": lambda: _flatten(value),
            "compact": lambda: [v for v in value if v is not None],
        }
        if name in simple:
            try:
                return simple[name]()
            except TypeError:
                raise ExecutionError(f"comparison failed in Array#{name}", span, Grammar.B)
        return RubyBuiltins._object_method(ex, value, name, args, span)


def _flatten(value: list) -> list:
    out = []
    for item in value:
        if isinstance(item, list):
            out.extend(_flatten(item))
        else:
            out.append(item)
    return out


def _int_to_base(value: int, base: int) -> str:
    if base == 10:
        return str(value)
    digits = []
    n = abs(value)
    while True:
        n, r = divmod(n, base)
        digits.append(_DIGITS[r])
        if n == 0:
            break
    return ("-" if value < 0 else "") + "".join(reversed(digits))


def c_string_literal(text: str) -> Pointer:
    """A fresh char array holding *text* plus NUL, as a pointer to its start."""
    return Pointer(CArray.from_string(text), 0)
