"""Runtime value types shared by the two executors (pure data + conversions)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ── Grammar A: arrays and pointers ───────────────────────────────


@dataclass(eq=False)
class CArray:
    """Backing storage for a C array or string literal."""

    elements: list[Any]
    element_type: str = "int"

    @classmethod
    def from_string(cls, text: str) -> CArray:
        return cls([ord(ch) & 0xFF for ch in text] + [0], "char")

    def __len__(self) -> int:
        return len(self.elements)


@dataclass(frozen=True)
class Pointer:
    """Address of ``target[index]``; *target* is a CArray or a MemoryCell."""

    target: Any
    index: int = 0

    def offset(self, delta: int) -> Pointer:
        return Pointer(self.target, self.index + delta)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Pointer)
            and other.target is self.target
            and other.index == self.index
        )

    def __hash__(self) -> int:
        return hash((id(self.target), self.index))

    def __str__(self) -> str:
        name = getattr(self.target, "name", type(self.target).__name__)
        return f"&{name}[{self.index}]"


def read_c_string(value: Any) -> str:
    """Characters from a char pointer up to (not including) the NUL."""
    if isinstance(value, str):
        return value
    if not isinstance(value, Pointer) or not isinstance(value.target, CArray):
        raise TypeError("expected a char pointer")
    chars = []
    elements = value.target.elements
    i = value.index
    while 0 <= i < len(elements) and elements[i] != 0:
        chars.append(chr(elements[i] & 0xFF))
        i += 1
    return "".join(chars)


# ── Grammar B: Ruby objects ──────────────────────────────────────


@dataclass(frozen=True)
class RubySymbol:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RubyRange:
    low: Any
    high: Any
    exclusive: bool = False

    def to_list(self) -> list[int]:
        stop = self.high if self.exclusive else self.high + 1
        return list(range(self.low, stop))


@dataclass(frozen=True)
class RubyRegex:
    pattern: str


@dataclass(frozen=True)
class Closure:
    """A block captured with the frame it was defined in.

    ``outer_block`` is the block of the enclosing method, which is what a
    ``yield`` inside the block body targets.
    """

    node: Any  # ast_ruby.BlockNode
    frame: Any = field(compare=False)  # memory.Frame
    outer_block: Any = field(default=None, compare=False)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Closure)
            and other.node is self.node
            and other.frame is self.frame
        )

    def __hash__(self) -> int:
        return hash((id(self.node), id(self.frame)))


# ── conversions ──────────────────────────────────────────────────


def normalize_value(value: Any) -> Any:
    """Grammar-neutral, JSON-friendly view of a runtime value.

    Booleans become 1/0 and nil becomes 0 so that C and Ruby values that
    mean the same thing compare equal.
    """
    if isinstance(value, bool):
        return int(value)
    if value is None:
        return 0
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    if isinstance(value, CArray):
        return [normalize_value(v) for v in value.elements]
    if isinstance(value, RubySymbol):
        return f":{value.name}"
    if isinstance(value, RubyRange):
        return value.to_list()
    if isinstance(value, Closure):
        return "<block>"
    return str(value)


def ruby_inspect(value: Any) -> str:
    if value is None:
        return "nil"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        escaped = (
            value.replace("\\", "\\\\")
            .replace('"', '\\"')
            .replace("\n", "\\n")
            .replace("\t", "\\t")
        )
        return f'"{escaped}"'
    if isinstance(value, list):
        return "[" + ", ".join(ruby_inspect(v) for v in value) + "]"
    if isinstance(value, RubySymbol):
        return f":{value.name}"
    if isinstance(value, RubyRange):
        dots = "..." if value.exclusive else ".."
        return f"{ruby_inspect(value.low)}{dots}{ruby_inspect(value.high)}"
    if isinstance(value, RubyRegex):
        return f"/{value.pattern}/"
    if isinstance(value, Closure):
        return "#<Proc>"
    return ruby_to_s(value)


def ruby_to_s(value: Any) -> str:
    if value is None:
        return ""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, float):
        if value != value:
            return "NaN"
        if value in (float("inf"), float("-inf")):
            return "Infinity" if value > 0 else "-Infinity"
        if value == int(value) and abs(value) < 1e16:
            return f"{int(value)}.0"
        return repr(value)
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ruby_inspect(value)
    if isinstance(value, RubySymbol):
        return value.name
    return ruby_inspect(value) if isinstance(value, (RubyRange, RubyRegex, Closure)) else str(value)


def ruby_truthy(value: Any) -> bool:
    return value is not None and value is not False


def ruby_class_name(value: Any) -> str:
    if value is None:
        return "NilClass"
    if value is True:
        return "TrueClass"
    if value is False:
        return "FalseClass"
    if isinstance(value, int):
        return "Integer"
    if isinstance(value, float):
        return "Float"
    if isinstance(value, str):
        return "String"
    if isinstance(value, list):
        return "Array"
    if isinstance(value, RubySymbol):
        return "Symbol"
    if isinstance(value, RubyRange):
        return "Range"
    if isinstance(value, RubyRegex):
        return "Regexp"
    if isinstance(value, Closure):
        return "Proc"
    return type(value).__name__
