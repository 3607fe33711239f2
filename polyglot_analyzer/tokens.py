"""Token types shared by the two lexers (pure data, no business logic)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .source import Span


class Grammar(str, Enum):
    A = "A"
    B = "B"
    SHARED = "shared"

    @property
    def label(self) -> str:
        return f"Grammar {self.value}" if self != Grammar.SHARED else "both grammars"


class TokenKind(str, Enum):
    IDENT = "IDENT"
    CONSTANT = "CONSTANT"  # B: capitalised identifier
    GLOBAL = "GLOBAL"  # B: $name
    KEYWORD = "KEYWORD"
    INT = "INT"
    FLOAT = "FLOAT"
    CHAR = "CHAR"  # A: character constant
    STRING = "STRING"
    REGEX = "REGEX"  # B: /.../
    SYMBOL = "SYMBOL"  # B: :name
    OP = "OP"
    NEWLINE = "NEWLINE"
    COMMENT = "COMMENT"
    ERROR = "ERROR"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    span: Span
    grammar: Grammar
    value: Any = None
    spaced_before: bool = False
    # A: macros already expanded into this token (never re-expanded)
    hide_set: frozenset[str] = field(default_factory=frozenset)
    # A: name of the macro whose replacement produced this token
    expanded_from: str = ""

    def is_op(self, *texts: str) -> bool:
        return self.kind == TokenKind.OP and self.text in texts

    def is_keyword(self, *texts: str) -> bool:
        return self.kind == TokenKind.KEYWORD and self.text in texts

    def __str__(self) -> str:
        return f"{self.kind.value}({self.text!r})@{self.span}"
