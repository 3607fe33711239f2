"""Shared lexer and tree-lowering infrastructure for the two grammar front ends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

from ..errors import ParseError
from ..parser import ParserFactory, TreeSitterParserFactory, parse_tree, problem_nodes
from ..source import Span, SourceBuffer
from ..tokens import Grammar, Token, TokenKind

logger = logging.getLogger(__name__)

_SIMPLE_ESCAPES: dict[str, str] = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "e": "\x1b",
    "s": " ",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "?": "?",
}


def read_escape(text: str, pos: int, octal: bool = True) -> tuple[str, int]:
    """Decode the escape sequence whose backslash is at *pos*.

    Returns the decoded character and the offset just past the sequence.
    Unknown escapes decode to the escaped character itself.
    """
    ch = text[pos + 1] if pos + 1 < len(text) else ""
    if ch == "x":
        end = pos + 2
        while end < len(text) and end < pos + 4 and text[end] in "0123456789abcdefABCDEF":
            end += 1
        if end == pos + 2:
            return "x", pos + 2
        return chr(int(text[pos + 2 : end], 16)), end
    if octal and ch in "01234567":
        end = pos + 1
        while end < len(text) and end < pos + 4 and text[end] in "01234567":
            end += 1
        return chr(int(text[pos + 1 : end], 8)), end
    if ch in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[ch], pos + 2
    return ch, pos + 2


class BaseLexer(ABC):
    """Character scanner over a SourceBuffer range.

    Subclasses populate ``OPERATORS`` (longest first) and ``KEYWORDS`` and
    implement ``_scan_token``.  Every token records its span in the shared
    buffer, never a copy of the text.
    """

    GRAMMAR: Grammar = Grammar.SHARED
    OPERATORS: tuple[str, ...] = ()
    KEYWORDS: frozenset[str] = frozenset()

    def __init__(self, buffer: SourceBuffer, start: int = 0, end: int | None = None):
        self._buffer = buffer
        self._text = buffer.text
        self._pos = start
        self._end = len(buffer.text) if end is None else end
        self._tokens: list[Token] = []
        self._spaced = True

    # ── character navigation ─────────────────────────────────────

    def _peek(self, offset: int = 0) -> str:
        idx = self._pos + offset
        if idx < self._end:
            return self._text[idx]
        return ""

    def _at(self, literal: str) -> bool:
        return self._text.startswith(literal, self._pos) and (
            self._pos + len(literal) <= self._end
        )

    def _at_eof(self) -> bool:
        return self._pos >= self._end

    def _at_line_start(self, pos: int) -> bool:
        """True when only blanks precede *pos* on its line."""
        i = pos - 1
        while i >= 0 and self._text[i] in " \t":
            i -= 1
        return i < 0 or self._text[i] == "\n"

    # ── token construction ───────────────────────────────────────

    def _make(
        self, kind: TokenKind, start: int, value: Any = None, end: int | None = None
    ) -> Token:
        stop = self._pos if end is None else end
        tok = Token(
            kind=kind,
            text=self._text[start:stop],
            span=Span(start=start, end=stop),
            grammar=self.GRAMMAR,
            value=value,
            spaced_before=self._spaced,
        )
        self._tokens.append(tok)
        self._spaced = False
        return tok

    def _match_operator(self) -> str:
        for op in self.OPERATORS:
            if self._at(op):
                return op
        return ""

    def _scan_identifier_chars(self, extra: str = "") -> None:
        while True:
            ch = self._peek()
            if ch and (ch.isalnum() or ch == "_" or ch in extra):
                self._pos += 1
            else:
                return

    def _scan_digits(self, digits: str, allow_underscore: bool) -> None:
        while True:
            ch = self._peek()
            nxt = self._peek(1)
            if ch and ch.lower() in digits:
                self._pos += 1
            elif allow_underscore and ch == "_" and nxt and nxt.lower() in digits:
                self._pos += 1
            else:
                return

    # ── entry point ──────────────────────────────────────────────

    def tokenize(self) -> list[Token]:
        self._tokens = []
        self._spaced = True
        while not self._at_eof():
            if self._scan_token():
                break
        self._tokens.append(
            Token(
                kind=TokenKind.EOF,
                text="",
                span=Span(start=self._end, end=self._end),
                grammar=self.GRAMMAR,
                spaced_before=True,
            )
        )
        logger.debug(
            "%s lexer produced %d tokens", self.GRAMMAR.label, len(self._tokens)
        )
        return self._tokens

    @abstractmethod
    def _scan_token(self) -> bool:
        """Consume one token (or whitespace); return True to stop scanning."""
        ...


class BaseFrontend(ABC):
    """Lowers a tree-sitter parse tree into one grammar's AST.

    Subclasses fill ``_STMT_DISPATCH`` and ``_EXPR_DISPATCH`` (keyed on
    ``node.type``) and implement ``_span``.  The first ERROR or MISSING node
    in the tree becomes a ``ParseError``; so does any node type the subset
    does not model.
    """

    GRAMMAR: Grammar = Grammar.SHARED

    IF_CONDITION_FIELD: str = "condition"
    IF_CONSEQUENCE_FIELD: str = "consequence"
    IF_ALTERNATIVE_FIELD: str = "alternative"

    WHILE_CONDITION_FIELD: str = "condition"
    WHILE_BODY_FIELD: str = "body"

    ASSIGN_LEFT_FIELD: str = "left"
    ASSIGN_RIGHT_FIELD: str = "right"

    COMMENT_TYPES: frozenset[str] = frozenset({"comment"})
    NOISE_TYPES: frozenset[str] = frozenset()

    def __init__(self, parser_factory: ParserFactory | None = None):
        self._factory = parser_factory or TreeSitterParserFactory()
        self._source: bytes = b""
        self._STMT_DISPATCH: dict[str, Callable] = {}
        self._EXPR_DISPATCH: dict[str, Callable] = {}

    # ── helpers ──────────────────────────────────────────────────

    def _node_text(self, node) -> str:
        return self._source[node.start_byte : node.end_byte].decode("utf-8")

    @abstractmethod
    def _span(self, node) -> Span: ...

    def _named(self, node) -> list:
        """Named children that are neither comments nor noise."""
        return [
            c
            for c in node.children
            if c.is_named and c.type not in self.COMMENT_TYPES and c.type not in self.NOISE_TYPES
        ]

    def _field(self, node, name: str):
        child = node.child_by_field_name(name)
        if child is None:
            raise self._error(f"malformed {node.type}: no {name}", node)
        return child

    def _operator(self, node) -> str:
        op = node.child_by_field_name("operator")
        if op is not None:
            return self._node_text(op)
        return next(self._node_text(c) for c in node.children if not c.is_named)

    def _error(self, message: str, node) -> ParseError:
        return ParseError(message, self._span(node), self.GRAMMAR)

    def _unsupported(self, node) -> ParseError:
        return self._error(f"unsupported syntax: {node.type}", node)

    # ── entry point ──────────────────────────────────────────────

    def _parse_tree(self, data: bytes):
        """Parse *data*; raise ``ParseError`` at the first ERROR/MISSING node."""
        self._source = data
        root = parse_tree(self._factory, self.GRAMMAR, data).root_node
        problems = problem_nodes(root)
        if problems:
            raise self._problem_error(problems[0])
        return root

    def _problem_error(self, node) -> ParseError:
        if node.is_missing:
            expected = node.type if node.type.isidentifier() else repr(node.type)
            return self._error(f"expected {expected}", node)
        return self._error(f"syntax error, unexpected {self._found(node)}", node)

    def _found(self, node) -> str:
        leaf = node
        while leaf.children:
            leaf = leaf.children[0]
        text = self._node_text(leaf)
        return repr(text) if text else "end of input"

    def _lower_root(self, root):
        """Lower *root*, turning runaway nesting into a ``ParseError``."""
        try:
            return self._lower_program(root)
        except RecursionError:
            raise ParseError("nesting too deep", self._span(root), self.GRAMMAR) from None

    @abstractmethod
    def _lower_program(self, root): ...

    # ── dispatchers ──────────────────────────────────────────────

    def _lower_stmt(self, node):
        handler = self._STMT_DISPATCH.get(node.type)
        if handler is None:
            raise self._unsupported(node)
        return handler(node)

    def _lower_expr(self, node):
        handler = self._EXPR_DISPATCH.get(node.type)
        if handler is None:
            raise self._unsupported(node)
        return handler(node)
