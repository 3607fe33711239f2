"""Tree-sitter parsing layer shared by the lowering front ends and the oracle.

Grammar B is parsed from the raw buffer as ``ruby``; Grammar A is parsed
from its preprocessed token stream, joined by single spaces, as ``c``.
``TokenText`` keeps the byte range of every joined token so tree nodes map
back onto buffer spans.
"""

from __future__ import annotations

import bisect
import logging
from abc import ABC, abstractmethod

from .source import Span
from .tokens import Grammar, Token, TokenKind

logger = logging.getLogger(__name__)

GRAMMAR_LANGUAGES: dict[Grammar, str] = {Grammar.A: "c", Grammar.B: "ruby"}

_NOT_JOINED = (TokenKind.EOF, TokenKind.NEWLINE, TokenKind.COMMENT)


class ParserFactory(ABC):
    """Abstract factory for obtaining a tree-sitter parser by language name."""

    @abstractmethod
    def get_parser(self, language: str): ...


class TreeSitterParserFactory(ParserFactory):
    """Loads grammars from tree-sitter-language-pack, one parser per language.

    Parsers are not shared between factories, so each front end owns its own.
    """

    def __init__(self):
        self._parsers: dict[str, object] = {}

    def get_parser(self, language: str):
        parser = self._parsers.get(language)
        if parser is None:
            import tree_sitter_language_pack as tslp

            logger.debug("Loading tree-sitter grammar %r", language)
            parser = tslp.get_parser(language)
            self._parsers[language] = parser
        return parser


def parse_tree(factory: ParserFactory, grammar: Grammar, data: bytes):
    """Parse *data* with the tree-sitter grammar standing in for *grammar*."""
    return factory.get_parser(GRAMMAR_LANGUAGES[grammar]).parse(data)


def problem_nodes(root) -> list:
    """ERROR and MISSING nodes in document order, not descending into ERROR."""
    found = []
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            found.append(node)
            continue
        stack.extend(reversed(node.children))
    return found


def _joined_text(tok: Token) -> str:
    # '$' is a valid Grammar-A identifier character; the c grammar may not agree
    if tok.kind == TokenKind.IDENT:
        return tok.text.replace("$", "_")
    return tok.text


class TokenText:
    """The Grammar-A token stream as one space-separated byte string."""

    def __init__(self, tokens: list[Token]):
        self.tokens = [t for t in tokens if t.kind not in _NOT_JOINED]
        eof = [t for t in tokens if t.kind == TokenKind.EOF]
        if eof:
            self.end_span = eof[-1].span
        elif self.tokens:
            last = self.tokens[-1].span.end
            self.end_span = Span(start=last, end=last)
        else:
            self.end_span = Span(start=0, end=0)
        pieces: list[bytes] = []
        self._starts: list[int] = []
        self._ends: list[int] = []
        offset = 0
        for tok in self.tokens:
            piece = _joined_text(tok).encode("utf-8")
            self._starts.append(offset)
            self._ends.append(offset + len(piece))
            pieces.append(piece)
            offset += len(piece) + 1
        self.data = b" ".join(pieces)

    def token_at(self, start_byte: int) -> Token | None:
        """The token beginning at *start_byte*, if any."""
        idx = bisect.bisect_left(self._starts, start_byte)
        if idx < len(self._starts) and self._starts[idx] == start_byte:
            return self.tokens[idx]
        return None

    def covered(self, start_byte: int, end_byte: int) -> list[Token]:
        """Tokens overlapping ``[start_byte, end_byte)``.

        A zero-width range yields the token that follows it (or the last
        token), which is where a MISSING node points.
        """
        first = bisect.bisect_right(self._ends, start_byte)
        if start_byte == end_byte:
            if first < len(self.tokens):
                return [self.tokens[first]]
            return self.tokens[-1:]
        last = bisect.bisect_left(self._starts, end_byte)
        return self.tokens[first:last]

    def span(self, start_byte: int, end_byte: int) -> Span:
        covered = self.covered(start_byte, end_byte)
        if not covered:
            return self.end_span
        span = covered[0].span
        for tok in covered[1:]:
            span = span.cover(tok.span)
        return span
