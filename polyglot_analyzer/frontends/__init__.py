"""Grammar front ends: one lexer and one tree lowering per grammar."""

from __future__ import annotations

import logging
from dataclasses import replace

from ..source import SourceBuffer
from ..tokens import Grammar, Token
from .c import CFrontend
from .c_lexer import CLexer
from .ruby import RubyFrontend
from .ruby_lexer import RubyLexer

logger = logging.getLogger(__name__)


def tag_shared(
    tokens_a: list[Token], tokens_b: list[Token]
) -> tuple[list[Token], list[Token]]:
    """Re-tag tokens whose span, kind and text agree in both lexings.

    Returns new lists; the inputs are left untouched.
    """
    by_span = {(tok.span.start, tok.span.end): tok for tok in tokens_b}
    shared: set[tuple[int, int]] = set()
    for tok in tokens_a:
        key = (tok.span.start, tok.span.end)
        other = by_span.get(key)
        if other is not None and other.kind == tok.kind and other.text == tok.text:
            shared.add(key)

    def _retag(tokens: list[Token]) -> list[Token]:
        return [
            replace(tok, grammar=Grammar.SHARED)
            if (tok.span.start, tok.span.end) in shared
            else tok
            for tok in tokens
        ]

    logger.debug("%d tokens agree between the two lexings", len(shared))
    return _retag(tokens_a), _retag(tokens_b)


def tokenize_both(buffer: SourceBuffer) -> tuple[list[Token], list[Token]]:
    """Lex *buffer* under both grammars and tag the agreeing tokens ``shared``.

    The Grammar-A stream is the raw (unpreprocessed) CLexer output.  Raises
    ``ParseError`` when Grammar B cannot be lexed.
    """
    tokens_a = CLexer(buffer).tokenize()
    tokens_b = RubyLexer(buffer).tokenize()
    return tag_shared(tokens_a, tokens_b)


__all__ = ["CFrontend", "CLexer", "RubyFrontend", "RubyLexer", "tag_shared", "tokenize_both"]
