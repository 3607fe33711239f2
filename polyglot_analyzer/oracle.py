"""Tree-sitter syntax cross-check.

Parses the Grammar-B view (the raw buffer, as Ruby) and the Grammar-A view
(the preprocessed token text, as C) with real grammars and reports error or
missing nodes as notes mapped back onto buffer spans.  Notes never change
the verdict.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from .parser import ParserFactory, TokenText, TreeSitterParserFactory, parse_tree, problem_nodes
from .source import SourceBuffer, Span
from .tokens import Grammar, Token

logger = logging.getLogger(__name__)


class OracleNote(BaseModel):
    grammar: Grammar
    span: Span
    kind: str  # "error" | "missing"
    node_type: str
    location: str = ""


class SyntaxOracle:
    """Cross-checks both grammar views against tree-sitter's grammars."""

    def __init__(self, parser_factory: ParserFactory | None = None):
        self._factory = parser_factory or TreeSitterParserFactory()

    @staticmethod
    def _note(node, grammar: Grammar, span: Span, buffer: SourceBuffer) -> OracleNote:
        return OracleNote(
            grammar=grammar,
            span=span,
            kind="missing" if node.is_missing else "error",
            node_type=node.type,
            location=f"{buffer.name}:{buffer.describe(span)}",
        )

    def check_ruby(self, buffer: SourceBuffer) -> list[OracleNote]:
        tree = parse_tree(self._factory, Grammar.B, buffer.text.encode("utf-8"))
        notes = []
        for node in problem_nodes(tree.root_node):
            span = Span(
                start=buffer.char_offset(node.start_byte),
                end=buffer.char_offset(node.end_byte),
            )
            notes.append(self._note(node, Grammar.B, span, buffer))
        return notes

    def check_c(self, buffer: SourceBuffer, tokens: list[Token]) -> list[OracleNote]:
        """Check the preprocessed Grammar-A tokens, joined by single spaces."""
        text = TokenText(tokens)
        tree = parse_tree(self._factory, Grammar.A, text.data)
        return [
            self._note(node, Grammar.A, text.span(node.start_byte, node.end_byte), buffer)
            for node in problem_nodes(tree.root_node)
        ]

    def check(self, buffer: SourceBuffer, tokens_a: list[Token] | None) -> list[OracleNote]:
        notes = self.check_ruby(buffer)
        if tokens_a is not None:
            notes.extend(self.check_c(buffer, tokens_a))
        logger.info("Syntax oracle reported %d notes", len(notes))
        return notes
