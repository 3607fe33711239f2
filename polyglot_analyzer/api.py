"""Composable API functions for the analyzer pipelines.

Each function corresponds to a CLI workflow (--tokens, --ast, --prelude)
but is callable programmatically without argparse.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from . import ast_ruby as rb
from . import constants
from .errors import ParseError
from .frontends import CFrontend, CLexer, RubyFrontend, RubyLexer, tag_shared, tokenize_both
from .preprocessor import MacroDefinition, Preprocessor
from .run import analyze
from .run_types import AnalysisConfig, AnalysisResult, Fixtures
from .shims import ShimDefinition, classify_def
from .source import SourceBuffer
from .tokens import Grammar, Token, TokenKind

logger = logging.getLogger(__name__)

_GRAMMARS: dict[str, Grammar] = {"a": Grammar.A, "c": Grammar.A, "b": Grammar.B, "ruby": Grammar.B}


def _grammar(name: str | Grammar) -> Grammar:
    if isinstance(name, Grammar) and name != Grammar.SHARED:
        return name
    grammar = _GRAMMARS.get(str(name).lower())
    if grammar is None:
        raise ValueError(f"Unknown grammar: {name!r} (expected 'A' or 'B')")
    return grammar


def _buffer(source: str | SourceBuffer) -> SourceBuffer:
    return source if isinstance(source, SourceBuffer) else SourceBuffer(source)


def tokenize(
    source: str | SourceBuffer,
    grammar: str | Grammar = "A",
    fixtures: Fixtures | None = None,
) -> list[Token]:
    """Token stream of one grammar, with agreeing tokens tagged ``shared``.

    Grammar A returns the preprocessed stream (macros expanded, comments
    and directives elided).
    """
    buffer = _buffer(source)
    which = _grammar(grammar)
    if which == Grammar.B:
        return tokenize_both(buffer)[1]
    raw = CLexer(buffer).tokenize()
    try:
        tokens_a, _ = tag_shared(raw, RubyLexer(buffer).tokenize())
    except ParseError:
        tokens_a = raw
    macros = fixtures.macros if fixtures is not None else ()
    return Preprocessor(buffer, macros).run(tokens_a).tokens


def dump_tokens(
    source: str | SourceBuffer,
    grammar: str | Grammar = "A",
    fixtures: Fixtures | None = None,
) -> str:
    """One token per line: location, grammar tag, kind and text."""
    buffer = _buffer(source)
    lines = []
    for tok in tokenize(buffer, grammar, fixtures):
        if tok.kind in (TokenKind.NEWLINE, TokenKind.EOF):
            continue
        origin = f"  <- {tok.expanded_from}" if tok.expanded_from else ""
        lines.append(
            f"  {buffer.describe(tok.span):<14} {tok.grammar.value:<6} "
            f"{tok.kind.value:<8} {tok.text!r}{origin}"
        )
    return "\n".join(lines)


def parse_source(
    source: str | SourceBuffer,
    grammar: str | Grammar = "A",
    fixtures: Fixtures | None = None,
) -> Any:
    """Parse *source* under one grammar and return its AST program."""
    buffer = _buffer(source)
    which = _grammar(grammar)
    logger.info("Parsing %s as %s", buffer.name, which.label)
    if which == Grammar.B:
        return RubyFrontend(buffer).lower()
    return CFrontend().lower(tokenize(buffer, which, fixtures))


def _format_node(node: Any, indent: int) -> list[str]:
    pad = "  " * indent
    if dataclasses.is_dataclass(node) and not isinstance(node, type):
        fields = [f for f in dataclasses.fields(node) if f.name not in ("span", "name_span")]
        simple = []
        nested = []
        for f in fields:
            value = getattr(node, f.name)
            if dataclasses.is_dataclass(value) or (
                isinstance(value, tuple) and any(dataclasses.is_dataclass(v) for v in value)
            ):
                nested.append((f.name, value))
            elif not (value is None or value is False or value == () or value == ""):
                simple.append(f"{f.name}={value!r}")
        lines = [f"{pad}{type(node).__name__}({', '.join(simple)})"]
        for name, value in nested:
            lines.append(f"{pad}  .{name}:")
            items = value if isinstance(value, tuple) else (value,)
            for item in items:
                lines.extend(_format_node(item, indent + 2))
        return lines
    return [f"{pad}{node!r}"]


def dump_ast(
    source: str | SourceBuffer,
    grammar: str | Grammar = "A",
    fixtures: Fixtures | None = None,
) -> str:
    """Indented text rendering of one grammar's AST (spans omitted)."""
    return "\n".join(_format_node(parse_source(source, grammar, fixtures), 0))


def load_prelude(text: str, name: str = "<prelude>") -> Fixtures:
    """Build fixtures from a prelude snippet.

    The prelude's ``#define`` directives become macros (read as Grammar A)
    and its top-level ``def``s become shims (read as Grammar B).  Anything
    else in it is ignored.
    """
    buffer = SourceBuffer(text, name)
    result = Preprocessor(buffer).run()
    macros = tuple(
        macro
        for macro_name, macro in sorted(result.macros.items())
        if macro_name not in constants.PREDEFINED_MACROS
    )
    program = RubyFrontend(buffer).lower()
    shims: list[ShimDefinition] = [
        classify_def(stmt) for stmt in program.body.statements if isinstance(stmt, rb.Def)
    ]
    logger.info("Prelude %s: %d macros, %d shims", name, len(macros), len(shims))
    return Fixtures(macros=macros, shims=tuple(shims))


def analyze_source(
    source: str | SourceBuffer,
    prelude: str | None = None,
    program_args: tuple[str, ...] = (),
    program_name: str = constants.DEFAULT_PROGRAM_NAME,
    config: AnalysisConfig = AnalysisConfig(),
) -> AnalysisResult:
    """``analyze`` with fixtures taken from an optional prelude snippet."""
    fixtures = load_prelude(prelude) if prelude is not None else Fixtures()
    fixtures = dataclasses.replace(
        fixtures, program_name=program_name, program_args=tuple(program_args)
    )
    return analyze(source, fixtures, config)


__all__ = [
    "MacroDefinition",
    "analyze",
    "analyze_source",
    "dump_ast",
    "dump_tokens",
    "load_prelude",
    "parse_source",
    "tokenize",
]
