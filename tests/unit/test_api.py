"""Tests for the composable API functions in polyglot_analyzer.api."""

import pytest

from polyglot_analyzer import ast_c
from polyglot_analyzer import ast_ruby as rb
from polyglot_analyzer.api import (
    analyze_source,
    dump_ast,
    dump_tokens,
    load_prelude,
    parse_source,
    tokenize,
)
from polyglot_analyzer.divergence import Classification
from polyglot_analyzer.errors import ParseError
from polyglot_analyzer.shims import ShimBehavior
from polyglot_analyzer.tokens import Grammar, TokenKind

PRELUDE = (
    "#include <stdio.h>\n"
    "#define end ;\n"
    "def int(*args); args; end\n"
    "def main(*args); yield; end\n"
)

HELLO = 'int main() {\n  puts("hi");\n}'


def _code(tokens):
    return [t for t in tokens if t.kind not in (TokenKind.EOF, TokenKind.NEWLINE)]


class TestTokenize:
    def test_grammar_a_tags_agreeing_tokens(self):
        tokens = _code(tokenize("int x;"))
        assert [t.grammar for t in tokens] == [Grammar.A, Grammar.SHARED, Grammar.SHARED]

    def test_grammar_a_is_preprocessed(self):
        tokens = _code(tokenize("#define N 3\nint x = N;"))
        assert [t.text for t in tokens] == ["int", "x", "=", "3", ";"]
        assert tokens[3].expanded_from == "N"

    def test_grammar_b_keeps_comments(self):
        tokens = tokenize("# note\nx = 1", "B")
        assert tokens[0].kind == TokenKind.COMMENT

    def test_grammar_names(self):
        assert _code(tokenize("x", "ruby"))[0].text == "x"
        assert _code(tokenize("x", Grammar.A))[0].text == "x"
        with pytest.raises(ValueError, match="Unknown grammar"):
            tokenize("x", "fortran")


class TestDumps:
    def test_dump_tokens_shows_macro_origin(self):
        dump = dump_tokens("#define N 3\nint x = N;")
        assert "<- N" in dump
        assert "'int'" in dump

    def test_dump_ast_c(self):
        dump = dump_ast("int x = 1;")
        assert "Declaration(base_type='int')" in dump
        assert "Declarator(name='x', pointer_depth=0)" in dump
        assert "IntLiteral(value=1)" in dump
        assert "span" not in dump

    def test_parse_source_per_grammar(self):
        assert isinstance(parse_source("int x = 1;", "A"), ast_c.Program)
        assert isinstance(parse_source("x = 1", "B"), rb.Program)

    def test_parse_error_propagates(self):
        with pytest.raises(ParseError):
            parse_source("int = ;", "A")


class TestLoadPrelude:
    def test_macros_and_shims(self):
        fixtures = load_prelude(PRELUDE)
        assert [m.name for m in fixtures.macros] == ["EOF", "NULL", "end"]
        assert {s.name: s.behavior for s in fixtures.shims} == {
            "int": ShimBehavior.PASS_THROUGH,
            "main": ShimBehavior.YIELD,
        }

    def test_standard_header_macros_are_included(self):
        fixtures = load_prelude("#include <stdlib.h>\n")
        names = [m.name for m in fixtures.macros]
        assert names == sorted(names)
        assert "NULL" in names
        assert "__STDC__" not in names


class TestAnalyzeSource:
    def test_with_prelude(self):
        result = analyze_source(HELLO, prelude=PRELUDE)
        assert result.grammar_a.trace.output_text() == "hi\n"
        assert result.grammar_b.trace.output_text() == "hi\n"
        assert result.report.verdict == Classification.EQUIVALENT

    def test_without_prelude_grammar_b_fails(self):
        result = analyze_source(HELLO)
        assert result.grammar_a.trace.output_text() == "hi\n"
        assert result.grammar_b.error is not None
        assert not result.is_valid_polyglot

    def test_program_arguments(self):
        source = '#include <stdio.h>\nint main(int argc, char **argv) { puts(argv[1]); }'
        result = analyze_source(source, program_args=("seven",), program_name="prog")
        assert result.grammar_a.trace.output_text() == "seven\n"
