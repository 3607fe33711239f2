"""Tests for the Grammar-B (Ruby) lexer and shared-token tagging."""

import pytest

from polyglot_analyzer.errors import ParseError
from polyglot_analyzer.frontends import RubyLexer, tokenize_both
from polyglot_analyzer.source import SourceBuffer, Span
from polyglot_analyzer.tokens import Grammar, TokenKind


def _lex(source: str):
    return [
        t
        for t in RubyLexer(SourceBuffer(source)).tokenize()
        if t.kind not in (TokenKind.EOF, TokenKind.NEWLINE)
    ]


def _pairs(source: str) -> list[tuple[TokenKind, str]]:
    return [(t.kind, t.text) for t in _lex(source)]


class TestRubyLexerWords:
    def test_keywords_identifiers_constants(self):
        assert _pairs("def foo Bar end") == [
            (TokenKind.KEYWORD, "def"),
            (TokenKind.IDENT, "foo"),
            (TokenKind.CONSTANT, "Bar"),
            (TokenKind.KEYWORD, "end"),
        ]

    def test_keyword_after_dot_is_identifier(self):
        kinds = [t.kind for t in _lex("x.end")]
        assert kinds == [TokenKind.IDENT, TokenKind.OP, TokenKind.IDENT]

    def test_predicate_method_name(self):
        assert _lex("empty? x")[0].text == "empty?"

    def test_spaced_question_mark_is_operator(self):
        tokens = _lex("prime ? 1 : 2")
        assert tokens[0].text == "prime"
        assert tokens[1].kind == TokenKind.OP and tokens[1].text == "?"

    def test_globals(self):
        assert _pairs("$ret @x") == [(TokenKind.GLOBAL, "$ret"), (TokenKind.GLOBAL, "@x")]

    def test_symbol(self):
        tokens = _lex("define_method :int")
        assert tokens[1].kind == TokenKind.SYMBOL
        assert tokens[1].value == "int"

    def test_ternary_colon_is_not_a_symbol(self):
        tokens = _lex("a ? b :c")
        assert tokens[3].kind == TokenKind.SYMBOL
        tokens = _lex("a ? b : c")
        assert tokens[3].kind == TokenKind.OP


class TestRubyLexerComments:
    def test_hash_starts_comment(self):
        tokens = _lex("#include <stdio.h>\nx")
        assert tokens[0].kind == TokenKind.COMMENT
        assert tokens[0].text == "#include <stdio.h>"
        assert tokens[1].text == "x"

    def test_double_slash_at_line_start_is_empty_regex(self):
        tokens = _lex("//; puts 1")
        assert tokens[0].kind == TokenKind.REGEX
        assert tokens[0].value == ""
        assert tokens[1].text == ";"

    def test_slash_after_value_is_division(self):
        assert _lex("a = 4 / 2")[3].kind == TokenKind.OP

    def test_embedded_document(self):
        tokens = _lex("=begin\nanything /* here\n=end\nx")
        assert tokens[0].kind == TokenKind.COMMENT
        assert tokens[0].value == "embedded"
        assert tokens[-1].text == "x"

    def test_end_marker_stops_lexing(self):
        tokens = _lex("x\n__END__\nthis is not code")
        assert [t.text for t in tokens] == ["x"]


class TestRubyLexerLiterals:
    def test_numbers(self):
        assert [t.value for t in _lex("1_000 0x1f 017 2.5")] == [1000, 31, 15, 2.5]

    def test_single_quoted(self):
        assert _lex(r"'a\'b'")[0].value == ["a'b"]

    def test_double_quoted_escape(self):
        assert _lex(r'"a\nb"')[0].value == ["a\nb"]

    def test_interpolation_parts_are_spans(self):
        source = '"x=#{x}!"'
        parts = _lex(source)[0].value
        assert parts[0] == "x="
        assert isinstance(parts[1], Span)
        assert source[parts[1].start : parts[1].end] == "x"
        assert parts[2] == "!"

    def test_unterminated_string_raises(self):
        with pytest.raises(ParseError):
            _lex('"abc')

    def test_unterminated_regex_raises(self):
        with pytest.raises(ParseError):
            _lex("/abc")

    def test_invalid_character_raises(self):
        with pytest.raises(ParseError) as info:
            _lex("a ` b")
        assert info.value.grammar == Grammar.B


class TestTokenizeBoth:
    def test_agreeing_tokens_are_shared(self):
        tokens_a, tokens_b = tokenize_both(SourceBuffer("puts(x);"))
        assert all(t.grammar == Grammar.SHARED for t in tokens_a if t.kind != TokenKind.EOF)
        shared_b = [
            t.text for t in tokens_b if t.grammar == Grammar.SHARED and t.kind != TokenKind.EOF
        ]
        assert shared_b == [
            "puts",
            "(",
            "x",
            ")",
            ";",
        ]

    def test_comment_is_grammar_specific(self):
        tokens_a, tokens_b = tokenize_both(SourceBuffer("//; x = 1\n"))
        assert tokens_a[0].kind == TokenKind.COMMENT
        assert tokens_a[0].grammar == Grammar.A
        assert tokens_b[0].kind == TokenKind.REGEX
        assert tokens_b[0].grammar == Grammar.B
