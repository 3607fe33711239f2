"""Tests for RubyFrontend: tree-sitter ruby tree of the raw buffer to ast_ruby."""

import pytest

from polyglot_analyzer import ast_ruby as rb
from polyglot_analyzer.errors import ParseError
from polyglot_analyzer.frontends import RubyFrontend
from polyglot_analyzer.source import SourceBuffer
from polyglot_analyzer.tokens import Grammar


def _parse(source: str) -> rb.Program:
    return RubyFrontend(SourceBuffer(source)).lower()


def _statements(source: str):
    return _parse(source).body.statements


def _first(source: str):
    return _statements(source)[0]


class TestLocalsAndCalls:
    def test_assigned_name_becomes_local(self):
        statements = _statements("x = 1\nx")
        assert isinstance(statements[0], rb.Assign)
        assert isinstance(statements[1], rb.LocalVar)

    def test_unassigned_name_is_a_call(self):
        node = _first("foo")
        assert isinstance(node, rb.Call)
        assert node.receiver is None and node.args == ()

    def test_command_call_takes_comma_separated_args(self):
        node = _first("puts 1, 2")
        assert node.name == "puts"
        assert len(node.args) == 2
        assert not node.has_parens

    def test_parenthesized_call(self):
        node = _first("puts(1)")
        assert node.has_parens

    def test_method_call_on_receiver(self):
        node = _first("str.to_i(10)")
        assert node.name == "to_i"
        assert isinstance(node.receiver, rb.Call)

    def test_def_scope_is_isolated(self):
        statements = _statements("def f(a); a; end\na")
        assert isinstance(statements[0].body.statements[0], rb.LocalVar)
        assert isinstance(statements[1], rb.Call)

    def test_blocks_see_enclosing_locals(self):
        block = _statements("x = 1\nfoo { x }")[1].block
        assert isinstance(block.body.statements[0], rb.LocalVar)

    def test_global_assignment(self):
        node = _first("$ret = 10")
        assert isinstance(node.target, rb.GlobalVar)
        assert node.target.name == "$ret"


class TestDeclarationReading:
    def test_c_function_header_reads_as_nested_calls(self):
        call = _first("int main(int argc, char ** argv) { 0 }")
        assert call.name == "int"
        main = call.args[0]
        assert main.name == "main"
        assert main.block is not None
        assert main.args[0].name == "int"

    def test_declaration_with_initializers(self):
        call = _first("int p = 7, i = 3")
        assert all(isinstance(arg, rb.Assign) for arg in call.args)

    def test_double_slash_line_is_regex_then_code(self):
        statements = _statements("//; puts 1")
        assert isinstance(statements[0], rb.RegexLit)
        assert statements[1].name == "puts"


class TestControlFlow:
    def test_if_elsif_else(self):
        node = _first("if a\n1\nelsif b\n2\nelse\n3\nend")
        assert isinstance(node, rb.If)
        assert isinstance(node.other, rb.If)
        assert isinstance(node.other.other, rb.Body)

    def test_unless_negates_condition(self):
        node = _first("unless a\n1\nend")
        assert isinstance(node.cond, rb.Not)

    def test_modifier_if_and_unless(self):
        assert isinstance(_first("puts 1 if x"), rb.If)
        assert isinstance(_first("puts 1 unless x").cond, rb.Not)

    def test_modifier_until(self):
        node = _statements("x = 0\nx += 1 until x > 3")[1]
        assert isinstance(node, rb.While) and node.until
        assert isinstance(node.body.statements[0], rb.OpAssign)

    def test_while_do(self):
        node = _first("while x < 3 do x = 1 end")
        assert isinstance(node, rb.While) and not node.until

    def test_ternary(self):
        node = _first("a ? 1 : 2")
        assert isinstance(node, rb.Ternary)

    def test_do_block_with_params(self):
        call = _first("[1, 2].each do |x| puts x end")
        assert call.name == "each"
        assert not call.block.brace
        assert [p.name for p in call.block.params] == ["x"]

    def test_return_with_several_values(self):
        body = _first("def f; return 1, 2; end").body
        assert isinstance(body.statements[0].value, rb.ArrayLit)


class TestOperators:
    def test_and_or_not(self):
        assert isinstance(_first("a && b"), rb.And)
        assert _first("a and b").op == "and"
        assert isinstance(_first("not a"), rb.Not)

    def test_negative_literal_folds(self):
        node = _first("-1")
        assert isinstance(node, rb.IntLit) and node.value == -1

    def test_precedence(self):
        node = _first("1 + 2 * 3")
        assert node.op == "+"
        assert node.right.op == "*"

    def test_interpolation_is_parsed_in_scope(self):
        node = _statements('x = 1\n"v=#{x}"')[1]
        assert node.parts[0] == "v="
        assert isinstance(node.parts[1].statements[0], rb.LocalVar)


class TestErrors:
    def test_unterminated_def(self):
        with pytest.raises(ParseError) as info:
            _parse("def f\n1")
        assert info.value.grammar == Grammar.B

    def test_unclosed_argument_list(self):
        with pytest.raises(ParseError):
            _parse("puts(1")

    def test_stray_closing_brace(self):
        with pytest.raises(ParseError, match="syntax error"):
            _parse("}")

    def test_deep_nesting_raises_parse_error(self):
        source = "x = " + "(" * 3000 + "1" + ")" * 3000
        with pytest.raises(ParseError, match="nesting too deep") as info:
            _parse(source)
        assert info.value.grammar == Grammar.B


class TestSpans:
    def test_call_span_covers_source_text(self):
        source = "x = 1\nputs x + 2"
        call = _statements(source)[1]
        assert source[call.span.start : call.span.end] == "puts x + 2"

    def test_multibyte_text_maps_to_character_offsets(self):
        source = 'puts "é"\nfoo'
        node = _statements(source)[1]
        assert source[node.span.start : node.span.end] == "foo"
