"""Tests for CFrontend: tree-sitter C tree of the preprocessed tokens to ast_c."""

import pytest

from polyglot_analyzer import ast_c
from polyglot_analyzer.errors import ParseError
from polyglot_analyzer.frontends import CFrontend
from polyglot_analyzer.preprocessor import preprocess
from polyglot_analyzer.source import SourceBuffer
from polyglot_analyzer.tokens import Grammar


def _parse(source: str) -> ast_c.Program:
    return CFrontend().lower(preprocess(SourceBuffer(source)).tokens)


def _body(statements: str):
    program = _parse("int main() { " + statements + " }")
    return program.items[0].body.items


def _expr(expression: str):
    return _body(expression + ";")[0].expr


class TestFileScope:
    def test_global_declaration(self):
        decl = _parse("int x = 1, *p;").items[0]
        assert isinstance(decl, ast_c.Declaration)
        assert decl.base_type == "int"
        assert [d.name for d in decl.declarators] == ["x", "p"]
        assert decl.declarators[0].init.value == 1
        assert decl.declarators[1].pointer_depth == 1

    def test_function_definition_with_params(self):
        func = _parse("int main(int argc, char ** argv) { return 0; }").items[0]
        assert isinstance(func, ast_c.FunctionDef)
        assert func.name == "main"
        assert [p.name for p in func.params] == ["argc", "argv"]
        assert func.params[1].type_name == ast_c.TypeName("char", 2)
        assert str(func.params[1].type_name) == "char**"

    def test_definition_without_return_type_is_rejected(self):
        with pytest.raises(ParseError) as info:
            _parse("main() { }")
        assert info.value.grammar == Grammar.A

    def test_void_parameter_list(self):
        decl = _parse("int f(void);").items[0]
        assert isinstance(decl, ast_c.FunctionDecl)
        assert decl.params == ()

    def test_variadic_prototype(self):
        decl = _parse("int printf(const char *fmt, ...);").items[0]
        assert decl.variadic
        assert decl.params[0].type_name == ast_c.TypeName("char", 1)

    def test_array_parameter_is_pointer(self):
        func = _parse("int f(char *argv[]) { return 0; }").items[0]
        assert func.params[0].type_name.pointer_depth == 2

    def test_type_normalization(self):
        items = _parse("unsigned x; long long y; unsigned long z;").items
        assert [d.base_type for d in items] == ["unsigned int", "long", "unsigned long"]

    def test_statement_at_file_scope_is_rejected(self):
        with pytest.raises(ParseError) as info:
            _parse("x = 1;")
        assert info.value.grammar == Grammar.A

    def test_unknown_type_word_is_rejected(self):
        with pytest.raises(ParseError):
            _parse("int main() { foo bar; }")


class TestStatements:
    def test_unbraced_if_takes_one_statement(self):
        items = _body('if (foo < 10) puts("one"); puts("two");')
        assert isinstance(items[0], ast_c.If)
        assert isinstance(items[0].then, ast_c.ExprStmt)
        assert isinstance(items[1], ast_c.ExprStmt)

    def test_dangling_else_binds_inner(self):
        outer = _body("if (a) if (b) x = 1; else x = 2;")[0]
        assert outer.other is None
        assert outer.then.other is not None

    def test_while_and_do(self):
        items = _body("while (i < 3) i++; do i--; while (i);")
        assert isinstance(items[0], ast_c.While)
        assert isinstance(items[1], ast_c.DoWhile)

    def test_for_with_declaration(self):
        loop = _body("for (int i = 0; i < 3; i++) ;")[0]
        assert isinstance(loop.init, ast_c.Declaration)
        assert isinstance(loop.cond, ast_c.Binary)
        assert isinstance(loop.step, ast_c.IncDec) and not loop.step.prefix
        assert isinstance(loop.body, ast_c.Empty)

    def test_for_with_empty_clauses(self):
        loop = _body("for (;;) break;")[0]
        assert loop.init is None and loop.cond is None and loop.step is None
        assert isinstance(loop.body, ast_c.Break)

    def test_local_declaration_list(self):
        decl = _body("int p = 7, i = 3;")[0]
        assert [d.name for d in decl.declarators] == ["p", "i"]

    def test_return_without_value(self):
        assert _body("return;")[0].value is None

    def test_macro_semicolon_is_an_empty_statement(self):
        program = _parse("#define end ;\nint main() { end }")
        assert isinstance(program.items[0].body.items[0], ast_c.Empty)

    def test_missing_closing_brace(self):
        with pytest.raises(ParseError) as info:
            _parse("int main() { return 0;")
        assert info.value.grammar == Grammar.A
        assert info.value.span.start <= len("int main() { return 0;")


class TestExpressions:
    def test_precedence(self):
        expr = _expr("x = 1 + 2 * 3")
        assert isinstance(expr, ast_c.Assign)
        assert expr.value.op == "+"
        assert expr.value.right.op == "*"

    def test_logical_operators_bind_looser_than_comparison(self):
        expr = _expr("a != 0 && b < 3")
        assert expr.op == "&&"
        assert expr.left.op == "!=" and expr.right.op == "<"

    def test_conditional(self):
        expr = _expr("x = a ? 1 : 2")
        assert isinstance(expr.value, ast_c.Conditional)

    def test_parentheses_widen_span(self):
        source = "int main() { x = (1 + 2); }"
        expr = _parse(source).items[0].body.items[0].expr
        assert source[expr.value.span.start : expr.value.span.end] == "(1 + 2)"

    def test_call_and_index(self):
        expr = _expr("f(argv[1], 10)")
        assert isinstance(expr, ast_c.Call)
        assert expr.callee.name == "f"
        assert isinstance(expr.args[0], ast_c.Index)

    def test_adjacent_strings_concatenate(self):
        assert _expr('puts("a" "b")').args[0].value == "ab"

    def test_cast_and_sizeof(self):
        assert _expr("(char) 65").type_name == ast_c.TypeName("char")
        assert isinstance(_expr("sizeof(int)").target, ast_c.TypeName)

    def test_comma_operator(self):
        assert isinstance(_expr("a = 1, b = 2"), ast_c.Comma)

    def test_assignment_needs_lvalue(self):
        with pytest.raises(ParseError, match="lvalue required"):
            _expr("f() = 2")

    def test_lexer_error_token_is_reported(self):
        with pytest.raises(ParseError, match="octal") as info:
            _parse("int x = 09;")
        assert info.value.grammar == Grammar.A

    def test_identifier_spans_map_to_source(self):
        source = "int main() { total = 1; }"
        expr = _parse(source).items[0].body.items[0].expr
        assert source[expr.target.span.start : expr.target.span.end] == "total"

    def test_macro_expansion_lowers_replacement(self):
        program = _parse("#define TEN 10\nint x = TEN;")
        assert program.items[0].declarators[0].init.value == 10


class TestDeepNesting:
    def test_deep_parentheses_raise_parse_error(self):
        source = "int main() { x = " + "(" * 3000 + "1" + ")" * 3000 + "; }"
        with pytest.raises(ParseError, match="nesting too deep") as info:
            _parse(source)
        assert info.value.grammar == Grammar.A
