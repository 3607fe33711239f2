"""CFrontend: tree-sitter C tree of the preprocessed tokens -> ``ast_c``.

The Grammar-A view is the preprocessed token stream joined by single
spaces.  Every tree node is mapped back through those tokens, so spans,
identifier names and literal values come from the tokens themselves
(macro-expanded tokens carry the span of their invocation).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable

from ._base import BaseFrontend
from .. import ast_c
from .. import constants
from ..errors import ParseError
from ..parser import ParserFactory, TokenText
from ..source import Span
from ..tokens import Grammar, Token, TokenKind

logger = logging.getLogger(__name__)

_TYPE_SPECIFIERS = frozenset({"primitive_type", "sized_type_specifier", "type_identifier"})
_QUALIFIER_TYPES = frozenset({"type_qualifier", "storage_class_specifier"})
_LVALUES = (ast_c.Identifier, ast_c.Index)


class CFrontend(BaseFrontend):
    """Grammar-A front end.  File scope holds only declarations and functions."""

    GRAMMAR = Grammar.A

    def __init__(self, parser_factory: ParserFactory | None = None):
        super().__init__(parser_factory)
        self._text = TokenText([])
        self._STMT_DISPATCH: dict[str, Callable] = {
            "compound_statement": self._lower_compound,
            "declaration": self._lower_declaration,
            "expression_statement": self._lower_expression_statement,
            "if_statement": self._lower_if,
            "while_statement": self._lower_while,
            "do_statement": self._lower_do_while,
            "for_statement": self._lower_for,
            "return_statement": self._lower_return,
            "break_statement": lambda node: ast_c.Break(span=self._span(node)),
            "continue_statement": lambda node: ast_c.Continue(span=self._span(node)),
        }
        self._EXPR_DISPATCH: dict[str, Callable] = {
            "identifier": self._lower_identifier,
            "true": self._lower_identifier,
            "false": self._lower_identifier,
            "null": self._lower_identifier,
            "number_literal": self._lower_number,
            "char_literal": self._lower_char,
            "string_literal": self._lower_string,
            "concatenated_string": self._lower_string,
            "parenthesized_expression": self._lower_paren,
            "binary_expression": self._lower_binop,
            "unary_expression": self._lower_unop,
            "pointer_expression": self._lower_unop,
            "update_expression": self._lower_update_expr,
            "assignment_expression": self._lower_assignment_expr,
            "conditional_expression": self._lower_ternary,
            "call_expression": self._lower_call,
            "subscript_expression": self._lower_subscript_expr,
            "cast_expression": self._lower_cast_expr,
            "sizeof_expression": self._lower_sizeof,
            "comma_expression": self._lower_comma_expr,
        }

    # ── entry point ──────────────────────────────────────────────

    def lower(self, tokens: list[Token]) -> ast_c.Program:
        """Build the Grammar-A program from the preprocessed *tokens*."""
        for tok in tokens:
            if tok.kind == TokenKind.ERROR:
                raise ParseError(str(tok.value), tok.span, Grammar.A)
        self._text = TokenText(tokens)
        root = self._parse_tree(self._text.data)
        program = self._lower_root(root)
        logger.info("Parsed Grammar A: %d top-level items", len(program.items))
        return program

    def _lower_program(self, root) -> ast_c.Program:
        items = [self._lower_external(child) for child in self._named(root)]
        return ast_c.Program(span=self._span(root), items=tuple(items))

    # ── token mapping ────────────────────────────────────────────

    def _span(self, node) -> Span:
        return self._text.span(node.start_byte, node.end_byte)

    def _token(self, node) -> Token:
        tok = self._text.token_at(node.start_byte)
        if tok is None:
            raise self._error(f"unexpected {node.type}", node)
        return tok

    def _found(self, node) -> str:
        covered = self._text.covered(node.start_byte, node.end_byte)
        return repr(covered[0].text) if covered else "end of input"

    def _error(self, message: str, node) -> ParseError:
        return ParseError(f"{message}, found {self._found(node)}", self._span(node), Grammar.A)

    def _problem_error(self, node) -> ParseError:
        if node.is_missing:
            return super()._problem_error(node)
        return self._error("syntax error", node)

    # ── types and declarators ────────────────────────────────────

    def _base_type(self, node) -> tuple[str, tuple[str, ...]]:
        """Base type name and qualifiers of a declaration-like node."""
        type_node = node.child_by_field_name("type")
        if type_node is not None and type_node.type not in _TYPE_SPECIFIERS:
            raise self._unsupported(type_node)
        words: list[str] = []
        qualifiers: list[str] = []
        for child in self._named(node):
            if child.type in _QUALIFIER_TYPES:
                qualifiers.append(self._node_text(child))
            elif child.type in _TYPE_SPECIFIERS:
                words.extend(self._node_text(child).split())
        for word in words:
            if word not in constants.C_TYPE_KEYWORDS:
                raise self._error(f"unknown type name '{word}'", node)
        return _normalize_type(words), tuple(qualifiers)

    def _declarator_parts(self, node):
        """Name node, pointer depth, array size nodes and parameter list."""
        depth = 0
        arrays = []
        params = None
        while node is not None and node.type != "identifier":
            if node.type == "pointer_declarator":
                depth += 1
            elif node.type == "array_declarator":
                arrays.append(node.child_by_field_name("size"))
            elif node.type == "function_declarator":
                params = self._field(node, "parameters")
            elif node.type != "parenthesized_declarator":
                raise self._unsupported(node)
            inner = node.child_by_field_name("declarator")
            if inner is None and node.type == "parenthesized_declarator":
                inner = self._named(node)[0]
            node = inner
        return node, depth, arrays, params

    def _abstract_depth(self, node) -> int:
        depth = 0
        while node is not None:
            if node.type not in ("abstract_pointer_declarator", "abstract_array_declarator"):
                raise self._unsupported(node)
            depth += 1
            node = node.child_by_field_name("declarator")
        return depth

    def _type_name(self, node) -> ast_c.TypeName:
        base, _ = self._base_type(node)
        return ast_c.TypeName(base, self._abstract_depth(node.child_by_field_name("declarator")))

    def _lower_params(self, node) -> tuple[tuple[ast_c.Param, ...], bool]:
        params: list[ast_c.Param] = []
        variadic = False
        children = self._named(node)
        for child in children:
            if child.type == "variadic_parameter":
                variadic = True
                continue
            if child.type != "parameter_declaration":
                raise self._unsupported(child)
            base, _ = self._base_type(child)
            declarator = child.child_by_field_name("declarator")
            if declarator is None and base == "void" and len(children) == 1:
                break
            name = None
            depth = 0
            if declarator is not None and declarator.type.startswith("abstract_"):
                depth = self._abstract_depth(declarator)
            elif declarator is not None:
                name_node, depth, arrays, _ = self._declarator_parts(declarator)
                name = self._token(name_node).text
                depth += len(arrays)
            params.append(
                ast_c.Param(
                    span=self._span(child), type_name=ast_c.TypeName(base, depth), name=name
                )
            )
        return tuple(params), variadic

    def _lower_declarator(self, node) -> ast_c.Declarator:
        init = None
        target = node
        if node.type == "init_declarator":
            target = self._field(node, "declarator")
            value = self._field(node, "value")
            if value.type == "initializer_list":
                init = self._lower_initializer_list(value)
            else:
                init = self._lower_expr(value)
        name_node, depth, arrays, params = self._declarator_parts(target)
        if params is not None:
            raise self._error("function declarator in block declaration", node)
        if len(arrays) > 1:
            raise self._error("multidimensional arrays are not supported", node)
        size = arrays[0] if arrays else None
        name_tok = self._token(name_node)
        return ast_c.Declarator(
            span=name_tok.span.cover(self._span(node)),
            name=name_tok.text,
            pointer_depth=depth,
            is_array=bool(arrays),
            array_size=self._lower_expr(size) if size is not None else None,
            init=init,
        )

    def _lower_initializer_list(self, node) -> ast_c.InitList:
        items = tuple(self._lower_expr(child) for child in self._named(node))
        return ast_c.InitList(span=self._span(node), items=items)

    # ── file scope ───────────────────────────────────────────────

    def _lower_external(self, node):
        if node.type == "function_definition":
            return self._lower_function_def(node)
        if node.type == "declaration":
            declarators = node.children_by_field_name("declarator")
            if len(declarators) == 1 and declarators[0].type != "init_declarator":
                if self._declarator_parts(declarators[0])[3] is not None:
                    return self._lower_function_decl(node, declarators[0])
            return self._lower_declaration(node)
        raise self._error("expected declaration or function definition", node)

    def _function_header(self, node, declarator):
        base, _ = self._base_type(node)
        name_node, depth, _, params_node = self._declarator_parts(declarator)
        params, variadic = self._lower_params(params_node)
        return ast_c.TypeName(base, depth), self._token(name_node).text, params, variadic

    def _lower_function_def(self, node) -> ast_c.FunctionDef:
        return_type, name, params, variadic = self._function_header(
            node, self._field(node, "declarator")
        )
        return ast_c.FunctionDef(
            span=self._span(node),
            return_type=return_type,
            name=name,
            params=params,
            body=self._lower_compound(self._field(node, "body")),
            variadic=variadic,
        )

    def _lower_function_decl(self, node, declarator) -> ast_c.FunctionDecl:
        return_type, name, params, variadic = self._function_header(node, declarator)
        return ast_c.FunctionDecl(
            span=self._span(node),
            return_type=return_type,
            name=name,
            params=params,
            variadic=variadic,
        )

    # ── statements ───────────────────────────────────────────────

    def _lower_compound(self, node) -> ast_c.Compound:
        items = tuple(self._lower_stmt(child) for child in self._named(node))
        return ast_c.Compound(span=self._span(node), items=items)

    def _lower_declaration(self, node) -> ast_c.Declaration:
        base, qualifiers = self._base_type(node)
        declarators = tuple(
            self._lower_declarator(d) for d in node.children_by_field_name("declarator")
        )
        return ast_c.Declaration(
            span=self._span(node), base_type=base, qualifiers=qualifiers, declarators=declarators
        )

    def _lower_expression_statement(self, node):
        named = self._named(node)
        if not named:
            return ast_c.Empty(span=self._span(node))
        return ast_c.ExprStmt(span=self._span(node), expr=self._lower_expr(named[0]))

    def _condition(self, node):
        """A parenthesized statement condition, without its parentheses."""
        if node.type == "parenthesized_expression":
            return self._lower_expr(self._named(node)[0])
        return self._lower_expr(node)

    def _lower_if(self, node) -> ast_c.If:
        cond = self._condition(self._field(node, self.IF_CONDITION_FIELD))
        then = self._lower_stmt(self._field(node, self.IF_CONSEQUENCE_FIELD))
        other = None
        alt_node = node.child_by_field_name(self.IF_ALTERNATIVE_FIELD)
        if alt_node is not None:
            if alt_node.type == "else_clause":
                alt_node = self._named(alt_node)[0]
            other = self._lower_stmt(alt_node)
        return ast_c.If(span=self._span(node), cond=cond, then=then, other=other)

    def _lower_while(self, node) -> ast_c.While:
        return ast_c.While(
            span=self._span(node),
            cond=self._condition(self._field(node, self.WHILE_CONDITION_FIELD)),
            body=self._lower_stmt(self._field(node, self.WHILE_BODY_FIELD)),
        )

    def _lower_do_while(self, node) -> ast_c.DoWhile:
        return ast_c.DoWhile(
            span=self._span(node),
            body=self._lower_stmt(self._field(node, "body")),
            cond=self._condition(self._field(node, "condition")),
        )

    def _lower_for(self, node) -> ast_c.For:
        init_node = node.child_by_field_name("initializer")
        cond_node = node.child_by_field_name("condition")
        update_node = node.child_by_field_name("update")
        init = None
        if init_node is not None and init_node.type == "declaration":
            init = self._lower_declaration(init_node)
        elif init_node is not None:
            init = ast_c.ExprStmt(span=self._span(init_node), expr=self._lower_expr(init_node))
        return ast_c.For(
            span=self._span(node),
            init=init,
            cond=self._lower_expr(cond_node) if cond_node is not None else None,
            step=self._lower_expr(update_node) if update_node is not None else None,
            body=self._lower_stmt(self._field(node, "body")),
        )

    def _lower_return(self, node) -> ast_c.Return:
        named = self._named(node)
        value = self._lower_expr(named[0]) if named else None
        return ast_c.Return(span=self._span(node), value=value)

    # ── expressions ──────────────────────────────────────────────

    def _lower_identifier(self, node) -> ast_c.Identifier:
        tok = self._token(node)
        return ast_c.Identifier(span=tok.span, name=tok.text)

    def _lower_number(self, node):
        tok = self._token(node)
        if tok.kind == TokenKind.FLOAT:
            return ast_c.FloatLiteral(span=tok.span, value=tok.value)
        return ast_c.IntLiteral(span=tok.span, value=tok.value)

    def _lower_char(self, node) -> ast_c.CharLiteral:
        tok = self._token(node)
        return ast_c.CharLiteral(span=tok.span, value=tok.value)

    def _lower_string(self, node) -> ast_c.StringLiteral:
        # adjacent literals concatenate
        tokens = [
            tok
            for tok in self._text.covered(node.start_byte, node.end_byte)
            if tok.kind == TokenKind.STRING
        ]
        return ast_c.StringLiteral(
            span=self._span(node), value="".join(tok.value for tok in tokens)
        )

    def _lower_paren(self, node):
        inner = self._lower_expr(self._named(node)[0])
        return replace(inner, span=self._span(node))

    def _lower_binop(self, node) -> ast_c.Binary:
        return ast_c.Binary(
            span=self._span(node),
            op=self._operator(node),
            left=self._lower_expr(self._field(node, "left")),
            right=self._lower_expr(self._field(node, "right")),
        )

    def _lower_unop(self, node) -> ast_c.Unary:
        return ast_c.Unary(
            span=self._span(node),
            op=self._operator(node),
            operand=self._lower_expr(self._field(node, "argument")),
        )

    def _lower_update_expr(self, node) -> ast_c.IncDec:
        return ast_c.IncDec(
            span=self._span(node),
            op=self._operator(node),
            operand=self._lower_expr(self._field(node, "argument")),
            prefix=not node.children[0].is_named,
        )

    def _lower_assignment_expr(self, node) -> ast_c.Assign:
        target = self._lower_expr(self._field(node, self.ASSIGN_LEFT_FIELD))
        if not isinstance(target, _LVALUES) and not (
            isinstance(target, ast_c.Unary) and target.op == "*"
        ):
            op_node = node.child_by_field_name("operator")
            raise self._error(
                "lvalue required as left operand of assignment", op_node or node
            )
        return ast_c.Assign(
            span=self._span(node),
            op=self._operator(node),
            target=target,
            value=self._lower_expr(self._field(node, self.ASSIGN_RIGHT_FIELD)),
        )

    def _lower_ternary(self, node) -> ast_c.Conditional:
        return ast_c.Conditional(
            span=self._span(node),
            cond=self._lower_expr(self._field(node, "condition")),
            then=self._lower_expr(self._field(node, "consequence")),
            other=self._lower_expr(self._field(node, "alternative")),
        )

    def _lower_call(self, node) -> ast_c.Call:
        args_node = self._field(node, "arguments")
        return ast_c.Call(
            span=self._span(node),
            callee=self._lower_expr(self._field(node, "function")),
            args=tuple(self._lower_expr(arg) for arg in self._named(args_node)),
        )

    def _lower_subscript_expr(self, node) -> ast_c.Index:
        base_node = self._field(node, "argument")
        index_node = node.child_by_field_name("index")
        if index_node is None:
            index_node = self._named(node)[1]
        return ast_c.Index(
            span=self._span(node),
            base=self._lower_expr(base_node),
            index=self._lower_expr(index_node),
        )

    def _lower_cast_expr(self, node) -> ast_c.Cast:
        return ast_c.Cast(
            span=self._span(node),
            type_name=self._type_name(self._field(node, "type")),
            operand=self._lower_expr(self._field(node, "value")),
        )

    def _lower_sizeof(self, node) -> ast_c.SizeOf:
        type_node = node.child_by_field_name("type")
        if type_node is not None:
            target = self._type_name(type_node)
        else:
            target = self._lower_expr(self._field(node, "value"))
        return ast_c.SizeOf(span=self._span(node), target=target)

    def _lower_comma_expr(self, node) -> ast_c.Comma:
        return ast_c.Comma(
            span=self._span(node),
            left=self._lower_expr(self._field(node, "left")),
            right=self._lower_expr(self._field(node, "right")),
        )


def _normalize_type(words: list[str]) -> str:
    if not words:
        return "int"
    if words in (["unsigned"], ["signed"]):
        return f"{words[0]} int"
    if words == ["long", "long"]:
        return "long"
    filtered = [w for w in words if w != "signed" or len(words) == 1]
    if "int" in filtered and len(filtered) > 1 and filtered != ["unsigned", "int"]:
        filtered = [w for w in filtered if w != "int"]
    return " ".join(filtered)
