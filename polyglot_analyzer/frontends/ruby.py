"""RubyFrontend: tree-sitter Ruby tree of the buffer -> ``ast_ruby``.

Identifier-vs-call is decided the way Ruby does it: a bare name is a local
variable once an assignment to it (or a parameter of that name) has been
lowered in an enclosing scope, and a method call otherwise.  A ``def``
opens an isolated scope; blocks see the locals around them.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from ._base import BaseFrontend, read_escape
from .. import ast_ruby as rb
from ..parser import ParserFactory
from ..source import SourceBuffer, Span
from ..tokens import Grammar

logger = logging.getLogger(__name__)

# wrappers some grammar versions put around a body's statements
_BODY_WRAPPERS = frozenset({"block_body", "body_statement", "then", "else", "do"})
_PARAMETER_LISTS = frozenset({"method_parameters", "block_parameters", "parameters"})

_JUMPS = {"return": rb.Return, "break": rb.Break, "next": rb.Next}


class _Scope:
    def __init__(self, isolated: bool):
        self.isolated = isolated
        self.names: set[str] = set()


class RubyFrontend(BaseFrontend):
    """Lowers the buffer's tree-sitter Ruby tree into an ``ast_ruby.Program``."""

    GRAMMAR = Grammar.B

    NOISE_TYPES = frozenset({"empty_statement", "heredoc_body"})

    def __init__(self, buffer: SourceBuffer, parser_factory: ParserFactory | None = None):
        super().__init__(parser_factory)
        self._buffer = buffer
        self._scopes: list[_Scope] = [_Scope(isolated=True)]
        self._STMT_DISPATCH: dict[str, Callable] = {
            "if": self._lower_if,
            "unless": self._lower_unless,
            "if_modifier": self._lower_if_modifier,
            "unless_modifier": self._lower_if_modifier,
            "while": self._lower_while,
            "until": self._lower_while,
            "while_modifier": self._lower_while_modifier,
            "until_modifier": self._lower_while_modifier,
            "method": self._lower_method,
            "begin": self._lower_begin,
            "return": self._lower_jump,
            "break": self._lower_jump,
            "next": self._lower_jump,
        }
        self._EXPR_DISPATCH: dict[str, Callable] = {
            "identifier": self._lower_identifier,
            "constant": self._lower_constant,
            "scope_resolution": self._lower_scope_resolution,
            "global_variable": self._lower_global,
            "instance_variable": self._lower_global,
            "integer": self._lower_integer,
            "float": self._lower_float,
            "nil": lambda node: rb.NilLit(span=self._span(node)),
            "true": lambda node: rb.TrueLit(span=self._span(node)),
            "false": lambda node: rb.FalseLit(span=self._span(node)),
            "self": lambda node: rb.SelfRef(span=self._span(node)),
            "line": self._lower_line,
            "file": self._lower_file,
            "string": self._lower_string,
            "chained_string": self._lower_string,
            "simple_symbol": self._lower_symbol,
            "delimited_symbol": self._lower_delimited_symbol,
            "regex": self._lower_regex,
            "array": self._lower_array,
            "range": self._lower_range,
            "assignment": self._lower_assignment,
            "operator_assignment": self._lower_augmented_assignment,
            "binary": self._lower_binop,
            "unary": self._lower_unop,
            "conditional": self._lower_ternary,
            "parenthesized_statements": self._lower_paren,
            "element_reference": self._lower_subscript,
            "call": self._lower_call,
            "method_call": self._lower_call,
            "yield": self._lower_yield,
        }

    # ── entry point ──────────────────────────────────────────────

    def lower(self) -> rb.Program:
        """Parse the buffer as Ruby and build the Grammar-B program."""
        self._scopes = [_Scope(isolated=True)]
        root = self._parse_tree(self._buffer.text.encode("utf-8"))
        program = self._lower_root(root)
        logger.info("Parsed Grammar B: %d top-level statements", len(program.body.statements))
        return program

    def _lower_program(self, root) -> rb.Program:
        body = self._lower_body(self._named(root), root)
        return rb.Program(span=body.span, body=body)

    def _span(self, node) -> Span:
        return Span(
            start=self._buffer.char_offset(node.start_byte),
            end=self._buffer.char_offset(node.end_byte),
        )

    # ── scopes ───────────────────────────────────────────────────

    @contextmanager
    def _scope(self, isolated: bool) -> Iterator[_Scope]:
        scope = _Scope(isolated)
        self._scopes.append(scope)
        try:
            yield scope
        finally:
            self._scopes.pop()

    def _declare_local(self, name: str):
        self._scopes[-1].names.add(name)

    def is_local(self, name: str) -> bool:
        for scope in reversed(self._scopes):
            if name in scope.names:
                return True
            if scope.isolated:
                return False
        return False

    # ── dispatchers ──────────────────────────────────────────────

    def _lower_stmt(self, node):
        handler = self._STMT_DISPATCH.get(node.type)
        if handler is None:
            return self._lower_expr(node)
        return handler(node)

    def _lower_expr(self, node):
        # every Ruby statement is also an expression
        handler = self._EXPR_DISPATCH.get(node.type) or self._STMT_DISPATCH.get(node.type)
        if handler is None:
            raise self._unsupported(node)
        return handler(node)

    def _statements(self, node) -> list:
        """Statement nodes of *node*, looking through body wrapper nodes."""
        statements = []
        for child in self._named(node):
            if child.type in _BODY_WRAPPERS:
                statements.extend(self._statements(child))
            elif child.type not in _PARAMETER_LISTS:
                statements.append(child)
        return statements

    def _lower_body(self, nodes: list, anchor) -> rb.Body:
        """A ``Body`` over *nodes*; empty bodies sit at the start of *anchor*."""
        statements = tuple(self._lower_stmt(node) for node in nodes)
        if statements:
            span = statements[0].span.cover(statements[-1].span)
        else:
            start = self._span(anchor).start
            span = Span(start=start, end=start)
        return rb.Body(span=span, statements=statements)

    def _lower_block(self, node, anchor=None) -> rb.Body:
        if node is None:
            return self._lower_body([], anchor)
        return self._lower_body(self._statements(node), node)

    # ── literals ─────────────────────────────────────────────────

    def _lower_integer(self, node) -> rb.IntLit:
        return rb.IntLit(span=self._span(node), value=_integer(self._node_text(node)))

    def _lower_float(self, node) -> rb.FloatLit:
        return rb.FloatLit(span=self._span(node), value=_float(self._node_text(node)))

    def _lower_symbol(self, node) -> rb.Sym:
        return rb.Sym(span=self._span(node), name=self._node_text(node)[1:])

    def _lower_line(self, node) -> rb.IntLit:
        span = self._span(node)
        return rb.IntLit(span=span, value=self._buffer.line_col(span.start)[0])

    def _lower_file(self, node) -> rb.Str:
        return rb.Str(span=self._span(node), parts=(self._buffer.name,))

    def _string_parts(self, node) -> list:
        quote = self._node_text(node)[:1]
        parts: list = []
        for child in node.children:
            if child.type == "string_content":
                parts.append(self._node_text(child))
            elif child.type == "escape_sequence":
                text = self._node_text(child)
                parts.append(text[1:] if quote == "'" else read_escape(text, 0)[0])
            elif child.type == "interpolation":
                parts.append(self._lower_block(child))
            elif child.type == "string":
                parts.extend(self._string_parts(child))
            elif child.is_named and child.type not in self.COMMENT_TYPES:
                raise self._unsupported(child)
        return parts

    def _lower_string(self, node) -> rb.Str:
        merged: list = []
        for part in self._string_parts(node):
            if isinstance(part, str) and merged and isinstance(merged[-1], str):
                merged[-1] += part
            else:
                merged.append(part)
        return rb.Str(span=self._span(node), parts=tuple(merged))

    def _lower_delimited_symbol(self, node) -> rb.Sym:
        string = self._lower_string(node)
        if not string.is_plain:
            raise self._unsupported(node)
        return rb.Sym(span=string.span, name="".join(string.parts))

    def _lower_regex(self, node) -> rb.RegexLit:
        pattern = []
        for child in self._named(node):
            if child.type not in ("string_content", "escape_sequence"):
                raise self._unsupported(child)
            pattern.append(self._node_text(child))
        return rb.RegexLit(span=self._span(node), pattern="".join(pattern))

    def _lower_array(self, node) -> rb.ArrayLit:
        return rb.ArrayLit(span=self._span(node), items=self._arguments(node))

    def _lower_range(self, node) -> rb.RangeLit:
        bounds = self._named(node)
        if len(bounds) != 2:
            raise self._unsupported(node)
        low, high = bounds
        return rb.RangeLit(
            span=self._span(node),
            low=self._lower_expr(low),
            high=self._lower_expr(high),
            exclusive=self._operator(node) == "...",
        )

    # ── variables and assignment ─────────────────────────────────

    def _lower_identifier(self, node):
        name = self._node_text(node)
        span = self._span(node)
        if name == "__LINE__":
            return self._lower_line(node)
        if name == "__FILE__":
            return self._lower_file(node)
        if self.is_local(name):
            return rb.LocalVar(span=span, name=name)
        return rb.Call(span=span, receiver=None, name=name, name_span=span)

    def _lower_constant(self, node) -> rb.Const:
        return rb.Const(span=self._span(node), name=self._node_text(node))

    def _lower_global(self, node) -> rb.GlobalVar:
        return rb.GlobalVar(span=self._span(node), name=self._node_text(node))

    def _lower_scope_resolution(self, node) -> rb.Const:
        name = self._field(node, "name")
        return rb.Const(span=self._span(node), name=self._node_text(name))

    def _lower_store_target(self, target):
        if target.type == "identifier":
            # the name is a local from here on, including in its own RHS
            self._declare_local(self._node_text(target))
            return rb.LocalVar(span=self._span(target), name=self._node_text(target))
        if target.type in ("global_variable", "instance_variable"):
            return self._lower_global(target)
        if target.type == "constant":
            return rb.Const(span=self._span(target), name=self._node_text(target))
        if target.type == "element_reference":
            return self._lower_subscript(target)
        raise self._unsupported(target)

    def _assigned_value(self, node):
        right = self._field(node, self.ASSIGN_RIGHT_FIELD)
        if right.type == "right_assignment_list":
            return rb.ArrayLit(span=self._span(right), items=self._arguments(right))
        return self._lower_expr(right)

    def _lower_assignment(self, node) -> rb.Assign:
        target = self._lower_store_target(self._field(node, self.ASSIGN_LEFT_FIELD))
        return rb.Assign(span=self._span(node), target=target, value=self._assigned_value(node))

    def _lower_augmented_assignment(self, node) -> rb.OpAssign:
        target = self._lower_store_target(self._field(node, self.ASSIGN_LEFT_FIELD))
        return rb.OpAssign(
            span=self._span(node),
            op=self._operator(node)[:-1],
            target=target,
            value=self._assigned_value(node),
        )

    def _lower_subscript(self, node) -> rb.Index:
        receiver_node = self._field(node, "object")
        receiver = self._lower_expr(receiver_node)
        args = tuple(
            self._lower_argument(child) for child in self._named(node) if child != receiver_node
        )
        return rb.Index(span=self._span(node), receiver=receiver, args=args)

    # ── operators ────────────────────────────────────────────────

    def _lower_binop(self, node):
        op = self._operator(node)
        left = self._lower_expr(self._field(node, "left"))
        right = self._lower_expr(self._field(node, "right"))
        span = self._span(node)
        if op in ("&&", "and"):
            return rb.And(span=span, left=left, right=right, op=op)
        if op in ("||", "or"):
            return rb.Or(span=span, left=left, right=right, op=op)
        return rb.BinOp(span=span, op=op, left=left, right=right)

    def _lower_unop(self, node):
        op = self._operator(node)
        operand_node = self._field(node, "operand")
        operand = self._lower_expr(operand_node)
        span = self._span(node)
        if op in ("!", "not"):
            return rb.Not(span=span, operand=operand)
        if op == "defined?":
            return rb.Defined(span=span, operand=operand)
        if op == "-":
            if isinstance(operand, (rb.IntLit, rb.FloatLit)) and operand_node.start_byte == (
                node.start_byte + 1
            ):
                return type(operand)(span=span, value=-operand.value)
            return rb.UnaryOp(span=span, op="-@", operand=operand)
        if op == "+":
            return rb.UnaryOp(span=span, op="+@", operand=operand)
        if op == "~":
            return rb.UnaryOp(span=span, op="~", operand=operand)
        raise self._unsupported(node)

    def _lower_ternary(self, node) -> rb.Ternary:
        return rb.Ternary(
            span=self._span(node),
            cond=self._lower_expr(self._field(node, "condition")),
            then=self._lower_expr(self._field(node, "consequence")),
            other=self._lower_expr(self._field(node, "alternative")),
        )

    def _lower_paren(self, node):
        statements = self._statements(node)
        if not statements:
            return rb.NilLit(span=self._span(node))
        return rb.Paren(span=self._span(node), body=self._lower_body(statements, node))

    def _lower_begin(self, node) -> rb.Paren:
        return rb.Paren(span=self._span(node), body=self._lower_block(node))

    # ── calls and blocks ─────────────────────────────────────────

    def _lower_argument(self, node):
        if node.type in ("splat_argument", "hash_splat_argument"):
            return rb.Splat(span=self._span(node), value=self._lower_expr(self._named(node)[0]))
        if node.type == "block_argument":
            named = self._named(node)
            if not named:
                raise self._unsupported(node)
            return rb.BlockPass(span=self._span(node), value=self._lower_expr(named[0]))
        return self._lower_expr(node)

    def _arguments(self, node) -> tuple:
        if node is None:
            return ()
        return tuple(self._lower_argument(child) for child in self._named(node))

    def _lower_call(self, node) -> rb.Call:
        receiver_node = node.child_by_field_name("receiver")
        method_node = self._field(node, "method")
        args_node = node.child_by_field_name("arguments")
        block_node = node.child_by_field_name("block")
        if block_node is None:
            block_node = next((c for c in node.children if c.type in ("block", "do_block")), None)
        receiver = self._lower_expr(receiver_node) if receiver_node is not None else None
        args = self._arguments(args_node)
        block = self._lower_block_node(block_node) if block_node is not None else None
        return rb.Call(
            span=self._span(node),
            receiver=receiver,
            name=self._node_text(method_node),
            args=args,
            block=block,
            has_parens=args_node is not None and args_node.children[0].type == "(",
            name_span=self._span(method_node),
        )

    def _lower_params(self, node) -> tuple[rb.Param, ...]:
        if node is None:
            return ()
        params = []
        for child in self._named(node):
            kind = "required"
            default = None
            name_node = child
            if child.type == "optional_parameter":
                kind = "optional"
                name_node = self._field(child, "name")
                default = self._lower_expr(self._field(child, "value"))
            elif child.type in ("splat_parameter", "block_parameter"):
                kind = "splat" if child.type == "splat_parameter" else "block"
                name_node = child.child_by_field_name("name")
                if name_node is None:
                    raise self._unsupported(child)
            elif child.type != "identifier":
                raise self._unsupported(child)
            name = self._node_text(name_node)
            self._declare_local(name)
            params.append(rb.Param(span=self._span(child), name=name, kind=kind, default=default))
        return tuple(params)

    def _lower_block_node(self, node) -> rb.BlockNode:
        with self._scope(isolated=False):
            params = self._lower_params(node.child_by_field_name("parameters"))
            body = self._lower_block(node)
        return rb.BlockNode(
            span=self._span(node), params=params, body=body, brace=node.type == "block"
        )

    def _lower_yield(self, node) -> rb.Yield:
        args_node = next((c for c in node.children if c.type == "argument_list"), None)
        return rb.Yield(span=self._span(node), args=self._arguments(args_node))

    def _lower_jump(self, node):
        args_node = next((c for c in node.children if c.type == "argument_list"), None)
        args = self._arguments(args_node)
        value = None
        if len(args) == 1:
            value = args[0]
        elif args:
            value = rb.ArrayLit(span=args[0].span.cover(args[-1].span), items=args)
        return _JUMPS[node.type](span=self._span(node), value=value)

    # ── compound constructs ──────────────────────────────────────

    def _lower_method(self, node) -> rb.Def:
        name_node = self._field(node, "name")
        with self._scope(isolated=True):
            params = self._lower_params(node.child_by_field_name("parameters"))
            body_node = node.child_by_field_name("body")
            if body_node is not None:
                body = self._lower_block(body_node)
            else:
                statements = [c for c in self._statements(node) if c != name_node]
                body = self._lower_body(statements, node)
        return rb.Def(
            span=self._span(node),
            name=self._node_text(name_node),
            params=params,
            body=body,
            name_span=self._span(name_node),
        )

    def _lower_if(self, node) -> rb.If:
        cond = self._lower_expr(self._field(node, self.IF_CONDITION_FIELD))
        return self._if_rest(node, cond)

    def _lower_unless(self, node) -> rb.If:
        cond = self._lower_expr(self._field(node, self.IF_CONDITION_FIELD))
        return self._if_rest(node, rb.Not(span=cond.span, operand=cond))

    def _if_rest(self, node, cond) -> rb.If:
        then = self._lower_block(node.child_by_field_name(self.IF_CONSEQUENCE_FIELD), node)
        other = None
        alt_node = node.child_by_field_name(self.IF_ALTERNATIVE_FIELD)
        if alt_node is not None and alt_node.type == "elsif":
            other = self._lower_if(alt_node)
        elif alt_node is not None:
            other = self._lower_block(alt_node)
        return rb.If(span=self._span(node), cond=cond, then=then, other=other)

    def _modifier_parts(self, node):
        body = self._lower_stmt(self._field(node, "body"))
        cond = self._lower_expr(self._field(node, "condition"))
        return rb.Body(span=body.span, statements=(body,)), cond

    def _lower_if_modifier(self, node) -> rb.If:
        body, cond = self._modifier_parts(node)
        if node.type == "unless_modifier":
            cond = rb.Not(span=cond.span, operand=cond)
        return rb.If(span=self._span(node), cond=cond, then=body)

    def _lower_while_modifier(self, node) -> rb.While:
        body, cond = self._modifier_parts(node)
        return rb.While(
            span=self._span(node), cond=cond, body=body, until=node.type == "until_modifier"
        )

    def _lower_while(self, node) -> rb.While:
        cond = self._lower_expr(self._field(node, self.WHILE_CONDITION_FIELD))
        body = self._lower_block(node.child_by_field_name(self.WHILE_BODY_FIELD), node)
        return rb.While(span=self._span(node), cond=cond, body=body, until=node.type == "until")


def _integer(text: str) -> int:
    digits = text.replace("_", "")
    sign = -1 if digits.startswith("-") else 1
    digits = digits.lstrip("+-")
    if len(digits) > 1 and digits[0] == "0" and digits[1].isdigit():
        return sign * int(digits, 8)
    if digits[:2].lower() == "0d":
        return sign * int(digits[2:])
    return sign * int(digits, 0)


def _float(text: str) -> float:
    return float(text.replace("_", ""))
