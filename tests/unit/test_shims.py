"""Tests for shim classification and the index-addressed shim registry."""

import pytest

from polyglot_analyzer import ast_ruby as rb
from polyglot_analyzer.errors import (
    ArityMismatch,
    ExpansionLimitExceeded,
    MissingBlock,
    UnresolvedShim,
)
from polyglot_analyzer.frontends import RubyFrontend
from polyglot_analyzer.shims import (
    ShimArity,
    ShimBehavior,
    ShimDefinition,
    ShimRegistry,
    classify_def,
    declaration_targets,
)
from polyglot_analyzer.source import SourceBuffer


def _statements(source: str):
    buffer = SourceBuffer(source)
    return RubyFrontend(buffer).lower().body.statements


def _classify(source: str) -> ShimDefinition:
    return classify_def(_statements(source)[0])


def _shim(name: str, behavior: ShimBehavior, arity: ShimArity = ShimArity.variadic(), **kw):
    return ShimDefinition(name=name, arity=arity, behavior=behavior, **kw)


class TestClassifyDef:
    def test_splat_returned_is_pass_through(self):
        shim = _classify("def int(*args); args; end")
        assert shim.behavior == ShimBehavior.PASS_THROUGH
        assert shim.arity.is_variadic

    def test_literal_body_is_constant(self):
        shim = _classify("def char; 0; end")
        assert shim.behavior == ShimBehavior.CONSTANT
        assert shim.constant == 0
        assert shim.arity == ShimArity.fixed(0)

    def test_empty_body_is_nil_constant(self):
        shim = _classify("def void(*args); end")
        assert shim.behavior == ShimBehavior.CONSTANT
        assert shim.constant is None

    def test_bare_yield_is_yield_to_block(self):
        assert _classify("def main(*args); yield; end").behavior == ShimBehavior.YIELD

    def test_self_redefinition(self):
        shim = _classify("def f(*a, &b); define_method(:f, &b); end")
        assert shim.behavior == ShimBehavior.REDEFINE
        assert shim.redefinable

    def test_define_method_of_other_name_is_method_body(self):
        shim = _classify("def f(*a, &b); define_method(:g, &b); end")
        assert shim.behavior == ShimBehavior.METHOD_BODY

    def test_anything_else_is_method_body(self):
        shim = _classify("def strtol(str, _, base); str.to_i(base); end")
        assert shim.behavior == ShimBehavior.METHOD_BODY
        assert shim.arity == ShimArity.fixed(3)
        assert isinstance(shim.definition, rb.Def)

    def test_optional_parameters_widen_arity(self):
        shim = _classify("def f(a, b = 2); a + b; end")
        assert shim.arity == ShimArity(1, 2)
        assert shim.arity.describe() == "1..2"


class TestShimArity:
    def test_accepts(self):
        assert ShimArity.fixed(2).accepts(2)
        assert not ShimArity.fixed(2).accepts(3)
        assert ShimArity.variadic(1).accepts(5)
        assert not ShimArity.variadic(1).accepts(0)

    def test_describe(self):
        assert ShimArity.fixed(0).describe() == "0"
        assert ShimArity.variadic(1).describe() == "1+"


class TestShimRegistry:
    def test_declare_assigns_stable_slots(self):
        registry = ShimRegistry([_shim("int", ShimBehavior.PASS_THROUGH)])
        slot = registry.slot("int")
        registry.declare(_shim("char", ShimBehavior.CONSTANT))
        registry.declare(_shim("int", ShimBehavior.CONSTANT))
        assert registry.slot("int") == slot
        assert len(registry) == 2
        assert registry.lookup("int").behavior == ShimBehavior.CONSTANT

    def test_unknown_name_without_block(self):
        with pytest.raises(UnresolvedShim, match="'nope'"):
            ShimRegistry().invoke("nope")

    def test_unknown_name_with_block_is_implicit_redefinition(self):
        registry = ShimRegistry()
        block = object()
        invocation = registry.invoke("set_ret", (), block)
        assert invocation.redefined
        assert registry.lookup("set_ret").behavior == ShimBehavior.YIELD
        assert registry.lookup("set_ret").block is block

    def test_arity_mismatch(self):
        registry = ShimRegistry([_shim("char", ShimBehavior.CONSTANT, ShimArity.fixed(0))])
        with pytest.raises(ArityMismatch) as info:
            registry.invoke("char", (1,))
        assert info.value.expected == "0"
        assert info.value.given == 1

    def test_yield_without_block(self):
        registry = ShimRegistry([_shim("main", ShimBehavior.YIELD)])
        with pytest.raises(MissingBlock):
            registry.invoke("main")

    def test_yield_passes_call_block(self):
        registry = ShimRegistry([_shim("main", ShimBehavior.YIELD)])
        block = object()
        invocation = registry.invoke("main", (1, 2), block)
        assert invocation.block is block
        assert invocation.args == (1, 2)
        assert not invocation.redefined

    def test_redefine_binds_block(self):
        registry = ShimRegistry([_shim("f", ShimBehavior.REDEFINE, redefinable=True)])
        block = object()
        invocation = registry.invoke("f", (), block)
        assert invocation.redefined
        assert invocation.block is None
        later = registry.invoke("f")
        assert later.block is block

    def test_redefinition_is_idempotent(self):
        registry = ShimRegistry([_shim("f", ShimBehavior.REDEFINE, redefinable=True)])
        block = object()
        registry.invoke("f", (), block)
        before = registry.snapshot()
        count = registry.redefinitions
        second = registry.invoke("f", (), block)
        assert not second.redefined
        assert registry.redefinitions == count
        assert registry.snapshot() == before

    def test_redefine_requires_block(self):
        registry = ShimRegistry([_shim("f", ShimBehavior.REDEFINE, redefinable=True)])
        with pytest.raises(MissingBlock):
            registry.invoke("f")

    def test_redefinition_bound(self):
        registry = ShimRegistry(
            [_shim("f", ShimBehavior.REDEFINE, redefinable=True)], max_redefinitions=2
        )
        registry.invoke("f", (), object())
        registry.invoke("f", (), object())
        with pytest.raises(ExpansionLimitExceeded):
            registry.invoke("f", (), object())

    def test_redefine_unknown_name(self):
        with pytest.raises(UnresolvedShim):
            ShimRegistry().redefine("ghost", object())

    def test_snapshot_in_slot_order(self):
        registry = ShimRegistry(
            [_shim("int", ShimBehavior.PASS_THROUGH), _shim("char", ShimBehavior.CONSTANT)]
        )
        assert registry.snapshot() == [
            ("int", "pass-through-args"),
            ("char", "constant-value"),
        ]

    def test_contains(self):
        registry = ShimRegistry([_shim("int", ShimBehavior.PASS_THROUGH)])
        assert "int" in registry
        assert "long" not in registry


class TestDeclarationTargets:
    def test_declaration_call(self):
        call = _statements("int p = 1, i = 3")[0]
        assert declaration_targets(call) == ("p", "i")

    def test_plain_call_is_not_a_declaration(self):
        call = _statements("int 1, x = 2")[0]
        assert declaration_targets(call) == ()

    def test_no_arguments(self):
        assert declaration_targets(_statements("int")[0]) == ()
