"""Tests for the shared memory store and runtime value conversions."""

from polyglot_analyzer.memory import CellSpec, MemoryStore, ScopeKind
from polyglot_analyzer.tokens import Grammar
from polyglot_analyzer.value_types import (
    CArray,
    Pointer,
    RubyRange,
    RubySymbol,
    normalize_value,
    read_c_string,
    ruby_inspect,
    ruby_to_s,
    ruby_truthy,
)


class TestMemoryStore:
    def test_declare_in_global_frame(self):
        store = MemoryStore()
        store.declare("x", 1, Grammar.A)
        assert store.lookup("x").value == 1
        assert store.lookup("x").scope == ScopeKind.GLOBAL

    def test_frames_shadow_and_pop(self):
        store = MemoryStore()
        store.declare("x", 1, Grammar.A)
        with store.frame(ScopeKind.FUNCTION, "main"):
            store.declare("x", 2, Grammar.A)
            assert store.lookup("x").value == 2
            assert store.depth == 2
        assert store.lookup("x").value == 1
        assert store.depth == 1

    def test_lexical_parent_is_independent_of_call_stack(self):
        store = MemoryStore()
        with store.frame(ScopeKind.FUNCTION, "outer") as outer:
            store.declare("local", 5, Grammar.B)
        with store.frame(ScopeKind.FUNCTION, "caller"):
            store.declare("local", 9, Grammar.B)
            with store.frame(ScopeKind.BLOCK, "block", parent=outer):
                assert store.lookup("local").value == 5

    def test_assign_writes_through_chain(self):
        store = MemoryStore()
        store.declare("count", 0, Grammar.B)
        with store.frame(ScopeKind.BLOCK, "block"):
            store.assign("count", 3, Grammar.B)
        assert store.lookup("count").value == 3

    def test_assign_creates_local_when_absent(self):
        store = MemoryStore()
        with store.frame(ScopeKind.FUNCTION, "f"):
            cell = store.assign("tmp", 1, Grammar.B, via_shim=True)
            assert cell.scope == ScopeKind.FUNCTION
            assert cell.via_shim
        assert store.lookup("tmp") is None

    def test_dollar_names_are_return_channels(self):
        store = MemoryStore()
        assert store.declare("$ret", 0, Grammar.B).return_channel
        assert not store.declare("ret", 0, Grammar.B).return_channel

    def test_fixtures_survive_reset(self):
        store = MemoryStore([CellSpec("$ret", 0), CellSpec("limit", 10, "int")])
        store.assign("$ret", 42, Grammar.A)
        store.declare("other", 1, Grammar.A)
        store.reset()
        assert store.lookup("$ret").value == 0
        assert store.lookup("$ret").return_channel
        assert store.lookup("limit").declared_type == "int"
        assert store.lookup("other") is None

    def test_redeclaring_fixture_keeps_flags(self):
        store = MemoryStore([CellSpec("ret", 0, return_channel=True)])
        cell = store.declare("ret", 7, Grammar.A, declared_type="int")
        assert cell.return_channel
        assert cell.value == 7

    def test_declare_return_channel(self):
        store = MemoryStore()
        with store.frame(ScopeKind.FUNCTION, "main"):
            store.declare_return_channel("result", 3)
        assert store.global_frame.cells["result"].return_channel

    def test_snapshot_is_global_only_sorted_and_normalized(self):
        store = MemoryStore()
        store.declare("b", True, Grammar.B)
        store.declare("a", None, Grammar.B)
        with store.frame(ScopeKind.FUNCTION, "main"):
            store.declare("hidden", 1, Grammar.B)
        snapshot = store.snapshot()
        assert [c.name for c in snapshot.cells] == ["a", "b"]
        assert snapshot.values() == {"a": 0, "b": 1}
        assert snapshot.get("hidden") is None


class TestValueConversions:
    def test_normalize(self):
        assert normalize_value(False) == 0
        assert normalize_value(RubySymbol("x")) == ":x"
        assert normalize_value(RubyRange(1, 3)) == [1, 2, 3]
        assert normalize_value(CArray.from_string("hi")) == [104, 105, 0]

    def test_c_strings(self):
        array = CArray.from_string("hello")
        assert read_c_string(Pointer(array, 1)) == "ello"
        assert read_c_string("literal") == "literal"

    def test_pointer_identity(self):
        array = CArray([1, 2, 3])
        assert Pointer(array, 1) == Pointer(array).offset(1)
        assert Pointer(array, 1) != Pointer(CArray([1, 2, 3]), 1)

    def test_ruby_formatting(self):
        assert ruby_to_s(None) == ""
        assert ruby_to_s(2.0) == "2.0"
        assert ruby_inspect([1, "a", None]) == '[1, "a", nil]'
        assert ruby_inspect(RubyRange(1, 4, exclusive=True)) == "1...4"

    def test_truthiness(self):
        assert ruby_truthy(0)
        assert ruby_truthy("")
        assert not ruby_truthy(None)
        assert not ruby_truthy(False)
