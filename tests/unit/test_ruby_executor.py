"""Tests for the Grammar-B executor (Ruby semantics, shims, blocks)."""

import pytest

from polyglot_analyzer.errors import (
    ArityMismatch,
    ExecutionError,
    MissingBlock,
    StepLimitExceeded,
    UnresolvedShim,
)
from polyglot_analyzer.executors import RubyExecutor
from polyglot_analyzer.frontends import RubyFrontend
from polyglot_analyzer.memory import CellSpec, MemoryStore
from polyglot_analyzer.shims import ShimRegistry
from polyglot_analyzer.source import SourceBuffer
from polyglot_analyzer.tokens import Grammar
from polyglot_analyzer.trace_types import EffectKind

_PRELUDE = (
    "def int(*args); args; end\n"
    "def char; 0; end\n"
    "def main(*args); yield; end\n"
)


def _executor(source: str, args=(), fixtures=(), max_steps: int = 100_000):
    buffer = SourceBuffer(source)
    program = RubyFrontend(buffer).lower()
    executor = RubyExecutor(
        MemoryStore(fixtures), ShimRegistry(), program_args=tuple(args), max_steps=max_steps
    )
    return executor, program


def _run(source: str, **kwargs):
    executor, program = _executor(source, **kwargs)
    return executor.run(program)


def _output(source: str, **kwargs) -> str:
    return _run(source, **kwargs).output_text()


def _shim_payloads(trace) -> list[str]:
    return [e.payload for e in trace.of_kind(EffectKind.SHIM)]


class TestKernel:
    def test_puts(self):
        trace = _run('puts "hi"')
        assert trace.output_text() == "hi\n"
        assert trace.grammar == Grammar.B
        assert trace.exit_status == 0

    def test_puts_without_args_and_with_array(self):
        assert _output("puts") == "\n"
        assert _output("puts [1, 2]") == "1\n2\n"

    def test_p_and_printf(self):
        assert _output('p "a"') == '"a"\n'
        assert _output('printf("%d\\n", 5)') == "5\n"

    def test_interpolation(self):
        assert _output('x = 2\nputs "x=#{x}"') == "x=2\n"

    def test_argv_and_program_name(self):
        assert _output("puts ARGV[0].to_i + 1", args=("7",)) == "8\n"
        assert _output("puts $0") == "a.out\n"

    def test_exit(self):
        trace = _run("exit 2\nputs 1")
        assert trace.exit_status == 2
        assert trace.output_text() == ""


class TestRubySemantics:
    def test_zero_is_truthy(self):
        assert _output('puts "yes" if 0') == "yes\n"

    def test_integer_division_floors(self):
        assert _output("puts(-7 / 2)\nputs(-7 % 2)") == "-4\n1\n"

    def test_division_by_zero(self):
        with pytest.raises(ExecutionError, match="divided by 0") as info:
            _run("x = 1 / 0")
        assert info.value.grammar == Grammar.B

    def test_and_returns_right_operand(self):
        source = "p = 7\ni = 3\nr = p % i != 0 && (i = i + 1)\nputs i, r"
        trace = _run(source)
        assert trace.output_text() == "4\n4\n"
        assert trace.of_kind(EffectKind.SHORT_CIRCUIT) == []

    def test_short_circuit(self):
        source = "p = 9\ni = 3\nr = p % i != 0 && (i = i + 1)\nputs i, r"
        trace = _run(source)
        assert trace.output_text() == "3\nfalse\n"
        assert trace.of_kind(EffectKind.SHORT_CIRCUIT)[0].payload == "&&"

    def test_while_and_until_branches(self):
        for source in ("i = 0\nwhile i < 2\ni += 1\nend", "i = 0\nuntil i == 2\ni += 1\nend"):
            payloads = [e.payload for e in _run(source).of_kind(EffectKind.BRANCH)]
            assert payloads == ["true", "true", "false"]

    def test_constants(self):
        assert _output("LIMIT = 5\nputs LIMIT") == "5\n"
        with pytest.raises(ExecutionError, match="uninitialized constant"):
            _run("puts MISSING")

    def test_return_channel_global(self):
        trace = _run("$ret = 10")
        assert trace.of_kind(EffectKind.RETURN_CHANNEL)[0].payload == "$ret=10"

    def test_fixture_read_from_method_body(self):
        source = "def show\nputs limit\nend\nshow"
        assert _output(source, fixtures=(CellSpec("limit", 3),)) == "3\n"

    def test_unknown_method(self):
        with pytest.raises(UnresolvedShim, match="frobnicate"):
            _run("frobnicate")

    def test_break_outside_block(self):
        with pytest.raises(ExecutionError, match="Invalid break"):
            _run("break")

    def test_step_limit(self):
        with pytest.raises(StepLimitExceeded):
            _run("while true\nend", max_steps=50)


class TestIntegerConversions:
    def test_negative_shift_count_reverses_direction(self):
        assert _output("puts 1 << -1\nputs 8 >> -1") == "0\n16\n"

    def test_integer_bit_reference(self):
        assert _output("puts 5[0], 5[1], 5[-1]") == "1\n0\n0\n"

    def test_integer_bit_reference_rejects_strings(self):
        with pytest.raises(ExecutionError, match="no implicit conversion of String into Integer") as info:
            _run("5['a']")
        assert info.value.grammar == Grammar.B

    def test_string_repeat_truncates_float_count(self):
        assert _output("puts 'a' * 2.5") == "aa\n"

    def test_string_repeat_rejects_negative_count(self):
        with pytest.raises(ExecutionError, match="negative argument"):
            _run("'a' * -1")

    def test_array_times_string_joins(self):
        assert _output("puts([1, 2] * 'x')") == "1x2\n"

    def test_array_times_integer_repeats(self):
        assert _output("p([1] * 2)") == "[1, 1]\n"

    def test_float_index_truncates(self):
        assert _output("x = [0, 0, 0]\nx[1.5] = 2\np x\nputs x[1.9]") == "[0, 2, 0]\n2\n"

    def test_index_rejects_nil(self):
        with pytest.raises(ExecutionError, match="no implicit conversion from nil to integer"):
            _run("x = [1]\nx[nil]")


class TestShimsAndBlocks:
    def test_c_main_reads_as_yielding_shim(self):
        trace = _run(_PRELUDE + 'int main() { puts "ran" }')
        assert trace.output_text() == "ran\n"
        assert _shim_payloads(trace) == [
            "declare int as pass-through-args",
            "declare char as constant-value",
            "declare main as yield-to-block",
            "yield main",
        ]

    def test_pass_through_and_constant(self):
        assert _output(_PRELUDE + "p int(1, 2)\np char") == "[1, 2]\n0\n"

    def test_declaration_call_marks_cells(self):
        executor, program = _executor(_PRELUDE + "int $x = 5")
        executor.run(program)
        cell = executor.store.snapshot().get("$x")
        assert cell.value == 5
        assert cell.via_shim

    def test_shim_arity(self):
        with pytest.raises(ArityMismatch):
            _run(_PRELUDE + "char(1)")

    def test_yield_shim_without_block(self):
        with pytest.raises(MissingBlock):
            _run(_PRELUDE + "main()")

    def test_implicit_redefinition(self):
        trace = _run('helper() { puts "in helper" }\nhelper()\nhelper()')
        assert trace.output_text() == "in helper\nin helper\n"
        assert _shim_payloads(trace) == ["redefine helper", "yield helper", "yield helper"]

    def test_redefinition_with_same_block_is_a_no_op(self):
        source = "i = 0\nwhile i < 2\nhelper() { 1 }\ni += 1\nend"
        executor, program = _executor(source)
        trace = executor.run(program)
        assert _shim_payloads(trace) == ["redefine helper"]
        assert executor.registry.redefinitions == 1

    def test_define_method(self):
        trace = _run('define_method(:greet) { puts "hello" }\ngreet')
        assert trace.output_text() == "hello\n"
        assert _shim_payloads(trace)[0] == "redefine greet"

    def test_method_body_with_block(self):
        source = "def twice\nyield\nyield\nend\ntwice { puts 1 }"
        assert _output(source) == "1\n1\n"

    def test_method_body_arguments(self):
        assert _output("def add(a, b)\na + b\nend\nputs add(1, 2)") == "3\n"

    def test_break_from_block(self):
        assert _output('loop { break }\nputs "after"') == "after\n"

    def test_char_double_pointer_parameter(self):
        # char ** argv evaluates to 0; either call may receive it
        source = _PRELUDE + 'argc = 1; argv = 1\nint main(int argc, char ** argv) { puts "ran" }'
        trace = _run(source)
        assert trace.output_text() == "ran\n"
        assert "yield main" in _shim_payloads(trace)
