"""Tests for trace alignment and divergence classification."""

from polyglot_analyzer.divergence import Classification, DivergenceAnalyzer, worst
from polyglot_analyzer.errors import ExecutionError
from polyglot_analyzer.memory import MemoryStore
from polyglot_analyzer.source import SourceBuffer, Span
from polyglot_analyzer.tokens import Grammar
from polyglot_analyzer.trace_types import EffectKind, ExecutionTrace, TraceEffect


def _trace(grammar: Grammar, *effects: tuple[EffectKind, str, int, int]) -> ExecutionTrace:
    return ExecutionTrace(
        grammar=grammar,
        effects=[
            TraceEffect(
                seq=i, kind=kind, payload=payload, span=Span(start=start, end=end), grammar=grammar
            )
            for i, (kind, payload, start, end) in enumerate(effects)
        ],
    )


def _out(payload: str, start: int, end: int):
    return (EffectKind.OUTPUT, payload, start, end)


def _analyzer(text: str = "x" * 40, name: str = "poly.rb") -> DivergenceAnalyzer:
    return DivergenceAnalyzer(SourceBuffer(text, name))


class TestOutputAlignment:
    def test_identical_outputs_are_equivalent(self):
        trace_a = _trace(Grammar.A, _out("hi\n", 0, 5))
        trace_b = _trace(Grammar.B, _out("hi\n", 0, 5))
        report = _analyzer().analyze(trace_a, trace_b)
        assert report.verdict == Classification.EQUIVALENT
        assert report.entries[0].explanation == "both printed 'hi\\n'"
        assert report.is_valid_polyglot

    def test_same_text_from_different_constructs_is_benign(self):
        trace_a = _trace(Grammar.A, _out("hi\n", 0, 5))
        trace_b = _trace(Grammar.B, _out("hi\n", 10, 15))
        report = _analyzer().analyze(trace_a, trace_b)
        assert report.verdict == Classification.BENIGN
        assert report.is_valid_polyglot

    def test_extra_output_is_a_violation(self):
        trace_a = _trace(Grammar.A, _out("two\n", 0, 3), _out("done\n", 5, 8))
        trace_b = _trace(Grammar.B, _out("done\n", 5, 8))
        report = _analyzer().analyze(trace_a, trace_b)
        violation = report.of_classification(Classification.VIOLATION)[0]
        assert violation.explanation == "only Grammar A printed 'two\\n'"
        assert violation.grammar == Grammar.A
        assert not report.is_valid_polyglot

    def test_output_only_in_b(self):
        trace_a = _trace(Grammar.A)
        trace_b = _trace(Grammar.B, _out("ruby\n", 2, 4))
        entry = _analyzer().analyze(trace_a, trace_b).entries[0]
        assert entry.explanation == "only Grammar B printed 'ruby\\n'"
        assert entry.grammar == Grammar.B

    def test_different_text_is_a_violation(self):
        trace_a = _trace(Grammar.A, _out("prime\n", 0, 5))
        trace_b = _trace(Grammar.B, _out("not prime\n", 0, 5))
        entry = _analyzer().analyze(trace_a, trace_b).entries[0]
        assert entry.classification == Classification.VIOLATION
        assert "where Grammar B printed 'not prime\\n'" in entry.explanation


class TestDecisions:
    TEXT = "x = (a && b); (a) && (b)"

    def test_parenthesized_constructs_share_a_key(self):
        analyzer = _analyzer(self.TEXT)
        trace_a = _trace(Grammar.A, (EffectKind.SHORT_CIRCUIT, "&&", 4, 12))
        trace_b = _trace(Grammar.B, (EffectKind.SHORT_CIRCUIT, "&&", 5, 11))
        assert analyzer.compare_decisions(trace_a, trace_b) == []

    def test_differing_decisions_are_benign(self):
        analyzer = _analyzer(self.TEXT)
        trace_a = _trace(
            Grammar.A, (EffectKind.BRANCH, "true", 4, 12), (EffectKind.BRANCH, "false", 4, 12)
        )
        trace_b = _trace(Grammar.B, (EffectKind.BRANCH, "true", 5, 11))
        entries = analyzer.compare_decisions(trace_a, trace_b)
        assert len(entries) == 1
        assert entries[0].classification == Classification.BENIGN
        assert entries[0].explanation == (
            "control decisions differ: Grammar A [true, false], Grammar B [true]"
        )

    def test_decision_reached_by_one_grammar_only(self):
        analyzer = _analyzer(self.TEXT)
        trace_a = _trace(Grammar.A, (EffectKind.BRANCH, "true", 0, 3))
        entries = analyzer.compare_decisions(trace_a, _trace(Grammar.B))
        assert "Grammar B never reached it" in entries[0].explanation

    def test_core_span_keeps_unbalanced_parentheses(self):
        analyzer = _analyzer(self.TEXT)
        start = self.TEXT.index("(a) && (b)")
        span = Span(start=start, end=len(self.TEXT))
        assert analyzer._core_span(span) == span
        assert analyzer._core_span(Span(start=4, end=12)) == Span(start=5, end=11)


class TestMemoryAndErrors:
    def test_memory_difference_is_benign(self):
        store_a, store_b = MemoryStore(), MemoryStore()
        store_a.declare("x", 1, Grammar.A, Span(start=0, end=1))
        store_b.declare("x", 2, Grammar.B, Span(start=0, end=1))
        store_a.declare("only_a", 5, Grammar.A)
        entries = _analyzer().compare_memory(store_a.snapshot(), store_b.snapshot())
        assert len(entries) == 1
        assert entries[0].classification == Classification.BENIGN
        assert "'x' ends as 1 under Grammar A and 2 under Grammar B" in entries[0].explanation

    def test_error_entry(self):
        error = ExecutionError("boom", Span(start=0, end=1), Grammar.B)
        report = _analyzer().analyze(_trace(Grammar.A), _trace(Grammar.B), errors=(error,))
        assert report.verdict == Classification.ERROR
        assert report.entries[0].explanation == "Grammar B failed: ExecutionError: boom"

    def test_location(self):
        assert _analyzer("ab\ncd").location(Span(start=3, end=4)) == "poly.rb:2:0-2:1"


class TestVerdict:
    def test_worst(self):
        assert worst([]) == Classification.EQUIVALENT
        assert worst([Classification.BENIGN, Classification.VIOLATION]) == Classification.VIOLATION

    def test_summary(self):
        trace_a = _trace(Grammar.A, _out("a", 0, 1), _out("b", 1, 2))
        trace_b = _trace(Grammar.B, _out("a", 0, 1))
        report = _analyzer().analyze(trace_a, trace_b)
        assert report.summary() == "verdict: violation (1 equivalent, 1 violation)"
