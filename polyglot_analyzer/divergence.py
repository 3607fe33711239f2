"""Divergence analyzer: aligns the two execution traces and classifies differences."""

from __future__ import annotations

import logging
from difflib import SequenceMatcher
from enum import Enum

from pydantic import BaseModel

from .errors import AnalysisError
from .memory import MemorySnapshot
from .source import SourceBuffer, Span
from .tokens import Grammar
from .trace_types import EffectKind, ExecutionTrace, TraceEffect

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    EQUIVALENT = "equivalent"
    BENIGN = "benign divergence"
    VIOLATION = "violation"
    ERROR = "error"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY: dict[Classification, int] = {
    Classification.EQUIVALENT: 0,
    Classification.BENIGN: 1,
    Classification.VIOLATION: 2,
    Classification.ERROR: 3,
}

_DECISION_KINDS = (EffectKind.BRANCH, EffectKind.SHORT_CIRCUIT)


class DivergenceEntry(BaseModel):
    span: Span
    location: str
    classification: Classification
    explanation: str
    grammar: Grammar | None = None


class DivergenceReport(BaseModel):
    entries: list[DivergenceEntry] = []
    verdict: Classification = Classification.EQUIVALENT

    @property
    def is_valid_polyglot(self) -> bool:
        return self.verdict in (Classification.EQUIVALENT, Classification.BENIGN)

    def of_classification(self, classification: Classification) -> list[DivergenceEntry]:
        return [e for e in self.entries if e.classification == classification]

    def summary(self) -> str:
        counts = {c: len(self.of_classification(c)) for c in Classification}
        parts = ", ".join(f"{n} {c.value}" for c, n in counts.items() if n)
        return f"verdict: {self.verdict.value}" + (f" ({parts})" if parts else "")


def worst(classifications) -> Classification:
    return max(classifications, key=lambda c: c.severity, default=Classification.EQUIVALENT)


class DivergenceAnalyzer:
    """Builds a DivergenceReport for one buffer.

    Output effects are aligned with a sequence matcher over their payloads.
    Branch and short-circuit decisions are grouped by the construct they
    belong to, keyed by the construct's start offset with any enclosing
    parentheses removed, because only one of the two ASTs keeps them.
    """

    def __init__(self, buffer: SourceBuffer):
        self._buffer = buffer

    def location(self, span: Span) -> str:
        return f"{self._buffer.name}:{self._buffer.describe(span)}"

    def _entry(
        self,
        span: Span,
        classification: Classification,
        explanation: str,
        grammar: Grammar | None = None,
    ) -> DivergenceEntry:
        return DivergenceEntry(
            span=span,
            location=self.location(span),
            classification=classification,
            explanation=explanation,
            grammar=grammar,
        )

    # ── errors ───────────────────────────────────────────────────

    def error_entry(self, error: AnalysisError) -> DivergenceEntry:
        side = error.grammar.label if error.grammar is not None else "analysis"
        return self._entry(
            error.span,
            Classification.ERROR,
            f"{side} failed: {error.kind}: {error.message}",
            error.grammar,
        )

    # ── outputs ──────────────────────────────────────────────────

    def compare_outputs(self, trace_a: ExecutionTrace, trace_b: ExecutionTrace) -> list[DivergenceEntry]:
        outputs_a = trace_a.of_kind(EffectKind.OUTPUT)
        outputs_b = trace_b.of_kind(EffectKind.OUTPUT)
        matcher = SequenceMatcher(
            a=[e.payload for e in outputs_a],
            b=[e.payload for e in outputs_b],
            autojunk=False,
        )
        entries: list[DivergenceEntry] = []
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag == "equal":
                entries.extend(
                    self._aligned_output(a, b) for a, b in zip(outputs_a[i1:i2], outputs_b[j1:j2])
                )
                continue
            pairs = list(zip(outputs_a[i1:i2], outputs_b[j1:j2]))
            for a, b in pairs:
                entries.append(
                    self._entry(
                        a.span,
                        Classification.VIOLATION,
                        f"Grammar A printed {a.payload!r} where Grammar B printed {b.payload!r}",
                    )
                )
            for a in outputs_a[i1 + len(pairs) : i2]:
                entries.append(
                    self._entry(
                        a.span,
                        Classification.VIOLATION,
                        f"only Grammar A printed {a.payload!r}",
                        Grammar.A,
                    )
                )
            for b in outputs_b[j1 + len(pairs) : j2]:
                entries.append(
                    self._entry(
                        b.span,
                        Classification.VIOLATION,
                        f"only Grammar B printed {b.payload!r}",
                        Grammar.B,
                    )
                )
        logger.debug(
            "Aligned %d Grammar-A and %d Grammar-B output effects", len(outputs_a), len(outputs_b)
        )
        return entries

    def _aligned_output(self, a: TraceEffect, b: TraceEffect) -> DivergenceEntry:
        if a.span == b.span:
            return self._entry(a.span, Classification.EQUIVALENT, f"both printed {a.payload!r}")
        return self._entry(
            a.span,
            Classification.BENIGN,
            f"both printed {a.payload!r} from different constructs "
            f"(Grammar B at {self.location(b.span)})",
        )

    # ── branch and short-circuit decisions ───────────────────────

    def _core_span(self, span: Span) -> Span:
        """*span* with balanced enclosing parentheses and blanks removed."""
        text = self._buffer.text
        start, end = span.start, span.end
        while True:
            while start < end and text[start].isspace():
                start += 1
            while end > start and text[end - 1].isspace():
                end -= 1
            if end - start < 2 or text[start] != "(" or text[end - 1] != ")":
                break
            if not self._wraps(start, end):
                break
            start, end = start + 1, end - 1
        return Span(start=start, end=end)

    def _wraps(self, start: int, end: int) -> bool:
        depth = 0
        for i in range(start, end):
            ch = self._buffer.text[i]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0 and i != end - 1:
                    return False
        return depth == 0

    def _decisions(self, trace: ExecutionTrace) -> dict[int, tuple[Span, list[str]]]:
        groups: dict[int, tuple[Span, list[str]]] = {}
        for effect in trace.effects:
            if effect.kind not in _DECISION_KINDS:
                continue
            key = self._core_span(effect.span).start if not effect.span.is_unknown() else -1
            decision = effect.payload if effect.kind == EffectKind.BRANCH else "short-circuit"
            groups.setdefault(key, (effect.span, []))[1].append(decision)
        return groups

    def compare_decisions(
        self, trace_a: ExecutionTrace, trace_b: ExecutionTrace
    ) -> list[DivergenceEntry]:
        groups_a = self._decisions(trace_a)
        groups_b = self._decisions(trace_b)
        entries = []
        for key in sorted(set(groups_a) | set(groups_b)):
            span_a, seq_a = groups_a.get(key, (None, []))
            span_b, seq_b = groups_b.get(key, (None, []))
            if seq_a == seq_b:
                continue
            span = span_a if span_a is not None else span_b
            entries.append(
                self._entry(
                    span,
                    Classification.BENIGN,
                    f"control decisions differ: Grammar A {_render(seq_a)}, "
                    f"Grammar B {_render(seq_b)}",
                )
            )
        return entries

    # ── memory ───────────────────────────────────────────────────

    def compare_memory(
        self, memory_a: MemorySnapshot, memory_b: MemorySnapshot
    ) -> list[DivergenceEntry]:
        entries = []
        for cell_a in memory_a.cells:
            cell_b = memory_b.get(cell_a.name)
            if cell_b is None or cell_a.value == cell_b.value:
                continue
            span = cell_b.span if cell_a.span.is_unknown() else cell_a.span
            entries.append(
                self._entry(
                    span,
                    Classification.BENIGN,
                    f"global '{cell_a.name}' ends as {cell_a.value!r} under Grammar A "
                    f"and {cell_b.value!r} under Grammar B",
                )
            )
        return entries

    # ── report ───────────────────────────────────────────────────

    def report(self, entries: list[DivergenceEntry]) -> DivergenceReport:
        verdict = worst(e.classification for e in entries)
        logger.info("Divergence verdict: %s (%d entries)", verdict.value, len(entries))
        return DivergenceReport(entries=list(entries), verdict=verdict)

    def analyze(
        self,
        trace_a: ExecutionTrace,
        trace_b: ExecutionTrace,
        memory_a: MemorySnapshot | None = None,
        memory_b: MemorySnapshot | None = None,
        errors: tuple[AnalysisError, ...] = (),
    ) -> DivergenceReport:
        entries = [self.error_entry(e) for e in errors]
        entries.extend(self.compare_outputs(trace_a, trace_b))
        entries.extend(self.compare_decisions(trace_a, trace_b))
        if memory_a is not None and memory_b is not None:
            entries.extend(self.compare_memory(memory_a, memory_b))
        return self.report(entries)


def _render(decisions: list[str]) -> str:
    return "[" + ", ".join(decisions) + "]" if decisions else "never reached it"
