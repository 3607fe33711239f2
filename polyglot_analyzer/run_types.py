"""Run pipeline data types (pure data, no business logic)."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, PrivateAttr

from . import constants
from .divergence import DivergenceReport
from .errors import AnalysisError, BothGrammarsFailed
from .memory import CellSpec, MemorySnapshot
from .oracle import OracleNote
from .preprocessor import MacroDefinition
from .shims import ShimDefinition
from .source import SourceBuffer, Span
from .tokens import Grammar
from .trace_types import ExecutionTrace


@dataclass(frozen=True)
class Fixtures:
    """Everything the program expects to exist before it runs."""

    macros: tuple[MacroDefinition, ...] = ()
    shims: tuple[ShimDefinition, ...] = ()
    cells: tuple[CellSpec, ...] = ()
    program_name: str = constants.DEFAULT_PROGRAM_NAME
    program_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisConfig:
    """Groups analysis limits and pipeline switches."""

    max_expansion_passes: int = constants.MAX_EXPANSION_PASSES
    max_expansion_tokens: int = constants.MAX_EXPANSION_TOKENS
    max_shim_redefinitions: int = constants.MAX_SHIM_REDEFINITIONS
    max_steps: int = constants.MAX_STEPS
    parallel_frontends: bool = True
    syntax_oracle: bool = False


class ErrorRecord(BaseModel):
    kind: str
    message: str
    span: Span
    grammar: Grammar | None = None
    location: str = ""

    @classmethod
    def from_error(cls, error: AnalysisError, buffer: SourceBuffer) -> ErrorRecord:
        return cls(
            kind=error.kind,
            message=error.message,
            span=error.span,
            grammar=error.grammar,
            location=f"{buffer.name}:{buffer.describe(error.span)}",
        )


class GrammarResult(BaseModel):
    """How far one grammar's pipeline got and what it observed."""

    grammar: Grammar
    stage: str
    error: ErrorRecord | None = None
    trace: ExecutionTrace | None = None
    memory: MemorySnapshot | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def executed(self) -> bool:
        return self.trace is not None


class AsymmetricRegion(BaseModel):
    """Code inert for Grammar A (comment, directive, skipped group) but live for B."""

    span: Span
    kind: str
    location: str
    text: str


class AnalysisResult(BaseModel):
    source_name: str
    outcome: str
    grammar_a: GrammarResult
    grammar_b: GrammarResult
    report: DivergenceReport
    asymmetric_regions: list[AsymmetricRegion] = []
    oracle_notes: list[OracleNote] = []
    shims: list[tuple[str, str]] = []

    _failure: BothGrammarsFailed | None = PrivateAttr(default=None)

    @property
    def is_valid_polyglot(self) -> bool:
        return self.outcome == constants.OUTCOME_ANALYZED and self.report.is_valid_polyglot

    def raise_for_failure(self):
        """Raise BothGrammarsFailed when neither grammar got past its front end."""
        if self._failure is not None:
            raise self._failure
