"""Error hierarchy for the analyzer pipelines.

Every error carries the span it concerns and the grammar whose pipeline
raised it, so results can always state *which* side failed and why.
"""

from __future__ import annotations

from .source import NO_SPAN, Span
from .tokens import Grammar


class AnalysisError(Exception):
    """Base class for every analyzer failure."""

    def __init__(
        self,
        message: str,
        span: Span = NO_SPAN,
        grammar: Grammar | None = None,
    ):
        self.message = message
        self.span = span
        self.grammar = grammar
        super().__init__(message)

    @property
    def kind(self) -> str:
        return type(self).__name__


class PreprocessError(AnalysisError):
    """Unterminated comment, conditional or malformed directive (Grammar A)."""


class ParseError(AnalysisError):
    """Token stream rejected by one grammar's parser."""


class ExecutionError(AnalysisError):
    """Runtime fault while simulating one grammar's execution."""


class StepLimitExceeded(ExecutionError):
    pass


class ShimError(ExecutionError):
    """Failure resolving or invoking a Grammar-B shim."""

    def __init__(self, message: str, name: str, span: Span = NO_SPAN):
        self.name = name
        super().__init__(message, span, Grammar.B)


class UnresolvedShim(ShimError):
    def __init__(self, name: str, span: Span = NO_SPAN):
        super().__init__(f"undefined method or shim '{name}'", name, span)


class ArityMismatch(ShimError):
    def __init__(self, name: str, expected: str, given: int, span: Span = NO_SPAN):
        self.expected = expected
        self.given = given
        super().__init__(
            f"wrong number of arguments for '{name}' (given {given}, expected {expected})",
            name,
            span,
        )


class MissingBlock(ShimError):
    def __init__(self, name: str, span: Span = NO_SPAN):
        super().__init__(f"no block given to '{name}'", name, span)


class ExpansionLimitExceeded(AnalysisError):
    """Macro expansion or shim redefinition did not settle within its bound."""


class BothGrammarsFailed(AnalysisError):
    def __init__(self, error_a: AnalysisError, error_b: AnalysisError):
        self.error_a = error_a
        self.error_b = error_b
        super().__init__(
            f"Grammar A: {error_a.kind}: {error_a.message}; "
            f"Grammar B: {error_b.kind}: {error_b.message}"
        )
