"""Orchestrator: analyze() entry point."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from .divergence import DivergenceAnalyzer
from .errors import AnalysisError, BothGrammarsFailed, ExecutionError, ExpansionLimitExceeded
from .executors import BaseExecutor, CExecutor, RubyExecutor
from .frontends import CFrontend, CLexer, RubyFrontend, RubyLexer
from .memory import MemorySnapshot, MemoryStore
from .oracle import SyntaxOracle
from .preprocessor import PreprocessResult, Preprocessor
from .run_types import (
    AnalysisConfig,
    AnalysisResult,
    AsymmetricRegion,
    ErrorRecord,
    Fixtures,
    GrammarResult,
)
from .shims import ShimRegistry
from .source import SourceBuffer
from .tokens import Grammar, Token, TokenKind
from .trace_types import ExecutionTrace
from . import constants

logger = logging.getLogger(__name__)

_NON_CODE = (TokenKind.COMMENT, TokenKind.NEWLINE, TokenKind.EOF)


@dataclass
class FrontEndResult:
    """Output of one grammar's lex / preprocess / parse pipeline."""

    grammar: Grammar
    stage: str
    tokens: list[Token] = field(default_factory=list)
    program: Any = None
    preprocessed: PreprocessResult | None = None
    error: AnalysisError | None = None

    @property
    def parsed(self) -> bool:
        return self.program is not None


def front_end_a(buffer: SourceBuffer, fixtures: Fixtures, config: AnalysisConfig) -> FrontEndResult:
    """Lex, preprocess and parse *buffer* as Grammar A.

    ``ExpansionLimitExceeded`` propagates; every other analysis error is
    recorded on the result.
    """
    result = FrontEndResult(grammar=Grammar.A, stage=constants.STAGE_LEX)
    try:
        raw = CLexer(buffer).tokenize()
        result.tokens = raw
        result.stage = constants.STAGE_PREPROCESS
        result.preprocessed = Preprocessor(
            buffer,
            fixtures.macros,
            config.max_expansion_passes,
            config.max_expansion_tokens,
        ).run(raw)
        result.stage = constants.STAGE_PARSE
        result.program = CFrontend().lower(result.preprocessed.tokens)
    except ExpansionLimitExceeded:
        raise
    except AnalysisError as exc:
        logger.info("Grammar A stopped at %s: %s", result.stage, exc.message)
        result.error = exc
    return result


def front_end_b(buffer: SourceBuffer, fixtures: Fixtures, config: AnalysisConfig) -> FrontEndResult:
    """Lex and parse *buffer* as Grammar B."""
    result = FrontEndResult(grammar=Grammar.B, stage=constants.STAGE_LEX)
    try:
        result.tokens = RubyLexer(buffer).tokenize()
        result.stage = constants.STAGE_PARSE
        result.program = RubyFrontend(buffer).lower()
    except AnalysisError as exc:
        logger.info("Grammar B stopped at %s: %s", result.stage, exc.message)
        result.error = exc
    return result


def _run_front_ends(
    buffer: SourceBuffer, fixtures: Fixtures, config: AnalysisConfig
) -> tuple[FrontEndResult, FrontEndResult]:
    if not config.parallel_frontends:
        return front_end_a(buffer, fixtures, config), front_end_b(buffer, fixtures, config)
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="frontend") as pool:
        future_a = pool.submit(front_end_a, buffer, fixtures, config)
        future_b = pool.submit(front_end_b, buffer, fixtures, config)
        return future_a.result(), future_b.result()


def asymmetric_regions(
    buffer: SourceBuffer, front_a: FrontEndResult, front_b: FrontEndResult
) -> list[AsymmetricRegion]:
    """Regions inert for Grammar A that hold live Grammar-B tokens."""
    if front_a.preprocessed is None or front_b.error is not None:
        return []
    live_b = [t for t in front_b.tokens if t.kind not in _NON_CODE]
    regions = []
    for region in front_a.preprocessed.inert_regions:
        if any(region.span.overlaps(t.span) for t in live_b):
            regions.append(
                AsymmetricRegion(
                    span=region.span,
                    kind=region.kind,
                    location=f"{buffer.name}:{buffer.describe(region.span)}",
                    text=buffer.slice(region.span),
                )
            )
    return regions


def _execute(
    executor: BaseExecutor, program: Any
) -> tuple[ExecutionTrace, ExecutionError | None]:
    """Run *program*, keeping the partial trace when execution fails."""
    try:
        return executor.run(program), None
    except ExecutionError as exc:
        logger.info("%s execution failed: %s", executor.GRAMMAR.label, exc.message)
        return executor.trace(), exc
    except RecursionError:
        exc = ExecutionError("stack level too deep", program.span, executor.GRAMMAR)
        logger.info("%s execution failed: %s", executor.GRAMMAR.label, exc.message)
        return executor.trace(), exc


def _grammar_result(
    buffer: SourceBuffer,
    front: FrontEndResult,
    trace: ExecutionTrace | None,
    memory: MemorySnapshot | None,
    error: AnalysisError | None,
) -> GrammarResult:
    if error is None:
        stage = constants.STAGE_COMPLETE
    elif front.parsed:
        stage = constants.STAGE_EXECUTE
    else:
        stage = front.stage
    return GrammarResult(
        grammar=front.grammar,
        stage=stage,
        error=ErrorRecord.from_error(error, buffer) if error is not None else None,
        trace=trace,
        memory=memory,
    )


def analyze(
    source: str | SourceBuffer,
    fixtures: Fixtures | None = None,
    config: AnalysisConfig = AnalysisConfig(),
) -> AnalysisResult:
    """Run both grammar pipelines over *source* and compare their executions.

    Grammar A runs to completion first; the memory store is snapshotted and
    reset before Grammar B runs against it.  Raises ``ExpansionLimitExceeded``
    when macro expansion or shim redefinition does not settle.
    """
    buffer = source if isinstance(source, SourceBuffer) else SourceBuffer(source)
    fixtures = fixtures or Fixtures()
    logger.info("Analyzing %s (%d characters)", buffer.name, len(buffer))
    pipeline_start = time.perf_counter()

    front_a, front_b = _run_front_ends(buffer, fixtures, config)
    logger.info("Front ends finished in %.3fs", time.perf_counter() - pipeline_start)

    store = MemoryStore(fixtures.cells)
    registry = ShimRegistry(fixtures.shims, config.max_shim_redefinitions)
    trace_a = trace_b = None
    memory_a = memory_b = None
    error_a, error_b = front_a.error, front_b.error

    t0 = time.perf_counter()
    if front_a.parsed:
        executor_a = CExecutor(
            store, fixtures.program_name, fixtures.program_args, config.max_steps
        )
        trace_a, error_a = _execute(executor_a, front_a.program)
        memory_a = store.snapshot()
    store.reset()
    if front_b.parsed:
        executor_b = RubyExecutor(
            store, registry, fixtures.program_name, fixtures.program_args, config.max_steps
        )
        trace_b, error_b = _execute(executor_b, front_b.program)
        memory_b = store.snapshot()
    logger.info("Execution finished in %.3fs", time.perf_counter() - t0)

    analyzer = DivergenceAnalyzer(buffer)
    errors = tuple(e for e in (error_a, error_b) if e is not None)
    if trace_a is not None and trace_b is not None:
        report = analyzer.analyze(trace_a, trace_b, memory_a, memory_b, errors)
    else:
        report = analyzer.report([analyzer.error_entry(e) for e in errors])

    failure = None
    outcome = constants.OUTCOME_ANALYZED
    if not front_a.parsed and not front_b.parsed:
        outcome = constants.OUTCOME_BOTH_FAILED
        failure = BothGrammarsFailed(front_a.error, front_b.error)

    notes = []
    if config.syntax_oracle:
        tokens_a = front_a.preprocessed.tokens if front_a.preprocessed is not None else None
        notes = SyntaxOracle().check(buffer, tokens_a)

    result = AnalysisResult(
        source_name=buffer.name,
        outcome=outcome,
        grammar_a=_grammar_result(buffer, front_a, trace_a, memory_a, error_a),
        grammar_b=_grammar_result(buffer, front_b, trace_b, memory_b, error_b),
        report=report,
        asymmetric_regions=asymmetric_regions(buffer, front_a, front_b),
        oracle_notes=notes,
        shims=registry.snapshot(),
    )
    result._failure = failure
    logger.info(
        "Analysis of %s finished in %.3fs: %s",
        buffer.name,
        time.perf_counter() - pipeline_start,
        report.verdict.value,
    )
    return result
