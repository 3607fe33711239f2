"""Shared executor machinery: step budget, effect recording, control signals."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from .. import constants
from ..errors import StepLimitExceeded
from ..memory import MemoryCell, MemoryStore
from ..source import Span
from ..tokens import Grammar
from ..trace_types import EffectKind, ExecutionTrace, TraceEffect
from ..value_types import normalize_value

logger = logging.getLogger(__name__)


class ControlSignal(Exception):
    """Non-error unwinding (return, break, continue/next)."""

    def __init__(self, value: Any = None, span: Span | None = None):
        self.value = value
        self.span = span
        super().__init__()


class ReturnSignal(ControlSignal):
    pass


class BreakSignal(ControlSignal):
    pass


class NextSignal(ControlSignal):
    """``continue`` in Grammar A, ``next`` in Grammar B."""


class BaseExecutor(ABC):
    """Walks one grammar's AST against the shared memory store."""

    GRAMMAR: Grammar = Grammar.SHARED

    def __init__(self, store: MemoryStore, max_steps: int = constants.MAX_STEPS):
        self.store = store
        self._max_steps = max_steps
        self._steps = 0
        self._effects: list[TraceEffect] = []
        self._exit_status: int | None = None

    # ── bookkeeping ──────────────────────────────────────────────

    @property
    def steps(self) -> int:
        return self._steps

    def tick(self, span: Span):
        self._steps += 1
        if self._steps > self._max_steps:
            raise StepLimitExceeded(
                f"execution exceeded {self._max_steps} steps", span, self.GRAMMAR
            )

    def emit(self, kind: EffectKind, payload: str, span: Span):
        self._effects.append(
            TraceEffect(
                seq=len(self._effects),
                kind=kind,
                payload=payload,
                span=span,
                grammar=self.GRAMMAR,
            )
        )

    def emit_output(self, text: str, span: Span):
        if text:
            self.emit(EffectKind.OUTPUT, text, span)

    def emit_branch(self, taken: bool, span: Span):
        self.emit(EffectKind.BRANCH, "true" if taken else "false", span)

    def emit_short_circuit(self, op: str, span: Span):
        self.emit(EffectKind.SHORT_CIRCUIT, op, span)

    def after_write(self, cell: MemoryCell, span: Span):
        if cell.return_channel:
            self.emit(
                EffectKind.RETURN_CHANNEL,
                f"{cell.name}={normalize_value(cell.value)}",
                span,
            )

    def trace(self) -> ExecutionTrace:
        return ExecutionTrace(
            grammar=self.GRAMMAR,
            effects=list(self._effects),
            steps=self._steps,
            exit_status=self._exit_status,
        )

    @abstractmethod
    def run(self, program) -> ExecutionTrace:
        """Execute *program* to completion and return its trace."""
        ...
