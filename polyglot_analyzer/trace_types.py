"""Trace data types: the observable effects of one grammar's execution."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .source import Span
from .tokens import Grammar


class EffectKind(str, Enum):
    OUTPUT = "output"
    BRANCH = "branch"
    SHORT_CIRCUIT = "short-circuit"
    SHIM = "shim"
    RETURN_CHANNEL = "return-channel"


class TraceEffect(BaseModel):
    """A single observable effect.

    ``payload`` is the printed text for output effects, ``"true"``/``"false"``
    for branch decisions, the operator for a short-circuit stop, a
    description for shim events and ``name=value`` for return-channel writes.
    """

    seq: int
    kind: EffectKind
    payload: str
    span: Span
    grammar: Grammar


class ExecutionTrace(BaseModel):
    """Ordered effects of one run plus its step count and exit status."""

    grammar: Grammar
    effects: list[TraceEffect] = []
    steps: int = 0
    exit_status: int | None = None

    def of_kind(self, kind: EffectKind) -> list[TraceEffect]:
        return [e for e in self.effects if e.kind == kind]

    def output_text(self) -> str:
        return "".join(e.payload for e in self.of_kind(EffectKind.OUTPUT))
