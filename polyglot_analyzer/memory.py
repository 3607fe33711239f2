"""Shared execution model: one abstract memory used by both executors."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator

from pydantic import BaseModel

from . import constants
from .source import NO_SPAN, Span
from .tokens import Grammar
from .value_types import normalize_value

logger = logging.getLogger(__name__)


class ScopeKind(str, Enum):
    GLOBAL = "global"
    FUNCTION = "function"
    BLOCK = "block"


@dataclass
class MemoryCell:
    name: str
    value: Any
    scope: ScopeKind
    grammar: Grammar
    span: Span = NO_SPAN
    declared_type: str | None = None
    via_shim: bool = False
    return_channel: bool = False


@dataclass(eq=False)
class Frame:
    """A scope: its own cells plus the lexically enclosing frame."""

    kind: ScopeKind
    name: str
    parent: Frame | None = None
    cells: dict[str, MemoryCell] = field(default_factory=dict)

    def find(self, name: str) -> MemoryCell | None:
        frame: Frame | None = self
        while frame is not None:
            cell = frame.cells.get(name)
            if cell is not None:
                return cell
            frame = frame.parent
        return None


@dataclass(frozen=True)
class CellSpec:
    """A fixture cell present in the global frame before either grammar runs."""

    name: str
    value: Any = 0
    declared_type: str | None = None
    return_channel: bool = False


class CellSnapshot(BaseModel):
    name: str
    value: Any
    scope: ScopeKind
    grammar: Grammar
    span: Span = NO_SPAN
    declared_type: str | None = None
    via_shim: bool = False
    return_channel: bool = False


class MemorySnapshot(BaseModel):
    """Normalized copy of the global frame, cells sorted by name."""

    cells: list[CellSnapshot] = []

    def get(self, name: str) -> CellSnapshot | None:
        return next((c for c in self.cells if c.name == name), None)

    def values(self) -> dict[str, Any]:
        return {c.name: c.value for c in self.cells}


class MemoryStore:
    """Frames with lexical parents over a single shared global namespace."""

    def __init__(self, fixtures: Iterable[CellSpec] = ()):
        self._fixtures = tuple(fixtures)
        self.global_frame: Frame
        self._stack: list[Frame]
        self.reset()

    @property
    def current(self) -> Frame:
        return self._stack[-1]

    @property
    def depth(self) -> int:
        return len(self._stack)

    def reset(self):
        """Drop every frame and cell except the fixture cells."""
        self.global_frame = Frame(ScopeKind.GLOBAL, constants.GLOBAL_FRAME)
        self._stack = [self.global_frame]
        for spec in self._fixtures:
            self.global_frame.cells[spec.name] = MemoryCell(
                name=spec.name,
                value=spec.value,
                scope=ScopeKind.GLOBAL,
                grammar=Grammar.SHARED,
                declared_type=spec.declared_type,
                return_channel=spec.return_channel or spec.name.startswith("$"),
            )
        logger.debug("Memory reset to %d fixture cells", len(self._fixtures))

    @contextmanager
    def frame(
        self, kind: ScopeKind, name: str, parent: Frame | None = None
    ) -> Iterator[Frame]:
        """Push a frame for the duration of the ``with`` body.

        *parent* is the lexical parent (defaults to the current frame); the
        call stack order is independent of it.
        """
        new = Frame(kind, name, parent if parent is not None else self.current)
        self._stack.append(new)
        try:
            yield new
        finally:
            self._stack.pop()

    def declare(
        self,
        name: str,
        value: Any,
        grammar: Grammar,
        span: Span = NO_SPAN,
        declared_type: str | None = None,
        via_shim: bool = False,
        return_channel: bool = False,
        frame: Frame | None = None,
    ) -> MemoryCell:
        target = frame if frame is not None else self.current
        existing = target.cells.get(name)
        if existing is not None and target is self.global_frame:
            # redeclaring a global (or fixture) cell keeps its flags
            existing.value = value
            existing.grammar = grammar
            existing.span = span
            existing.declared_type = declared_type or existing.declared_type
            existing.via_shim = existing.via_shim or via_shim
            return existing
        cell = MemoryCell(
            name=name,
            value=value,
            scope=target.kind,
            grammar=grammar,
            span=span,
            declared_type=declared_type,
            via_shim=via_shim,
            return_channel=return_channel or name.startswith("$"),
        )
        target.cells[name] = cell
        return cell

    def declare_return_channel(
        self, name: str, value: Any = 0, grammar: Grammar = Grammar.SHARED, span: Span = NO_SPAN
    ) -> MemoryCell:
        cell = self.declare(name, value, grammar, span, frame=self.global_frame)
        cell.return_channel = True
        return cell

    def lookup(self, name: str) -> MemoryCell | None:
        return self.current.find(name)

    def assign(
        self,
        name: str,
        value: Any,
        grammar: Grammar,
        span: Span = NO_SPAN,
        via_shim: bool = False,
    ) -> MemoryCell:
        """Write through the lexical chain, creating the cell locally if absent."""
        cell = self.lookup(name)
        if cell is None:
            return self.declare(name, value, grammar, span, via_shim=via_shim)
        cell.value = value
        cell.via_shim = cell.via_shim or via_shim
        return cell

    def snapshot(self) -> MemorySnapshot:
        cells = [
            CellSnapshot(
                name=cell.name,
                value=normalize_value(cell.value),
                scope=cell.scope,
                grammar=cell.grammar,
                span=cell.span,
                declared_type=cell.declared_type,
                via_shim=cell.via_shim,
                return_channel=cell.return_channel,
            )
            for cell in sorted(self.global_frame.cells.values(), key=lambda c: c.name)
        ]
        return MemorySnapshot(cells=cells)
