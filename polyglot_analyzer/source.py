"""Source buffer and spans: the single ground truth every artifact points into."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from functools import cached_property

from pydantic import BaseModel, ConfigDict


class Span(BaseModel):
    """Half-open character range ``[start, end)`` into a SourceBuffer."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    def is_unknown(self) -> bool:
        return self.start < 0

    def cover(self, other: Span) -> Span:
        if self.is_unknown():
            return other
        if other.is_unknown():
            return self
        return Span(start=min(self.start, other.start), end=max(self.end, other.end))

    def contains(self, other: Span) -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: Span) -> bool:
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        if self.is_unknown():
            return "<unknown>"
        return f"{self.start}-{self.end}"


NO_SPAN = Span(start=-1, end=-1)


@dataclass(frozen=True)
class SourceBuffer:
    """Immutable source text shared by both grammar pipelines."""

    text: str
    name: str = "<source>"

    @cached_property
    def _line_starts(self) -> list[int]:
        starts = [0]
        for i, ch in enumerate(self.text):
            if ch == "\n":
                starts.append(i + 1)
        return starts

    @cached_property
    def _byte_prefix(self) -> list[int]:
        prefix = [0]
        total = 0
        for ch in self.text:
            total += len(ch.encode("utf-8"))
            prefix.append(total)
        return prefix

    def __len__(self) -> int:
        return len(self.text)

    def slice(self, span: Span) -> str:
        if span.is_unknown():
            return ""
        return self.text[span.start : span.end]

    def line_col(self, offset: int) -> tuple[int, int]:
        """Return the 1-based line and 0-based column of *offset*."""
        line_idx = bisect.bisect_right(self._line_starts, offset) - 1
        return line_idx + 1, offset - self._line_starts[line_idx]

    def describe(self, span: Span) -> str:
        if span.is_unknown():
            return "<unknown>"
        sl, sc = self.line_col(span.start)
        el, ec = self.line_col(span.end)
        return f"{sl}:{sc}-{el}:{ec}"

    def byte_offset(self, offset: int) -> int:
        return self._byte_prefix[min(max(offset, 0), len(self.text))]

    def char_offset(self, byte_offset: int) -> int:
        """Inverse of :meth:`byte_offset` (rounds down inside a multi-byte char)."""
        return bisect.bisect_right(self._byte_prefix, byte_offset) - 1

    def line_text(self, line: int) -> str:
        start = self._line_starts[line - 1]
        end = self.text.find("\n", start)
        return self.text[start:] if end < 0 else self.text[start:end]
