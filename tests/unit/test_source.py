"""Tests for spans and the shared source buffer."""

from polyglot_analyzer.source import NO_SPAN, SourceBuffer, Span


def _span(start: int, end: int) -> Span:
    return Span(start=start, end=end)


class TestSpan:
    def test_cover_takes_outer_bounds(self):
        assert _span(4, 6).cover(_span(1, 3)) == _span(1, 6)

    def test_cover_ignores_unknown(self):
        assert NO_SPAN.cover(_span(2, 5)) == _span(2, 5)
        assert _span(2, 5).cover(NO_SPAN) == _span(2, 5)

    def test_contains(self):
        assert _span(0, 10).contains(_span(3, 7))
        assert not _span(3, 7).contains(_span(0, 10))

    def test_overlaps_is_half_open(self):
        assert _span(0, 5).overlaps(_span(4, 8))
        assert not _span(0, 5).overlaps(_span(5, 8))

    def test_str(self):
        assert str(_span(3, 9)) == "3-9"
        assert str(NO_SPAN) == "<unknown>"

    def test_spans_are_hashable_and_frozen(self):
        assert len({_span(1, 2), _span(1, 2)}) == 1


class TestSourceBuffer:
    TEXT = "int x;\n  puts x\n"

    def test_line_col_is_one_based_line_zero_based_column(self):
        buffer = SourceBuffer(self.TEXT)
        assert buffer.line_col(0) == (1, 0)
        assert buffer.line_col(9) == (2, 2)

    def test_describe(self):
        buffer = SourceBuffer(self.TEXT)
        assert buffer.describe(_span(9, 13)) == "2:2-2:6"
        assert buffer.describe(NO_SPAN) == "<unknown>"

    def test_slice(self):
        buffer = SourceBuffer(self.TEXT)
        assert buffer.slice(_span(0, 3)) == "int"
        assert buffer.slice(NO_SPAN) == ""

    def test_line_text(self):
        buffer = SourceBuffer(self.TEXT)
        assert buffer.line_text(2) == "  puts x"

    def test_byte_and_char_offsets_round_trip_over_multibyte(self):
        buffer = SourceBuffer('s = "é!"')
        assert buffer.byte_offset(6) == 7
        assert buffer.char_offset(7) == 6
        assert buffer.char_offset(buffer.byte_offset(len(buffer))) == len(buffer)

    def test_default_name(self):
        assert SourceBuffer("").name == "<source>"
