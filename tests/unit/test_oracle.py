"""Tests for the tree-sitter syntax oracle, using a fake parser factory."""

from types import SimpleNamespace

from polyglot_analyzer.oracle import SyntaxOracle
from polyglot_analyzer.parser import ParserFactory, problem_nodes
from polyglot_analyzer.preprocessor import preprocess
from polyglot_analyzer.source import SourceBuffer, Span
from polyglot_analyzer.tokens import Grammar


class _Node:
    def __init__(self, type, start_byte=0, end_byte=0, children=(), is_missing=False):
        self.type = type
        self.start_byte = start_byte
        self.end_byte = end_byte
        self.children = list(children)
        self.is_missing = is_missing


class _FakeParser:
    def __init__(self, root, seen: list):
        self._root = root
        self._seen = seen

    def parse(self, data: bytes):
        self._seen.append(data)
        return SimpleNamespace(root_node=self._root)


class _FakeFactory(ParserFactory):
    def __init__(self, roots: dict):
        self._roots = roots
        self.languages: list[str] = []
        self.seen: list[bytes] = []

    def get_parser(self, language: str):
        self.languages.append(language)
        return _FakeParser(self._roots.get(language, _Node("program")), self.seen)


class TestProblemNodes:
    def test_collects_error_and_missing_in_order(self):
        error = _Node("ERROR", children=[_Node("ERROR")])
        missing = _Node(";", is_missing=True)
        root = _Node("program", children=[_Node("ok"), error, _Node("expr", children=[missing])])
        assert problem_nodes(root) == [error, missing]

    def test_clean_tree(self):
        assert problem_nodes(_Node("program", children=[_Node("call")])) == []


class TestSyntaxOracle:
    def test_ruby_notes_map_bytes_to_characters(self):
        buffer = SourceBuffer("é = 1")
        root = _Node("program", children=[_Node("ERROR", 3, 4)])
        factory = _FakeFactory({"ruby": root})
        notes = SyntaxOracle(factory).check_ruby(buffer)
        assert len(notes) == 1
        assert notes[0].span == Span(start=2, end=3)
        assert notes[0].grammar == Grammar.B
        assert notes[0].kind == "error"
        assert notes[0].location == "<source>:1:2-1:3"

    def test_c_view_is_the_preprocessed_token_text(self):
        buffer = SourceBuffer("#define N 3\nint x = N;")
        factory = _FakeFactory({})
        SyntaxOracle(factory).check_c(buffer, preprocess(buffer).tokens)
        assert factory.seen == [b"int x = 3 ;"]

    def test_c_error_covers_overlapping_tokens(self):
        source = "int x = ;"
        buffer = SourceBuffer(source)
        root = _Node("translation_unit", children=[_Node("ERROR", 6, 9)])
        notes = SyntaxOracle(_FakeFactory({"c": root})).check_c(buffer, preprocess(buffer).tokens)
        assert notes[0].span == Span(start=6, end=9)
        assert notes[0].grammar == Grammar.A

    def test_c_missing_node_points_at_next_token(self):
        source = "int x = ;"
        buffer = SourceBuffer(source)
        root = _Node("translation_unit", children=[_Node("identifier", 8, 8, is_missing=True)])
        notes = SyntaxOracle(_FakeFactory({"c": root})).check_c(buffer, preprocess(buffer).tokens)
        assert notes[0].kind == "missing"
        assert notes[0].span == Span(start=8, end=9)

    def test_check_without_grammar_a_tokens(self):
        factory = _FakeFactory({})
        assert SyntaxOracle(factory).check(SourceBuffer("puts 1"), None) == []
        assert factory.languages == ["ruby"]

    def test_check_both_views(self):
        buffer = SourceBuffer("int x;")
        factory = _FakeFactory({})
        SyntaxOracle(factory).check(buffer, preprocess(buffer).tokens)
        assert factory.languages == ["ruby", "c"]
