"""Tests for the polyglot-analyzer command line."""

import json
import shutil
from pathlib import Path

import pytest

from polyglot_analyzer.cli import EXIT_INVALID, EXIT_VALID, main

POLYGLOTS = Path(__file__).parent / "polyglots"

PRELUDE = (
    "#include <stdio.h>\n"
    "#define end ;\n"
    "def int(*args); args; end\n"
    "def main(*args); yield; end\n"
)


def _copy(tmp_path: Path, name: str) -> str:
    target = tmp_path / name
    shutil.copy(POLYGLOTS / name, target)
    return str(target)


class TestAnalysis:
    def test_valid_polyglot(self, tmp_path, capsys):
        path = _copy(tmp_path, "primes.rb")
        assert main([path, "--arg", "7"]) == EXIT_VALID
        out = capsys.readouterr().out
        assert "output: 'prime\\n'" in out
        assert out.rstrip().splitlines()[-1].startswith("verdict: equivalent")

    def test_invalid_polyglot(self, tmp_path, capsys):
        path = _copy(tmp_path, "unbraced_if.rb")
        assert main([path]) == EXIT_INVALID
        out = capsys.readouterr().out
        assert "only Grammar A printed 'two\\n'" in out
        assert "verdict: violation" in out

    def test_json(self, tmp_path, capsys):
        path = _copy(tmp_path, "primes.rb")
        assert main([path, "-a", "9", "--json", "--sequential"]) == EXIT_VALID
        data = json.loads(capsys.readouterr().out)
        assert data["outcome"] == "analyzed"
        assert data["report"]["verdict"] == "equivalent"
        assert data["source_name"] == path

    def test_trace(self, tmp_path, capsys):
        path = _copy(tmp_path, "ruby_only_line.rb")
        main([path, "--trace"])
        out = capsys.readouterr().out
        assert "output" in out
        assert "'ruby only\\n'" in out
        assert "Asymmetric regions" in out

    def test_prelude_file(self, tmp_path, capsys):
        source = tmp_path / "hello.c"
        source.write_text('int main() {\n  puts("hi");\n}', encoding="utf-8")
        prelude = tmp_path / "prelude.rb"
        prelude.write_text(PRELUDE, encoding="utf-8")
        assert main([str(source), "--prelude", str(prelude)]) == EXIT_VALID
        assert "verdict: equivalent" in capsys.readouterr().out


class TestInspection:
    def test_tokens(self, tmp_path, capsys):
        source = tmp_path / "m.c"
        source.write_text("#define N 3\nint x = N;", encoding="utf-8")
        assert main([str(source), "--tokens", "A"]) == EXIT_VALID
        assert "<- N" in capsys.readouterr().out

    def test_ast(self, tmp_path, capsys):
        source = tmp_path / "x.rb"
        source.write_text("x = 1", encoding="utf-8")
        assert main([str(source), "--ast", "B"]) == EXIT_VALID
        assert "Program(" in capsys.readouterr().out

    def test_ast_parse_error(self, tmp_path, capsys):
        source = tmp_path / "bad.c"
        source.write_text("int = ;", encoding="utf-8")
        assert main([str(source), "--ast", "A"]) == EXIT_INVALID
        assert "ParseError at 1:" in capsys.readouterr().err


class TestUsage:
    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit) as info:
            main([str(tmp_path / "absent.rb")])
        assert info.value.code == 2

    def test_bad_grammar_choice(self, tmp_path):
        path = _copy(tmp_path, "primes.rb")
        with pytest.raises(SystemExit):
            main([path, "--tokens", "C"])
