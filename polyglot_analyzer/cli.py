"""Command-line entry point: ``polyglot-analyzer FILE``."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

from . import constants
from .api import dump_ast, dump_tokens, load_prelude
from .errors import AnalysisError, ExpansionLimitExceeded
from .run import analyze
from .run_types import AnalysisConfig, AnalysisResult, Fixtures, GrammarResult
from .source import SourceBuffer

logger = logging.getLogger(__name__)

EXIT_VALID = 0
EXIT_INVALID = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polyglot-analyzer",
        description="Check that a C/Ruby polyglot behaves the same under both languages",
    )
    parser.add_argument("file", help="Polyglot source file")
    parser.add_argument("--prelude", "-p", default=None,
                        help="Prelude file whose #defines and defs become fixtures")
    parser.add_argument("--arg", "-a", action="append", default=[], dest="program_args",
                        help="Program argument (repeatable)")
    parser.add_argument("--program-name", default=constants.DEFAULT_PROGRAM_NAME,
                        help="argv[0] / $0 (default: %(default)s)")
    parser.add_argument("--json", action="store_true",
                        help="Print the full analysis result as JSON")
    parser.add_argument("--trace", action="store_true",
                        help="Print both execution traces")
    parser.add_argument("--tokens", choices=["A", "B"], default=None,
                        help="Only print one grammar's token stream")
    parser.add_argument("--ast", choices=["A", "B"], default=None,
                        help="Only print one grammar's AST")
    parser.add_argument("--oracle", action="store_true",
                        help="Cross-check both views with tree-sitter")
    parser.add_argument("--max-steps", "-n", type=int, default=constants.MAX_STEPS,
                        help="Step budget per grammar (default: %(default)s)")
    parser.add_argument("--sequential", action="store_true",
                        help="Run the two front ends on the calling thread")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log pipeline progress to stderr")
    return parser


def _read(parser: argparse.ArgumentParser, path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        parser.error(f"cannot read {path}: {exc.strerror}")


def _print_grammar(result: GrammarResult, show_trace: bool):
    print(f"  {result.grammar.label}: {result.stage}")
    if result.error is not None:
        print(f"    {result.error.kind} at {result.error.location}: {result.error.message}")
    if result.trace is None:
        return
    print(f"    output: {result.trace.output_text()!r}")
    print(f"    steps: {result.trace.steps}, exit status: {result.trace.exit_status}")
    if show_trace:
        for effect in result.trace.effects:
            print(f"    [{effect.seq:>4}] {effect.kind.value:<14} {effect.span}  {effect.payload!r}")


def print_result(result: AnalysisResult, show_trace: bool = False):
    print("═══ Grammars ═══")
    _print_grammar(result.grammar_a, show_trace)
    _print_grammar(result.grammar_b, show_trace)
    if result.asymmetric_regions:
        print("\n═══ Asymmetric regions ═══")
        for region in result.asymmetric_regions:
            print(f"  {region.location:<24} {region.kind:<14} {region.text.strip()!r}")
    if result.oracle_notes:
        print("\n═══ Oracle ═══")
        for note in result.oracle_notes:
            print(f"  {note.location:<24} {note.grammar.label}: {note.kind} ({note.node_type})")
    print("\n═══ Divergences ═══")
    for entry in result.report.entries:
        print(f"  {entry.location:<24} {entry.classification.value:<18} {entry.explanation}")
    print(f"\n{result.report.summary()}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
            stream=sys.stderr,
        )

    buffer = SourceBuffer(_read(parser, args.file), name=args.file)
    fixtures = Fixtures()
    if args.prelude:
        fixtures = load_prelude(_read(parser, args.prelude), name=args.prelude)
    fixtures = dataclasses.replace(
        fixtures, program_name=args.program_name, program_args=tuple(args.program_args)
    )

    try:
        if args.tokens:
            print(dump_tokens(buffer, args.tokens, fixtures))
            return EXIT_VALID
        if args.ast:
            print(dump_ast(buffer, args.ast, fixtures))
            return EXIT_VALID
    except AnalysisError as exc:
        print(f"{exc.kind} at {buffer.describe(exc.span)}: {exc.message}", file=sys.stderr)
        return EXIT_INVALID

    config = AnalysisConfig(
        max_steps=args.max_steps,
        parallel_frontends=not args.sequential,
        syntax_oracle=args.oracle,
    )
    try:
        result = analyze(buffer, fixtures, config)
    except ExpansionLimitExceeded as exc:
        print(f"{exc.kind} at {buffer.describe(exc.span)}: {exc.message}", file=sys.stderr)
        return EXIT_INVALID

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print_result(result, show_trace=args.trace)
    return EXIT_VALID if result.is_valid_polyglot else EXIT_INVALID
