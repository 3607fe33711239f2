"""Named constants: eliminates magic strings across the codebase."""

from __future__ import annotations

# ── limits ───────────────────────────────────────────────────────

MAX_EXPANSION_PASSES = 32
MAX_EXPANSION_TOKENS = 65536
MAX_SHIM_REDEFINITIONS = 1024
MAX_STEPS = 100_000

# ── program entry ────────────────────────────────────────────────

C_ENTRY_FUNCTION = "main"
DEFAULT_PROGRAM_NAME = "a.out"
RUBY_MAIN_FRAME = "<main>"
GLOBAL_FRAME = "<global>"

RUBY_ARGV = "ARGV"
RUBY_PROGRAM_NAME_GLOBALS: tuple[str, ...] = ("$0", "$PROGRAM_NAME")

# ── shims ────────────────────────────────────────────────────────

DEFINE_METHOD = "define_method"

# ── C types ──────────────────────────────────────────────────────

C_TYPE_KEYWORDS: frozenset[str] = frozenset(
    {
        "int",
        "char",
        "void",
        "long",
        "short",
        "unsigned",
        "signed",
        "float",
        "double",
        "_Bool",
    }
)

C_QUALIFIERS: frozenset[str] = frozenset(
    {"const", "volatile", "static", "extern", "register", "inline", "auto"}
)

C_INT_BITS: dict[str, int] = {
    "char": 8,
    "short": 16,
    "int": 32,
    "long": 64,
    "_Bool": 1,
}

# ── preprocessor ─────────────────────────────────────────────────

# Object-like macros seeded by ``#include`` of a known standard header.
STANDARD_HEADER_MACROS: dict[str, dict[str, str]] = {
    "stdio.h": {"NULL": "0", "EOF": "(-1)"},
    "stdlib.h": {"NULL": "0", "EXIT_SUCCESS": "0", "EXIT_FAILURE": "1"},
    "stddef.h": {"NULL": "0"},
    "string.h": {"NULL": "0"},
    "stdbool.h": {"bool": "_Bool", "true": "1", "false": "0"},
}

PREDEFINED_MACROS: dict[str, str] = {
    "__STDC__": "1",
}

# ── report ───────────────────────────────────────────────────────

OUTCOME_ANALYZED = "analyzed"
OUTCOME_BOTH_FAILED = "both-grammars-failed"

STAGE_LEX = "lex"
STAGE_PREPROCESS = "preprocess"
STAGE_PARSE = "parse"
STAGE_EXECUTE = "execute"
STAGE_COMPLETE = "complete"
