"""Dual-grammar polyglot analyzer package."""

from .run import analyze  # noqa: F401
from .api import (  # noqa: F401
    analyze_source,
    dump_ast,
    dump_tokens,
    load_prelude,
    parse_source,
    tokenize,
)
