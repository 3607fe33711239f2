"""Macro/comment preprocessor: builds the Grammar-A view of a buffer.

A single left-to-right scan over the raw CLexer tokens:

* ``#`` first on a line starts a directive that runs to the next unspliced
  newline; a block comment inside it extends it across lines.
* Comments are skipped verbatim and recorded as inert regions for Grammar A
  only.  Grammar B lexes the same characters on its own terms.
* A macro invocation is substituted once per pass; names produced by a pass
  are expanded by the next pass, bounded by ``max_passes``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from pydantic import BaseModel

from .errors import ExpansionLimitExceeded, PreprocessError
from .frontends.c_lexer import COMMENT_UNTERMINATED, CLexer
from .source import NO_SPAN, SourceBuffer, Span
from .tokens import Grammar, Token, TokenKind
from . import constants

logger = logging.getLogger(__name__)

INERT_BLOCK_COMMENT = "block-comment"
INERT_LINE_COMMENT = "line-comment"
INERT_DIRECTIVE = "directive"
INERT_SKIPPED_GROUP = "skipped-group"

_NAME_KINDS = (TokenKind.IDENT, TokenKind.KEYWORD)


# ── data types ───────────────────────────────────────────────────


@dataclass(frozen=True)
class MacroDefinition:
    name: str
    replacement: tuple[Token, ...] = ()
    params: tuple[str, ...] | None = None
    span: Span = NO_SPAN

    @property
    def is_function_like(self) -> bool:
        return self.params is not None

    @classmethod
    def from_text(
        cls, name: str, replacement: str, params: Iterable[str] | None = None
    ) -> MacroDefinition:
        """Build a definition from replacement text, e.g. for fixtures."""
        buffer = SourceBuffer(replacement, name=f"<macro {name}>")
        tokens = tuple(
            tok
            for tok in CLexer(buffer).tokenize()
            if tok.kind not in (TokenKind.EOF, TokenKind.NEWLINE, TokenKind.COMMENT)
        )
        return cls(
            name=name,
            replacement=tokens,
            params=tuple(params) if params is not None else None,
        )

    def replacement_text(self) -> str:
        return " ".join(tok.text for tok in self.replacement)


class InertRegion(BaseModel):
    """A buffer range that Grammar A never sees as code."""

    span: Span
    kind: str


@dataclass(frozen=True)
class Directive:
    kind: str
    span: Span
    argument: str = ""


@dataclass(frozen=True)
class LineMarker:
    offset: int  # first offset the marker applies to
    line: int
    filename: str = ""


@dataclass(frozen=True)
class SourceMapEntry:
    span: Span
    macro: str = ""


@dataclass
class SourceMap:
    """Maps each Grammar-A output token back to the original buffer."""

    buffer: SourceBuffer
    entries: list[SourceMapEntry] = field(default_factory=list)
    line_markers: list[LineMarker] = field(default_factory=list)

    def original_span(self, index: int) -> Span:
        return self.entries[index].span

    def expanded_from(self, index: int) -> str:
        return self.entries[index].macro

    def presumed_location(self, offset: int) -> tuple[str, int]:
        """Return (filename, line) for *offset*, honouring ``#line`` markers."""
        actual_line, _ = self.buffer.line_col(offset)
        marker = None
        for candidate in self.line_markers:
            if candidate.offset <= offset:
                marker = candidate
        if marker is None:
            return self.buffer.name, actual_line
        marker_line, _ = self.buffer.line_col(marker.offset)
        return (
            marker.filename or self.buffer.name,
            marker.line + (actual_line - marker_line),
        )


@dataclass
class PreprocessResult:
    tokens: list[Token]
    source_map: SourceMap
    inert_regions: list[InertRegion]
    directives: list[Directive]
    macros: dict[str, MacroDefinition]
    expansions: int = 0

    def is_inert(self, offset: int) -> bool:
        return any(r.span.start <= offset < r.span.end for r in self.inert_regions)


@dataclass
class _CondFrame:
    parent_live: bool
    taken: bool
    live: bool
    span: Span
    seen_else: bool = False


# ── #if expression evaluation ────────────────────────────────────


class _ConditionEvaluator:
    """Integer constant-expression evaluator for ``#if`` / ``#elif``."""

    PRECEDENCE: dict[str, int] = {
        "||": 1,
        "&&": 2,
        "|": 3,
        "^": 4,
        "&": 5,
        "==": 6,
        "!=": 6,
        "<": 7,
        ">": 7,
        "<=": 7,
        ">=": 7,
        "<<": 8,
        ">>": 8,
        "+": 9,
        "-": 9,
        "*": 10,
        "/": 10,
        "%": 10,
    }

    def __init__(self, tokens: list[Token], span: Span):
        self._tokens = tokens
        self._pos = 0
        self._span = span

    def evaluate(self) -> int:
        if not self._tokens:
            raise PreprocessError("#if with no expression", self._span, Grammar.A)
        value = self._conditional()
        if self._pos < len(self._tokens):
            raise self._error(f"missing binary operator before '{self._peek().text}'")
        return value

    def _peek(self) -> Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _error(self, message: str) -> PreprocessError:
        return PreprocessError(message, self._span, Grammar.A)

    def _conditional(self) -> int:
        cond = self._binary(1)
        tok = self._peek()
        if tok is not None and tok.is_op("?"):
            self._pos += 1
            then = self._conditional()
            colon = self._peek()
            if colon is None or not colon.is_op(":"):
                raise self._error("expected ':' in #if expression")
            self._pos += 1
            other = self._conditional()
            return then if cond else other
        return cond

    def _binary(self, min_prec: int) -> int:
        left = self._unary()
        while True:
            tok = self._peek()
            if tok is None or tok.kind != TokenKind.OP:
                return left
            prec = self.PRECEDENCE.get(tok.text)
            if prec is None or prec < min_prec:
                return left
            self._pos += 1
            right = self._binary(prec + 1)
            left = self._apply(tok.text, left, right)

    def _apply(self, op: str, a: int, b: int) -> int:
        if op in ("/", "%") and b == 0:
            raise self._error("division by zero in #if")
        if op == "/":
            q = abs(a) // abs(b)
            return q if (a >= 0) == (b >= 0) else -q
        if op == "%":
            return a - b * self._apply("/", a, b)
        table = {
            "||": lambda: int(bool(a) or bool(b)),
            "&&": lambda: int(bool(a) and bool(b)),
            "|": lambda: a | b,
            "^": lambda: a ^ b,
            "&": lambda: a & b,
            "==": lambda: int(a == b),
            "!=": lambda: int(a != b),
            "<": lambda: int(a < b),
            ">": lambda: int(a > b),
            "<=": lambda: int(a <= b),
            ">=": lambda: int(a >= b),
            "<<": lambda: a << b,
            ">>": lambda: a >> b,
            "+": lambda: a + b,
            "-": lambda: a - b,
            "*": lambda: a * b,
        }
        return table[op]()

    def _unary(self) -> int:
        tok = self._peek()
        if tok is None:
            raise self._error("#if expression ends unexpectedly")
        self._pos += 1
        if tok.is_op("!"):
            return int(not self._unary())
        if tok.is_op("-"):
            return -self._unary()
        if tok.is_op("+"):
            return self._unary()
        if tok.is_op("~"):
            return ~self._unary()
        if tok.is_op("("):
            value = self._conditional()
            close = self._peek()
            if close is None or not close.is_op(")"):
                raise self._error("missing ')' in #if expression")
            self._pos += 1
            return value
        if tok.kind in (TokenKind.INT, TokenKind.CHAR):
            return int(tok.value)
        if tok.kind in _NAME_KINDS:
            # identifiers left after macro expansion evaluate to 0
            return 0
        raise self._error(f"token '{tok.text}' is not valid in #if expression")


# ── preprocessor ─────────────────────────────────────────────────


class Preprocessor:
    """Expands directives and macros to produce the Grammar-A token stream."""

    def __init__(
        self,
        buffer: SourceBuffer,
        macros: Iterable[MacroDefinition] = (),
        max_passes: int = constants.MAX_EXPANSION_PASSES,
        max_tokens: int = constants.MAX_EXPANSION_TOKENS,
    ):
        self._buffer = buffer
        self._max_passes = max_passes
        self._max_tokens = max_tokens
        self._macros: dict[str, MacroDefinition] = {
            name: MacroDefinition.from_text(name, text)
            for name, text in constants.PREDEFINED_MACROS.items()
        }
        for macro in macros:
            self._macros[macro.name] = macro
        self._cond_stack: list[_CondFrame] = []
        self._inert: list[InertRegion] = []
        self._directives: list[Directive] = []
        self._line_markers: list[LineMarker] = []
        self._skip_start = 0
        self._expansions = 0

    @property
    def _live(self) -> bool:
        return not self._cond_stack or self._cond_stack[-1].live

    # ── entry point ──────────────────────────────────────────────

    def run(self, raw_tokens: list[Token] | None = None) -> PreprocessResult:
        raw = raw_tokens if raw_tokens is not None else CLexer(self._buffer).tokenize()
        out: list[Token] = []
        i = 0
        at_line_start = True
        while raw[i].kind != TokenKind.EOF:
            tok = raw[i]
            if tok.kind == TokenKind.NEWLINE:
                at_line_start = True
                i += 1
                continue
            if tok.kind == TokenKind.COMMENT:
                self._note_comment(tok)
                i += 1
                continue
            if tok.is_op("#") and at_line_start:
                i = self._directive(raw, i)
                continue
            at_line_start = False
            if not self._live:
                i += 1
                continue
            if self._expandable(tok) is not None:
                expanded, i = self._expand_invocation(raw, i)
                out.extend(expanded)
                continue
            out.append(tok)
            i += 1

        if self._cond_stack:
            frame = self._cond_stack[-1]
            raise PreprocessError("unterminated conditional directive", frame.span, Grammar.A)

        out.append(raw[i])
        source_map = SourceMap(
            buffer=self._buffer,
            entries=[SourceMapEntry(span=t.span, macro=t.expanded_from) for t in out],
            line_markers=list(self._line_markers),
        )
        logger.info(
            "Preprocessed %d raw tokens into %d Grammar-A tokens (%d expansions, %d inert regions)",
            len(raw),
            len(out),
            self._expansions,
            len(self._inert),
        )
        return PreprocessResult(
            tokens=out,
            source_map=source_map,
            inert_regions=sorted(self._inert, key=lambda r: (r.span.start, r.span.end)),
            directives=list(self._directives),
            macros=dict(self._macros),
            expansions=self._expansions,
        )

    def _note_comment(self, tok: Token):
        if tok.value == COMMENT_UNTERMINATED:
            raise PreprocessError("unterminated comment", tok.span, Grammar.A)
        if self._live:
            kind = INERT_LINE_COMMENT if tok.text.startswith("//") else INERT_BLOCK_COMMENT
            self._inert.append(InertRegion(span=tok.span, kind=kind))

    # ── directives ───────────────────────────────────────────────

    def _directive(self, raw: list[Token], i: int) -> int:
        hash_tok = raw[i]
        j = i + 1
        line: list[Token] = []
        end = hash_tok.span.end
        while raw[j].kind not in (TokenKind.NEWLINE, TokenKind.EOF):
            tok = raw[j]
            if tok.kind == TokenKind.COMMENT:
                if tok.value == COMMENT_UNTERMINATED:
                    raise PreprocessError("unterminated comment", tok.span, Grammar.A)
            else:
                line.append(tok)
            end = tok.span.end
            j += 1
        span = Span(start=hash_tok.span.start, end=end)
        next_line_offset = raw[j].span.end

        was_live = self._live
        name = line[0].text if line and line[0].kind in _NAME_KINDS else ""

        if name in ("if", "ifdef", "ifndef", "elif", "else", "endif"):
            self._conditional(name, line[1:], span)
        elif was_live:
            self._live_directive(name, line, span, next_line_offset)

        now_live = self._live
        if was_live or now_live:
            self._inert.append(InertRegion(span=span, kind=INERT_DIRECTIVE))
        if was_live and not now_live:
            self._skip_start = end
        elif now_live and not was_live:
            self._inert.append(
                InertRegion(
                    span=Span(start=self._skip_start, end=hash_tok.span.start),
                    kind=INERT_SKIPPED_GROUP,
                )
            )
        return j

    def _live_directive(
        self, name: str, line: list[Token], span: Span, next_line_offset: int
    ):
        argument = self._buffer.slice(
            Span(start=line[1].span.start, end=span.end)
        ) if len(line) > 1 else ""
        if not line:
            self._directives.append(Directive(kind="null", span=span))
            return
        if line[0].kind == TokenKind.INT:
            # GCC-style "# 33 "file"" line marker
            self._line_marker(line, span, next_line_offset)
            return
        self._directives.append(Directive(kind=name or line[0].text, span=span, argument=argument))
        if name == "define":
            self._define(line, span)
        elif name == "undef":
            if len(line) < 2 or line[1].kind not in _NAME_KINDS:
                raise PreprocessError("no macro name given in #undef directive", span, Grammar.A)
            self._macros.pop(line[1].text, None)
        elif name == "include":
            self._include(line, span)
        elif name == "line":
            self._line_marker(line[1:], span, next_line_offset)
        elif name == "error":
            raise PreprocessError(f"#error {argument}".rstrip(), span, Grammar.A)
        elif name in ("pragma", "warning", "ident"):
            logger.debug("Ignoring #%s directive at %s", name, span)
        else:
            raise PreprocessError(
                f"invalid preprocessing directive #{line[0].text}", span, Grammar.A
            )

    def _define(self, line: list[Token], span: Span):
        if len(line) < 2 or line[1].kind not in _NAME_KINDS:
            raise PreprocessError("macro names must be identifiers", span, Grammar.A)
        name_tok = line[1]
        rest = line[2:]
        params: tuple[str, ...] | None = None
        if rest and rest[0].is_op("(") and rest[0].span.start == name_tok.span.end:
            names: list[str] = []
            k = 1
            while k < len(rest) and not rest[k].is_op(")"):
                tok = rest[k]
                if tok.kind in _NAME_KINDS:
                    names.append(tok.text)
                elif not tok.is_op(","):
                    raise PreprocessError(
                        f"invalid token '{tok.text}' in macro parameter list",
                        tok.span,
                        Grammar.A,
                    )
                k += 1
            if k >= len(rest):
                raise PreprocessError("missing ')' in macro parameter list", span, Grammar.A)
            params = tuple(names)
            rest = rest[k + 1 :]
        if name_tok.text in self._macros:
            logger.debug("Redefining macro %s at %s", name_tok.text, span)
        self._macros[name_tok.text] = MacroDefinition(
            name=name_tok.text, replacement=tuple(rest), params=params, span=span
        )

    def _include(self, line: list[Token], span: Span):
        if len(line) < 2:
            raise PreprocessError("#include expects \"FILENAME\" or <FILENAME>", span, Grammar.A)
        target = line[1]
        if target.kind == TokenKind.STRING:
            header = target.value
        elif target.is_op("<"):
            close = next((t for t in line[2:] if t.is_op(">")), None)
            if close is None:
                raise PreprocessError("missing terminating > character", span, Grammar.A)
            header = self._buffer.slice(Span(start=target.span.end, end=close.span.start))
        else:
            raise PreprocessError("#include expects \"FILENAME\" or <FILENAME>", span, Grammar.A)
        seeded = constants.STANDARD_HEADER_MACROS.get(header.strip(), {})
        for macro_name, text in seeded.items():
            self._macros.setdefault(macro_name, MacroDefinition.from_text(macro_name, text))
        logger.debug("Include of <%s> seeded %d macros", header, len(seeded))

    def _line_marker(self, args: list[Token], span: Span, next_line_offset: int):
        if not args or args[0].kind != TokenKind.INT or args[0].value <= 0:
            raise PreprocessError(
                "#line directive requires a positive integer argument", span, Grammar.A
            )
        filename = args[1].value if len(args) > 1 and args[1].kind == TokenKind.STRING else ""
        self._line_markers.append(
            LineMarker(offset=next_line_offset, line=args[0].value, filename=filename)
        )

    def _conditional(self, name: str, args: list[Token], span: Span):
        if name in ("if", "ifdef", "ifndef"):
            parent_live = self._live
            cond = False
            if parent_live:
                cond = self._test(name, args, span)
            self._cond_stack.append(
                _CondFrame(parent_live=parent_live, taken=cond, live=parent_live and cond, span=span)
            )
            self._directives.append(Directive(kind=name, span=span))
            return
        if not self._cond_stack:
            raise PreprocessError(f"#{name} without #if", span, Grammar.A)
        frame = self._cond_stack[-1]
        if name == "endif":
            self._cond_stack.pop()
        elif frame.seen_else:
            raise PreprocessError(f"#{name} after #else", span, Grammar.A)
        elif name == "else":
            frame.live = frame.parent_live and not frame.taken
            frame.taken = True
            frame.seen_else = True
        else:
            if frame.taken or not frame.parent_live:
                frame.live = False
            else:
                frame.live = self._test("if", args, span)
                frame.taken = frame.live
        self._directives.append(Directive(kind=name, span=span))

    def _test(self, name: str, args: list[Token], span: Span) -> bool:
        if name in ("ifdef", "ifndef"):
            if not args or args[0].kind not in _NAME_KINDS:
                raise PreprocessError(f"no macro name given in #{name} directive", span, Grammar.A)
            defined = args[0].text in self._macros
            return defined if name == "ifdef" else not defined
        resolved: list[Token] = []
        k = 0
        while k < len(args):
            tok = args[k]
            if tok.kind == TokenKind.IDENT and tok.text == "defined":
                k += 1
                parens = k < len(args) and args[k].is_op("(")
                if parens:
                    k += 1
                if k >= len(args) or args[k].kind not in _NAME_KINDS:
                    raise PreprocessError("operator \"defined\" requires an identifier", span, Grammar.A)
                value = int(args[k].text in self._macros)
                k += 1
                if parens:
                    if k >= len(args) or not args[k].is_op(")"):
                        raise PreprocessError("missing ')' after \"defined\"", span, Grammar.A)
                    k += 1
                resolved.append(replace(tok, kind=TokenKind.INT, text=str(value), value=value))
                continue
            resolved.append(tok)
            k += 1
        expanded = self._settle(resolved, span)
        return _ConditionEvaluator(expanded, span).evaluate() != 0

    # ── macro expansion ──────────────────────────────────────────

    def _expandable(self, tok: Token) -> MacroDefinition | None:
        if tok.kind not in _NAME_KINDS or tok.text in tok.hide_set:
            return None
        return self._macros.get(tok.text)

    def _next_significant(self, tokens: list[Token], k: int) -> int:
        while k < len(tokens) and tokens[k].kind in (TokenKind.NEWLINE, TokenKind.COMMENT):
            k += 1
        return k

    def _expand_invocation(self, raw: list[Token], i: int) -> tuple[list[Token], int]:
        name_tok = raw[i]
        macro = self._macros[name_tok.text]
        args: list[list[Token]] = []
        end = i + 1
        call_span = name_tok.span
        if macro.is_function_like:
            j = self._next_significant(raw, i + 1)
            if j >= len(raw) or not raw[j].is_op("("):
                return [name_tok], i + 1
            args, end = self._collect_args(raw, j, macro)
            call_span = name_tok.span.cover(raw[end - 1].span)
        tokens = self._substitute(macro, name_tok, args, call_span)
        tokens = self._settle(tokens, call_span, first_pass_done=True)
        self._expansions += 1
        logger.debug("Expanded %s at %s into %d tokens", macro.name, call_span, len(tokens))
        return tokens, end

    def _settle(self, tokens: list[Token], span: Span, first_pass_done: bool = False) -> list[Token]:
        """Run expansion passes until no expandable invocation remains."""
        passes = 1 if first_pass_done else 0
        while self._has_invocation(tokens):
            passes += 1
            if passes > self._max_passes:
                raise ExpansionLimitExceeded(
                    f"macro expansion did not settle within {self._max_passes} passes",
                    span,
                    Grammar.A,
                )
            tokens = self._expand_pass(tokens)
            if len(tokens) > self._max_tokens:
                raise ExpansionLimitExceeded(
                    f"macro expansion exceeded {self._max_tokens} tokens", span, Grammar.A
                )
        return tokens

    def _has_invocation(self, tokens: list[Token]) -> bool:
        for k, tok in enumerate(tokens):
            macro = self._expandable(tok)
            if macro is None:
                continue
            if not macro.is_function_like:
                return True
            if k + 1 < len(tokens) and tokens[k + 1].is_op("("):
                return True
        return False

    def _expand_pass(self, tokens: list[Token]) -> list[Token]:
        """Substitute each invocation once, without re-scanning the output."""
        out: list[Token] = []
        k = 0
        while k < len(tokens):
            tok = tokens[k]
            macro = self._expandable(tok)
            if macro is None:
                out.append(tok)
                k += 1
                continue
            if not macro.is_function_like:
                out.extend(self._substitute(macro, tok, [], tok.span))
                k += 1
                continue
            if k + 1 < len(tokens) and tokens[k + 1].is_op("("):
                args, end = self._collect_args(tokens, k + 1, macro)
                out.extend(self._substitute(macro, tok, args, tok.span.cover(tokens[end - 1].span)))
                k = end
                continue
            out.append(tok)
            k += 1
        return out

    def _collect_args(
        self, tokens: list[Token], open_index: int, macro: MacroDefinition
    ) -> tuple[list[list[Token]], int]:
        args: list[list[Token]] = [[]]
        depth = 0
        k = open_index
        while True:
            if k >= len(tokens) or tokens[k].kind == TokenKind.EOF:
                raise PreprocessError(
                    f"unterminated argument list invoking macro \"{macro.name}\"",
                    tokens[open_index].span,
                    Grammar.A,
                )
            tok = tokens[k]
            k += 1
            if tok.kind in (TokenKind.NEWLINE, TokenKind.COMMENT):
                continue
            if tok.is_op("("):
                depth += 1
                if depth == 1:
                    continue
            elif tok.is_op(")"):
                depth -= 1
                if depth == 0:
                    break
            elif tok.is_op(",") and depth == 1:
                args.append([])
                continue
            args[-1].append(tok)
        params = macro.params or ()
        if len(params) == 0 and args == [[]]:
            args = []
        if len(args) != len(params):
            raise PreprocessError(
                f"macro \"{macro.name}\" requires {len(params)} arguments, but {len(args)} given",
                tokens[open_index].span,
                Grammar.A,
            )
        return args, k

    def _substitute(
        self,
        macro: MacroDefinition,
        name_tok: Token,
        args: list[list[Token]],
        call_span: Span,
    ) -> list[Token]:
        hide = name_tok.hide_set | {macro.name}
        bindings = dict(zip(macro.params or (), args))
        out: list[Token] = []
        for rtok in macro.replacement:
            if rtok.kind in _NAME_KINDS and rtok.text in bindings:
                out.extend(bindings[rtok.text])
                continue
            out.append(
                replace(
                    rtok,
                    span=call_span,
                    grammar=Grammar.A,
                    hide_set=rtok.hide_set | hide,
                    expanded_from=macro.name,
                    spaced_before=rtok.spaced_before if out else name_tok.spaced_before,
                )
            )
        return out


def preprocess(
    buffer: SourceBuffer,
    macros: Iterable[MacroDefinition] = (),
    max_passes: int = constants.MAX_EXPANSION_PASSES,
    max_tokens: int = constants.MAX_EXPANSION_TOKENS,
) -> PreprocessResult:
    """Lex *buffer* as Grammar A and run the preprocessor over it."""
    return Preprocessor(buffer, macros, max_passes, max_tokens).run()
