"""RubyLexer: Grammar-B (Ruby subset) scanner."""

from __future__ import annotations

import logging

from ._base import BaseLexer, read_escape
from ..errors import ParseError
from ..source import Span
from ..tokens import Grammar, Token, TokenKind

logger = logging.getLogger(__name__)

# Tokens after which a ``/`` is a division operator rather than a regex opener.
_VALUE_END_KINDS = frozenset(
    {
        TokenKind.INT,
        TokenKind.FLOAT,
        TokenKind.STRING,
        TokenKind.REGEX,
        TokenKind.SYMBOL,
        TokenKind.IDENT,
        TokenKind.CONSTANT,
        TokenKind.GLOBAL,
    }
)
_VALUE_END_KEYWORDS = frozenset({"end", "self", "true", "false", "nil"})
_VALUE_END_OPS = frozenset({")", "]", "}"})


class RubyLexer(BaseLexer):
    """Tokenizes Grammar B.

    Newlines are significant and emitted as ``NEWLINE`` tokens; comments are
    kept as ``COMMENT`` tokens so the dual tokenizer can line them up with
    Grammar A, and are dropped by the parser.
    """

    GRAMMAR = Grammar.B
    OPERATORS = (
        "**=",
        "<=>",
        "===",
        "...",
        "<<=",
        ">>=",
        "&&=",
        "||=",
        "**",
        "==",
        "!=",
        ">=",
        "<=",
        "&&",
        "||",
        "<<",
        ">>",
        "=~",
        "!~",
        "+=",
        "-=",
        "*=",
        "/=",
        "%=",
        "|=",
        "&=",
        "^=",
        "::",
        "..",
        "->",
        "=>",
        "&.",
        "+",
        "-",
        "*",
        "/",
        "%",
        "=",
        "<",
        ">",
        "!",
        "&",
        "|",
        "^",
        "~",
        "?",
        ":",
        ",",
        ".",
        ";",
        "(",
        ")",
        "[",
        "]",
        "{",
        "}",
    )
    KEYWORDS = frozenset(
        {
            "def",
            "end",
            "if",
            "elsif",
            "else",
            "unless",
            "while",
            "until",
            "do",
            "then",
            "yield",
            "return",
            "true",
            "false",
            "nil",
            "and",
            "or",
            "not",
            "self",
            "break",
            "next",
            "begin",
            "rescue",
            "ensure",
            "class",
            "module",
            "case",
            "when",
            "for",
            "in",
            "redo",
            "retry",
            "super",
            "alias",
            "undef",
            "defined?",
            "__FILE__",
            "__LINE__",
        }
    )

    def _last_significant(self) -> Token | None:
        for tok in reversed(self._tokens):
            if tok.kind != TokenKind.COMMENT:
                return tok
        return None

    def _scan_token(self) -> bool:
        ch = self._peek()
        if ch in (" ", "\t", "\r", "\f", "\v"):
            self._pos += 1
            self._spaced = True
            return False
        if ch == "\\" and self._peek(1) == "\n":
            self._pos += 2
            self._spaced = True
            return False
        at_column_zero = self._pos == 0 or self._text[self._pos - 1] == "\n"
        if at_column_zero and self._at("=begin") and self._peek(6) in ("", " ", "\t", "\n"):
            self._scan_embedded_document()
            return False
        if at_column_zero and self._at("__END__") and self._peek(7) in ("", "\n", "\r"):
            logger.debug("__END__ at offset %d stops Grammar B lexing", self._pos)
            return True
        if ch == "\n":
            self._pos += 1
            self._make(TokenKind.NEWLINE, self._pos - 1)
            self._spaced = True
            return False
        if ch == "#":
            start = self._pos
            while not self._at_eof() and self._peek() != "\n":
                self._pos += 1
            self._make(TokenKind.COMMENT, start, value="line")
            self._spaced = True
        elif ch.isalpha() or ch == "_":
            self._scan_word()
        elif ch.isdigit():
            self._scan_number()
        elif ch in ("$", "@"):
            self._scan_variable()
        elif ch == '"':
            self._scan_double_quoted()
        elif ch == "'":
            self._scan_single_quoted()
        elif ch == "/" and self._regex_allowed():
            self._scan_regex()
        elif ch == ":" and self._symbol_allowed():
            start = self._pos
            self._pos += 1
            self._scan_identifier_chars()
            if self._peek() in ("?", "!", "="):
                self._pos += 1
            self._make(TokenKind.SYMBOL, start, value=self._text[start + 1 : self._pos])
        else:
            start = self._pos
            op = self._match_operator()
            if not op:
                raise ParseError(
                    f"invalid character '{ch}'",
                    Span(start=start, end=start + 1),
                    Grammar.B,
                )
            self._pos += len(op)
            self._make(TokenKind.OP, start)
        return False

    # ── comments ─────────────────────────────────────────────────

    def _scan_embedded_document(self):
        start = self._pos
        search = start
        while True:
            nl = self._text.find("\n", search, self._end)
            if nl < 0:
                raise ParseError(
                    "embedded document meets end of file",
                    Span(start=start, end=self._end),
                    Grammar.B,
                )
            if self._text.startswith("=end", nl + 1) and (
                nl + 5 >= self._end or self._text[nl + 5] in (" ", "\t", "\n", "\r")
            ):
                close = self._text.find("\n", nl + 1, self._end)
                self._pos = self._end if close < 0 else close
                break
            search = nl + 1
        self._make(TokenKind.COMMENT, start, value="embedded")
        self._spaced = True

    # ── words and literals ───────────────────────────────────────

    def _scan_word(self):
        start = self._pos
        self._scan_identifier_chars()
        if self._peek() in ("?", "!") and self._peek(1) not in ("=", "") and not (
            self._peek() == "?" and self._peek(1) == ":"
        ):
            self._pos += 1
        text = self._text[start : self._pos]
        prev = self._last_significant()
        after_dot = prev is not None and prev.is_op(".", "&.")
        if text in self.KEYWORDS and not after_dot:
            kind = TokenKind.KEYWORD
        elif text[0].isupper():
            kind = TokenKind.CONSTANT
        else:
            kind = TokenKind.IDENT
        self._make(kind, start)

    def _scan_number(self):
        start = self._pos
        prefixes = {"0x": (16, "0123456789abcdef"), "0b": (2, "01"), "0o": (8, "01234567")}
        lowered = self._text[self._pos : self._pos + 2].lower()
        if lowered in prefixes:
            base, digits = prefixes[lowered]
            self._pos += 2
            self._scan_digits(digits, allow_underscore=True)
            body = self._text[start + 2 : self._pos].replace("_", "")
            if not body:
                raise ParseError(
                    "numeric literal without digits",
                    Span(start=start, end=self._pos),
                    Grammar.B,
                )
            self._make(TokenKind.INT, start, value=int(body, base))
            return
        self._scan_digits("0123456789", allow_underscore=True)
        is_float = False
        if self._peek() == "." and self._peek(1).isdigit():
            is_float = True
            self._pos += 1
            self._scan_digits("0123456789", allow_underscore=True)
        if self._peek() in ("e", "E") and (
            self._peek(1).isdigit()
            or (self._peek(1) in ("+", "-") and self._peek(2).isdigit())
        ):
            is_float = True
            self._pos += 2
            self._scan_digits("0123456789", allow_underscore=True)
        literal = self._text[start : self._pos].replace("_", "")
        if is_float:
            self._make(TokenKind.FLOAT, start, value=float(literal))
        elif len(literal) > 1 and literal.startswith("0"):
            if any(c in "89" for c in literal):
                raise ParseError(
                    "invalid octal digit",
                    Span(start=start, end=self._pos),
                    Grammar.B,
                )
            self._make(TokenKind.INT, start, value=int(literal, 8))
        else:
            self._make(TokenKind.INT, start, value=int(literal))

    def _scan_variable(self):
        start = self._pos
        sigil = self._peek()
        self._pos += 1
        if sigil == "@" and self._peek() == "@":
            self._pos += 1
        if sigil == "$" and self._peek().isdigit():
            self._scan_digits("0123456789", allow_underscore=False)
        elif self._peek().isalpha() or self._peek() == "_":
            self._scan_identifier_chars()
        elif sigil == "$" and self._peek() in ("!", "@", "~", "&", "0", "?", "$", ":", ";"):
            self._pos += 1
        else:
            raise ParseError(
                f"'{sigil}' without identifier",
                Span(start=start, end=self._pos),
                Grammar.B,
            )
        self._make(TokenKind.GLOBAL, start)

    def _scan_double_quoted(self):
        """Scan a double-quoted string.

        The token value is a list of parts: plain ``str`` chunks and ``Span``
        ranges covering the code inside each ``#{...}`` interpolation.
        """
        start = self._pos
        self._pos += 1
        parts: list[str | Span] = []
        chunk: list[str] = []
        while True:
            ch = self._peek()
            if ch == "":
                raise ParseError(
                    "unterminated string meets end of file",
                    Span(start=start, end=self._end),
                    Grammar.B,
                )
            if ch == '"':
                self._pos += 1
                break
            if ch == "\\":
                if self._peek(1) == "\n":
                    self._pos += 2
                    continue
                decoded, self._pos = read_escape(self._text, self._pos)
                chunk.append(decoded)
            elif ch == "#" and self._peek(1) == "{":
                if chunk:
                    parts.append("".join(chunk))
                    chunk = []
                code_start = self._pos + 2
                self._pos = code_start
                depth = 1
                while depth:
                    c = self._peek()
                    if c == "":
                        raise ParseError(
                            "unterminated string interpolation",
                            Span(start=start, end=self._end),
                            Grammar.B,
                        )
                    if c == "{":
                        depth += 1
                    elif c == "}":
                        depth -= 1
                    self._pos += 1
                parts.append(Span(start=code_start, end=self._pos - 1))
            else:
                chunk.append(ch)
                self._pos += 1
        if chunk or not parts:
            parts.append("".join(chunk))
        self._make(TokenKind.STRING, start, value=parts)

    def _scan_single_quoted(self):
        start = self._pos
        self._pos += 1
        chars: list[str] = []
        while True:
            ch = self._peek()
            if ch == "":
                raise ParseError(
                    "unterminated string meets end of file",
                    Span(start=start, end=self._end),
                    Grammar.B,
                )
            if ch == "'":
                self._pos += 1
                break
            if ch == "\\" and self._peek(1) in ("\\", "'"):
                chars.append(self._peek(1))
                self._pos += 2
            else:
                chars.append(ch)
                self._pos += 1
        self._make(TokenKind.STRING, start, value=["".join(chars)])

    # ── regex / symbol disambiguation ────────────────────────────

    def _regex_allowed(self) -> bool:
        prev = self._last_significant()
        if prev is None or prev.kind == TokenKind.NEWLINE:
            return True
        if prev.kind == TokenKind.IDENT:
            # ``foo /x/`` is a command argument, ``foo / x`` a division
            return self._spaced and self._peek(1) not in (" ", "\t", "=", "\n")
        if prev.kind in _VALUE_END_KINDS:
            return False
        if prev.kind == TokenKind.KEYWORD:
            return prev.text not in _VALUE_END_KEYWORDS
        if prev.kind == TokenKind.OP:
            return prev.text not in _VALUE_END_OPS
        return True

    def _scan_regex(self):
        start = self._pos
        self._pos += 1
        chars: list[str] = []
        while True:
            ch = self._peek()
            if ch == "":
                raise ParseError(
                    "unterminated regexp meets end of file",
                    Span(start=start, end=self._end),
                    Grammar.B,
                )
            if ch == "/":
                self._pos += 1
                break
            if ch == "\\" and self._peek(1):
                chars.append(self._text[self._pos : self._pos + 2])
                self._pos += 2
                continue
            chars.append(ch)
            self._pos += 1
        while self._peek() and self._peek() in "imxo":
            self._pos += 1
        self._make(TokenKind.REGEX, start, value="".join(chars))

    def _symbol_allowed(self) -> bool:
        nxt = self._peek(1)
        if not (nxt.isalpha() or nxt == "_"):
            return False
        prev = self._last_significant()
        if prev is not None and prev.kind in (
            TokenKind.IDENT,
            TokenKind.CONSTANT,
        ) and not self._spaced:
            return False
        return True
