"""CLexer: Grammar-A (C subset) preprocessing-token scanner."""

from __future__ import annotations

import logging

from ._base import BaseLexer, read_escape
from ..tokens import Grammar, TokenKind
from .. import constants

logger = logging.getLogger(__name__)

COMMENT_BLOCK = "block"
COMMENT_LINE = "line"
COMMENT_UNTERMINATED = "unterminated"


class CLexer(BaseLexer):
    """Produces raw Grammar-A tokens, newlines and comments included.

    The preprocessor needs ``NEWLINE`` tokens to delimit directives and
    ``COMMENT`` tokens to record inert regions, so nothing is dropped here.
    Lexical faults become ``ERROR`` tokens; whether they are fatal depends on
    whether they end up in a live preprocessor group.
    """

    GRAMMAR = Grammar.A
    OPERATORS = (
        "...",
        "<<=",
        ">>=",
        "->",
        "++",
        "--",
        "<<",
        ">>",
        "<=",
        ">=",
        "==",
        "!=",
        "&&",
        "||",
        "+=",
        "-=",
        "*=",
        "/=",
        "%=",
        "&=",
        "|=",
        "^=",
        "##",
        "#",
        "+",
        "-",
        "*",
        "/",
        "%",
        "<",
        ">",
        "=",
        "!",
        "~",
        "&",
        "|",
        "^",
        "?",
        ":",
        ";",
        ",",
        ".",
        "(",
        ")",
        "[",
        "]",
        "{",
        "}",
    )
    KEYWORDS = (
        constants.C_TYPE_KEYWORDS
        | constants.C_QUALIFIERS
        | frozenset(
            {"if", "else", "while", "for", "do", "return", "break", "continue", "sizeof"}
        )
    )

    def _scan_token(self) -> bool:
        ch = self._peek()
        if ch in (" ", "\t", "\r", "\f", "\v"):
            self._pos += 1
            self._spaced = True
            return False
        if ch == "\\" and self._splice_length():
            self._pos += self._splice_length()
            return False
        if ch == "\n":
            self._pos += 1
            self._make(TokenKind.NEWLINE, self._pos - 1)
            self._spaced = True
            return False
        if self._at("/*"):
            self._scan_block_comment()
        elif self._at("//"):
            self._scan_line_comment()
        elif ch.isalpha() or ch in "_$":
            self._scan_word()
        elif ch.isdigit() or (ch == "." and self._peek(1).isdigit()):
            self._scan_number()
        elif ch == "'":
            self._scan_char()
        elif ch == '"':
            self._scan_string()
        else:
            start = self._pos
            op = self._match_operator()
            if op:
                self._pos += len(op)
                self._make(TokenKind.OP, start)
            else:
                self._pos += 1
                self._make(TokenKind.ERROR, start, value=f"stray '{ch}' in program")
        return False

    def _splice_length(self) -> int:
        if self._peek(1) == "\n":
            return 2
        if self._peek(1) == "\r" and self._peek(2) == "\n":
            return 3
        return 0

    # ── comments ─────────────────────────────────────────────────

    def _scan_block_comment(self):
        start = self._pos
        close = self._text.find("*/", start + 2, self._end)
        if close < 0:
            self._pos = self._end
            self._make(TokenKind.COMMENT, start, value=COMMENT_UNTERMINATED)
        else:
            self._pos = close + 2
            self._make(TokenKind.COMMENT, start, value=COMMENT_BLOCK)
        self._spaced = True

    def _scan_line_comment(self):
        start = self._pos
        while not self._at_eof() and self._peek() != "\n":
            if self._peek() == "\\" and self._splice_length():
                self._pos += self._splice_length()
                continue
            self._pos += 1
        self._make(TokenKind.COMMENT, start, value=COMMENT_LINE)
        self._spaced = True

    # ── words and literals ───────────────────────────────────────

    def _scan_word(self):
        start = self._pos
        self._pos += 1
        self._scan_identifier_chars(extra="$")
        text = self._text[start : self._pos]
        kind = TokenKind.KEYWORD if text in self.KEYWORDS else TokenKind.IDENT
        self._make(kind, start)

    def _scan_number(self):
        start = self._pos
        is_float = False
        if self._at("0x") or self._at("0X"):
            self._pos += 2
            self._scan_digits("0123456789abcdef", allow_underscore=False)
            digits = self._text[start + 2 : self._pos]
            value: int | float = int(digits, 16) if digits else 0
        else:
            self._scan_digits("0123456789", allow_underscore=False)
            if self._peek() == "." and not self._at(".."):
                is_float = True
                self._pos += 1
                self._scan_digits("0123456789", allow_underscore=False)
            if self._peek() in ("e", "E") and (
                self._peek(1).isdigit()
                or (self._peek(1) in ("+", "-") and self._peek(2).isdigit())
            ):
                is_float = True
                self._pos += 2
                self._scan_digits("0123456789", allow_underscore=False)
            literal = self._text[start : self._pos]
            if is_float:
                value = float(literal)
            elif len(literal) > 1 and literal.startswith("0"):
                if any(c in "89" for c in literal):
                    self._scan_suffix()
                    self._make(
                        TokenKind.ERROR,
                        start,
                        value=f"invalid digit in octal constant '{literal}'",
                    )
                    return
                value = int(literal, 8)
            else:
                value = int(literal)
        self._scan_suffix()
        self._make(TokenKind.FLOAT if is_float else TokenKind.INT, start, value=value)

    def _scan_suffix(self):
        while self._peek() and self._peek() in "uUlLfF":
            self._pos += 1

    def _scan_char(self):
        start = self._pos
        self._pos += 1
        chars: list[str] = []
        while True:
            ch = self._peek()
            if ch in ("", "\n"):
                self._make(
                    TokenKind.ERROR, start, value="missing terminating ' character"
                )
                return
            if ch == "'":
                self._pos += 1
                break
            if ch == "\\":
                decoded, self._pos = read_escape(self._text, self._pos)
                chars.append(decoded)
            else:
                chars.append(ch)
                self._pos += 1
        if not chars:
            self._make(TokenKind.ERROR, start, value="empty character constant")
            return
        value = 0
        for c in chars:
            value = (value << 8) | (ord(c) & 0xFF)
        if len(chars) == 1 and value > 127:
            value -= 256
        self._make(TokenKind.CHAR, start, value=value)

    def _scan_string(self):
        start = self._pos
        self._pos += 1
        chars: list[str] = []
        while True:
            ch = self._peek()
            if ch in ("", "\n"):
                self._make(
                    TokenKind.ERROR, start, value='missing terminating " character'
                )
                return
            if ch == '"':
                self._pos += 1
                break
            if ch == "\\":
                if self._splice_length():
                    self._pos += self._splice_length()
                    continue
                decoded, self._pos = read_escape(self._text, self._pos)
                chars.append(decoded)
            else:
                chars.append(ch)
                self._pos += 1
        self._make(TokenKind.STRING, start, value="".join(chars))
