"""
Pine Script tokenizer.

Produces a flat token list with NEWLINE tokens between logical lines.
Newlines inside (), [] are suppressed so multi-line calls form one statement.
Comments become COMMENT tokens so the parser can keep them as annotations.

Two entry points:
- tokenize(): strict, raises PineSyntaxError (used by the translator)
- scan_line(): tolerant single-line scan for the validator (never raises)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from app.services.pine.errors import PineSyntaxError


class TokenType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    COLOR = "color"
    IDENT = "ident"
    KEYWORD = "keyword"
    OP = "op"
    COMMENT = "comment"
    NEWLINE = "newline"
    ERROR = "error"
    EOF = "eof"


KEYWORDS = frozenset(["and", "or", "not", "true", "false", "var", "varip"])

# Longest operators first
OPERATORS = (
    "=>",
    ":=",
    "+=",
    "-=",
    "*=",
    "/=",
    "%=",
    "==",
    "!=",
    "<=",
    ">=",
    "+",
    "-",
    "*",
    "/",
    "%",
    "<",
    ">",
    "=",
    "?",
    ":",
    ",",
    ".",
    "(",
    ")",
    "[",
    "]",
)

OPENERS = {"(": ")", "[": "]"}
CLOSERS = {")": "(", "]": "["}

_NUMBER = re.compile(r"(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?")
_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_COLOR = re.compile(r"#(?:[0-9A-Fa-f]{8}|[0-9A-Fa-f]{6})(?![0-9A-Za-z_])")


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    line: int  # 1-based
    column: int  # 1-based

    def is_op(self, *values: str) -> bool:
        return self.type == TokenType.OP and self.value in values

    def is_keyword(self, *values: str) -> bool:
        return self.type == TokenType.KEYWORD and self.value in values


def _scan(text: str, line: int, pos: int, strict: bool) -> tuple[Token, int]:
    """Read one token starting at text[pos]; returns (token, next_pos)."""
    ch = text[pos]
    column = pos + 1

    if text.startswith("//", pos):
        return Token(TokenType.COMMENT, text[pos + 2 :].rstrip(), line, column), len(text)

    if ch in "\"'":
        end = pos + 1
        chars = []
        while end < len(text) and text[end] != ch:
            if text[end] == "\\" and end + 1 < len(text):
                chars.append({"n": "\n", "t": "\t"}.get(text[end + 1], text[end + 1]))
                end += 2
                continue
            chars.append(text[end])
            end += 1
        if end >= len(text):
            if strict:
                raise PineSyntaxError("Unterminated string literal", line, column)
            return Token(TokenType.ERROR, text[pos:], line, column), len(text)
        return Token(TokenType.STRING, "".join(chars), line, column), end + 1

    if ch == "#":
        match = _COLOR.match(text, pos)
        if match:
            return Token(TokenType.COLOR, match.group(0).upper(), line, column), match.end()

    if ch.isdigit() or (ch == "." and pos + 1 < len(text) and text[pos + 1].isdigit()):
        match = _NUMBER.match(text, pos)
        if match:
            return Token(TokenType.NUMBER, match.group(0), line, column), match.end()

    match = _IDENT.match(text, pos)
    if match:
        word = match.group(0)
        kind = TokenType.KEYWORD if word in KEYWORDS else TokenType.IDENT
        return Token(kind, word, line, column), match.end()

    for op in OPERATORS:
        if text.startswith(op, pos):
            return Token(TokenType.OP, op, line, column), pos + len(op)

    if strict:
        raise PineSyntaxError(f"Unexpected character '{ch}'", line, column)
    return Token(TokenType.ERROR, ch, line, column), pos + 1


def scan_line(text: str, line: int = 1) -> list[Token]:
    """Tokenize a single physical line without raising."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        if text[pos] in " \t\r":
            pos += 1
            continue
        token, pos = _scan(text, line, pos, strict=False)
        tokens.append(token)
    return tokens


def tokenize(source: str) -> list[Token]:
    """
    Tokenize a whole script.

    Raises:
        PineSyntaxError: On unterminated strings, stray characters or
            brackets closed by the wrong partner
    """
    tokens: list[Token] = []
    depth: list[Token] = []

    for line_no, text in enumerate(source.splitlines(), start=1):
        pos = 0
        line_tokens: list[Token] = []
        while pos < len(text):
            if text[pos] in " \t\r":
                pos += 1
                continue
            token, pos = _scan(text, line_no, pos, strict=True)
            if token.type == TokenType.OP and token.value in OPENERS:
                depth.append(token)
            elif token.type == TokenType.OP and token.value in CLOSERS:
                if not depth or depth[-1].value != CLOSERS[token.value]:
                    raise PineSyntaxError(
                        f"Unexpected '{token.value}'", token.line, token.column
                    )
                depth.pop()
            line_tokens.append(token)

        if depth:
            # Inside brackets: comments are dropped and the line continues
            tokens.extend(t for t in line_tokens if t.type != TokenType.COMMENT)
            continue

        tokens.extend(line_tokens)
        if line_tokens:
            tokens.append(Token(TokenType.NEWLINE, "\n", line_no, len(text) + 1))

    if depth:
        opener = depth[-1]
        raise PineSyntaxError(
            f"Unclosed '{opener.value}'", opener.line, opener.column
        )

    end_line = tokens[-1].line + 1 if tokens else 1
    tokens.append(Token(TokenType.EOF, "", end_line, 1))
    return tokens
