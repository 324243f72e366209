"""
Pine Script validator.

Line-scan rules over the raw script text. Strings and comments are skipped
via the tolerant scan_line() tokenizer, so brackets or keywords inside string
literals never trigger a rule.

Diagnostic Codes:
- W101: Missing //@version directive
- W103: Version directive names a version other than 5 or 6
- E101: Unbalanced parentheses
- E102: Unbalanced square brackets
- E103: Reserved identifier on the left of an assignment
- W102: ta/math/array/str function referenced without call parentheses

Pass 2 (detect_version) only reads the version number; it never adds
diagnostics. Execution proceeds iff no ERROR diagnostic is produced.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from app.services.pine.constants import (
    CALLABLE_NAMESPACES,
    DEFAULT_PINE_VERSION,
    DIAG_E101_UNBALANCED_PARENS,
    DIAG_E102_UNBALANCED_BRACKETS,
    DIAG_E103_RESERVED_IDENTIFIER,
    DIAG_W101_NO_VERSION,
    DIAG_W102_MISSING_CALL_PARENS,
    DIAG_W103_UNSUPPORTED_VERSION,
    RESERVED_IDENTIFIERS,
    SUPPORTED_PINE_VERSIONS,
)
from app.services.pine.lexer import CLOSERS, OPENERS, Token, TokenType, scan_line
from app.services.pine.models import Diagnostic, DiagnosticKind, Severity

VERSION_PATTERN = re.compile(r"^\s*//\s*@version\s*=\s*(\d+)\s*$")

_BRACKET_CODES = {
    "(": DIAG_E101_UNBALANCED_PARENS,
    ")": DIAG_E101_UNBALANCED_PARENS,
    "[": DIAG_E102_UNBALANCED_BRACKETS,
    "]": DIAG_E102_UNBALANCED_BRACKETS,
}

_ASSIGNMENT_OPS = ("=", ":=")


# =============================================================================
# Validation Result
# =============================================================================


@dataclass
class ValidationResult:
    """Diagnostics of one script plus the captured version."""

    diagnostics: list[Diagnostic] = field(default_factory=list)
    version: int = DEFAULT_PINE_VERSION

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == Severity.WARNING)

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]


# =============================================================================
# Line Helpers
# =============================================================================


def _is_comment_line(text: str) -> bool:
    return text.lstrip().startswith("//")


def _code_tokens(text: str, line: int) -> list[Token]:
    """Tokens of one line minus comments (strings stay, as single tokens)."""
    return [t for t in scan_line(text, line) if t.type != TokenType.COMMENT]


def _is_continuation(text: str) -> bool:
    """Indented non-blank line: continues an expression left open above."""
    return bool(text.strip()) and text[:1] in (" ", "\t")


def _find_version(lines: list[str]) -> Optional[tuple[int, int]]:
    """(line number, version) of the first //@version directive."""
    for line_no, text in enumerate(lines, start=1):
        match = VERSION_PATTERN.match(text)
        if match:
            return line_no, int(match.group(1))
    return None


# =============================================================================
# Individual Rules
# =============================================================================


def check_version_directive(lines: list[str]) -> list[Diagnostic]:
    """
    W101: Missing //@version directive.
    W103: Directive present but names an unsupported version.
    """
    found = _find_version(lines)
    if found is None:
        return [
            Diagnostic(
                kind=DiagnosticKind.VALIDATION,
                severity=Severity.WARNING,
                line=1,
                message="Missing //@version directive; assuming version "
                f"{DEFAULT_PINE_VERSION}",
                suggestion=f"Add '//@version={DEFAULT_PINE_VERSION}' as the first line",
                code=DIAG_W101_NO_VERSION,
            )
        ]

    line_no, version = found
    if version not in SUPPORTED_PINE_VERSIONS:
        supported = " or ".join(str(v) for v in SUPPORTED_PINE_VERSIONS)
        return [
            Diagnostic(
                kind=DiagnosticKind.VALIDATION,
                severity=Severity.WARNING,
                line=line_no,
                message=f"Pine Script version {version} is not supported "
                f"(expected {supported}); the script may not run as written",
                suggestion=f"Use '//@version={DEFAULT_PINE_VERSION}'",
                code=DIAG_W103_UNSUPPORTED_VERSION,
            )
        ]
    return []


def _unclosed(token: Token) -> Diagnostic:
    closer = OPENERS[token.value]
    return Diagnostic(
        kind=DiagnosticKind.VALIDATION,
        severity=Severity.ERROR,
        line=token.line,
        column=token.column,
        message=f"Unclosed '{token.value}': missing '{closer}'",
        suggestion=f"Add a closing '{closer}'",
        code=_BRACKET_CODES[token.value],
    )


def _unexpected(token: Token) -> Diagnostic:
    opener = CLOSERS[token.value]
    return Diagnostic(
        kind=DiagnosticKind.VALIDATION,
        severity=Severity.ERROR,
        line=token.line,
        column=token.column,
        message=f"Unexpected '{token.value}' without a matching '{opener}'",
        suggestion=f"Remove the extra '{token.value}' or add a matching '{opener}'",
        code=_BRACKET_CODES[token.value],
    )


def check_brackets(lines: list[str]) -> list[Diagnostic]:
    """
    E101/E102: Unbalanced parentheses and square brackets.

    Each line must balance on its own, except that brackets left open may be
    closed on the following indented continuation lines.
    """
    findings: list[Diagnostic] = []
    stack: list[Token] = []

    for index, text in enumerate(lines):
        line_no = index + 1
        if _is_comment_line(text):
            continue

        for token in _code_tokens(text, line_no):
            if token.type != TokenType.OP:
                continue
            if token.value in OPENERS:
                stack.append(token)
            elif token.value in CLOSERS:
                if stack and stack[-1].value == CLOSERS[token.value]:
                    stack.pop()
                else:
                    findings.append(_unexpected(token))

        if stack:
            following = lines[index + 1] if index + 1 < len(lines) else ""
            if _is_continuation(following):
                continue
            findings.extend(_unclosed(token) for token in stack)
            stack = []

    return findings


def check_namespace_calls(lines: list[str]) -> list[Diagnostic]:
    """
    W102: A known ta/math/array/str function used without parentheses.

    `ta.sma` followed by anything other than `(` is almost always a missing
    call; value members such as `ta.tr` or `math.pi` are not functions here.
    """
    findings: list[Diagnostic] = []

    for line_no, text in enumerate(lines, start=1):
        if _is_comment_line(text):
            continue
        tokens = _code_tokens(text, line_no)
        for i, token in enumerate(tokens[:-2]):
            functions = CALLABLE_NAMESPACES.get(token.value)
            if token.type != TokenType.IDENT or functions is None:
                continue
            if i > 0 and tokens[i - 1].is_op("."):
                continue
            dot, member = tokens[i + 1], tokens[i + 2]
            if not dot.is_op(".") or member.type != TokenType.IDENT:
                continue
            if member.value not in functions:
                continue
            following = tokens[i + 3] if i + 3 < len(tokens) else None
            if following is not None and following.is_op("("):
                continue
            name = f"{token.value}.{member.value}"
            findings.append(
                Diagnostic(
                    kind=DiagnosticKind.VALIDATION,
                    severity=Severity.WARNING,
                    line=line_no,
                    column=token.column,
                    message=f"'{name}' is a function but is not called",
                    suggestion=f"Add parentheses: {name}(...)",
                    code=DIAG_W102_MISSING_CALL_PARENS,
                )
            )

    return findings


def check_reserved_identifiers(lines: list[str]) -> list[Diagnostic]:
    """
    E103: Reserved identifier on the left of `=` or `:=`.

    Only tokens before the first top-level assignment operator are checked,
    so keyword arguments such as `plot(x, text="a")` are left alone. Brackets
    left open carry over to indented continuation lines, the same way
    check_brackets reads them.
    """
    findings: list[Diagnostic] = []
    depth = 0

    for index, text in enumerate(lines):
        line_no = index + 1
        if _is_comment_line(text):
            continue
        tokens = _code_tokens(text, line_no)

        target: Optional[int] = None
        for i, token in enumerate(tokens):
            if token.type != TokenType.OP:
                continue
            if token.value in OPENERS:
                depth += 1
            elif token.value in CLOSERS:
                depth = max(0, depth - 1)
            elif depth == 0 and target is None and token.value in _ASSIGNMENT_OPS:
                target = i

        following = lines[index + 1] if index + 1 < len(lines) else ""
        if depth and not _is_continuation(following):
            depth = 0
        if target is None:
            continue

        for token in tokens[:target]:
            if token.type == TokenType.IDENT and token.value in RESERVED_IDENTIFIERS:
                findings.append(
                    Diagnostic(
                        kind=DiagnosticKind.VALIDATION,
                        severity=Severity.ERROR,
                        line=line_no,
                        column=token.column,
                        message=f"'{token.value}' is a reserved identifier and "
                        "cannot be used as a variable name",
                        suggestion=f"Rename it, for example to '{token.value}_value'",
                        code=DIAG_E103_RESERVED_IDENTIFIER,
                    )
                )
                break

    return findings


# =============================================================================
# Main Validator
# =============================================================================


@dataclass
class ValidatorConfig:
    """Enable/disable individual rules."""

    check_version: bool = True
    check_brackets: bool = True
    check_namespace_calls: bool = True
    check_reserved_identifiers: bool = True


def detect_version(script: str) -> int:
    """Pass 2: the //@version number, or the default when absent."""
    found = _find_version(script.splitlines())
    return found[1] if found else DEFAULT_PINE_VERSION


def validate(script: str, config: Optional[ValidatorConfig] = None) -> ValidationResult:
    """
    Run every enabled rule over the script.

    Never raises; the diagnostic list depends only on the script text.
    """
    if config is None:
        config = ValidatorConfig()

    lines = script.splitlines()
    diagnostics: list[Diagnostic] = []

    if config.check_version:
        diagnostics.extend(check_version_directive(lines))
    if config.check_brackets:
        diagnostics.extend(check_brackets(lines))
    if config.check_namespace_calls:
        diagnostics.extend(check_namespace_calls(lines))
    if config.check_reserved_identifiers:
        diagnostics.extend(check_reserved_identifiers(lines))

    # Errors first, then by position
    diagnostics.sort(
        key=lambda d: (_severity_order(d.severity), d.line, d.column or 0)
    )

    return ValidationResult(diagnostics=diagnostics, version=detect_version(script))


def _severity_order(severity: Severity) -> int:
    order = {
        Severity.ERROR: 0,
        Severity.WARNING: 1,
        Severity.INFO: 2,
    }
    return order.get(severity, 99)
