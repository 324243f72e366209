"""
Recursive-descent parser for the recognized Pine Script subset.

Grammar (one statement per logical line):

    statement  := ('var' | 'varip') [type] IDENT '=' expr
                | [type] IDENT '=' expr
                | IDENT (':=' | '+=' | '-=' | '*=' | '/=' | '%=') expr
                | '[' IDENT {',' IDENT} ']' '=' expr
                | IDENT '(' [IDENT {',' IDENT}] ')' '=>' expr
                | expr
    expr       := or_expr ['?' expr ':' expr]
    or_expr    := and_expr {'or' and_expr}
    and_expr   := not_expr {'and' not_expr}
    not_expr   := 'not' not_expr | comparison
    comparison := additive {('==' | '!=' | '<' | '<=' | '>' | '>=') additive}
    additive   := term {('+' | '-') term}
    term       := unary {('*' | '/' | '%') unary}
    unary      := ('-' | '+') unary | postfix
    postfix    := primary {'(' args ')' | '.' IDENT | '[' expr ']'}
    primary    := NUMBER | STRING | COLOR | 'true' | 'false' | IDENT
                | '(' expr ')' | '[' [expr {',' expr}] ']'

Block statements (if/for/while/switch), type and method definitions and
imports are outside the subset and raise PineSyntaxError.
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from app.services.pine.constants import MAX_NESTING_DEPTH, TYPE_KEYWORDS
from app.services.pine.errors import PineSyntaxError
from app.services.pine.lexer import Token, TokenType, tokenize
from app.services.pine.nodes import (
    ArrayLiteral,
    Assign,
    Attribute,
    BinOp,
    Call,
    Comment,
    Const,
    Destructure,
    Expr,
    ExprStmt,
    FunctionDef,
    Index,
    Name,
    Program,
    Reassign,
    Statement,
    Ternary,
    UnaryOp,
)

# Matches the comment body of //@version=5 (the lexer strips the slashes)
VERSION_COMMENT_PATTERN = re.compile(r"^\s*@version\s*=\s*(\d+)\s*$")

REASSIGN_OPS = (":=", "+=", "-=", "*=", "/=", "%=")
COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=")

UNSUPPORTED_STATEMENTS = frozenset(
    ["if", "else", "for", "while", "switch", "type", "method", "import", "export"]
)


class Parser:
    """Token stream -> Program."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    # -------------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------------

    def peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.peek()
        if token.type != TokenType.EOF:
            self.pos += 1
        return token

    def at_op(self, *values: str) -> bool:
        return self.peek().is_op(*values)

    def expect_op(self, value: str) -> Token:
        token = self.peek()
        if not token.is_op(value):
            raise self.error(f"Expected '{value}'", token)
        return self.advance()

    def expect_ident(self) -> Token:
        token = self.peek()
        if token.type != TokenType.IDENT:
            raise self.error("Expected identifier", token)
        return self.advance()

    def error(self, message: str, token: Optional[Token] = None) -> PineSyntaxError:
        token = token or self.peek()
        found = {
            TokenType.NEWLINE: "end of line",
            TokenType.EOF: "end of script",
        }.get(token.type, f"'{token.value}'")
        return PineSyntaxError(f"{message}, found {found}", token.line, token.column)

    # -------------------------------------------------------------------------
    # Program / statements
    # -------------------------------------------------------------------------

    def parse_program(self) -> Program:
        body: list[Statement] = []
        version: Optional[int] = None

        while self.peek().type != TokenType.EOF:
            token = self.peek()
            if token.type == TokenType.NEWLINE:
                self.advance()
                continue
            if token.type == TokenType.COMMENT:
                self.advance()
                match = VERSION_COMMENT_PATTERN.match(token.value)
                if match and version is None:
                    version = int(match.group(1))
                else:
                    body.append(Comment(token.value.strip(), line=token.line))
                continue

            body.append(self.parse_statement())

            # Trailing comments are dropped
            if self.peek().type == TokenType.COMMENT:
                self.advance()
            if self.peek().type not in (TokenType.NEWLINE, TokenType.EOF):
                raise self.error("Expected end of statement")

        return Program(body=tuple(body), version=version)

    def parse_statement(self) -> Statement:
        token = self.peek()
        line = token.line

        if token.type == TokenType.IDENT and token.value in UNSUPPORTED_STATEMENTS:
            raise PineSyntaxError(
                f"'{token.value}' statements are not supported by this engine",
                token.line,
                token.column,
            )

        if token.is_keyword("var", "varip"):
            mode = self.advance().value
            type_name = self._parse_type()
            name = self.expect_ident().value
            self.expect_op("=")
            return Assign(name, self.parse_expr(), mode=mode, type_name=type_name, line=line)

        if token.type == TokenType.IDENT and token.value in TYPE_KEYWORDS:
            start = self.pos
            type_name = self._parse_type()
            if (
                type_name
                and self.peek().type == TokenType.IDENT
                and self.peek(1).is_op("=")
            ):
                name = self.advance().value
                self.advance()
                return Assign(name, self.parse_expr(), type_name=type_name, line=line)
            self.pos = start

        if token.is_op("["):
            destructure = self._try_destructure(line)
            if destructure is not None:
                return destructure

        if token.type == TokenType.IDENT:
            following = self.peek(1)
            if following.is_op("="):
                self.advance()
                self.advance()
                return Assign(token.value, self.parse_expr(), line=line)
            if following.is_op(*REASSIGN_OPS):
                self.advance()
                op = self.advance().value
                return Reassign(token.value, op, self.parse_expr(), line=line)
            if following.is_op("("):
                function = self._try_function_def(line)
                if function is not None:
                    return function

        return ExprStmt(self.parse_expr(), line=line)

    def _parse_type(self) -> Optional[str]:
        """Consume `[series|simple|const] [float|int|bool|string|color]` if present."""
        parts = []
        while (
            self.peek().type == TokenType.IDENT
            and self.peek().value in TYPE_KEYWORDS
            and self.peek(1).type == TokenType.IDENT
        ):
            parts.append(self.advance().value)
        return " ".join(parts) if parts else None

    def _try_destructure(self, line: int) -> Optional[Destructure]:
        start = self.pos
        self.advance()  # [
        names = []
        while True:
            token = self.peek()
            if token.type != TokenType.IDENT:
                self.pos = start
                return None
            names.append(self.advance().value)
            if self.at_op(","):
                self.advance()
                continue
            break
        if not (self.at_op("]") and self.peek(1).is_op("=")):
            self.pos = start
            return None
        self.advance()
        self.advance()
        return Destructure(tuple(names), self.parse_expr(), line=line)

    def _try_function_def(self, line: int) -> Optional[FunctionDef]:
        start = self.pos
        name = self.advance().value
        self.advance()  # (
        params = []
        while not self.at_op(")"):
            token = self.peek()
            if token.type != TokenType.IDENT:
                self.pos = start
                return None
            params.append(self.advance().value)
            if self.at_op(","):
                self.advance()
            elif not self.at_op(")"):
                self.pos = start
                return None
        self.advance()  # )
        if not self.at_op("=>"):
            self.pos = start
            return None
        self.advance()
        if self.peek().type in (TokenType.NEWLINE, TokenType.EOF, TokenType.COMMENT):
            raise self.error("Multi-line function bodies are not supported")
        return FunctionDef(name, tuple(params), self.parse_expr(), line=line)

    # -------------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------------

    def _nested(self, parse: Callable[[], Expr]) -> Expr:
        self.depth += 1
        try:
            if self.depth > MAX_NESTING_DEPTH:
                raise self.error(
                    f"Expression nested too deeply (max {MAX_NESTING_DEPTH} levels)"
                )
            return parse()
        finally:
            self.depth -= 1

    def parse_expr(self) -> Expr:
        return self._nested(self._parse_ternary)

    def _parse_ternary(self) -> Expr:
        condition = self.parse_or()
        if self.at_op("?"):
            self.advance()
            when_true = self.parse_expr()
            self.expect_op(":")
            when_false = self.parse_expr()
            return Ternary(condition, when_true, when_false)
        return condition

    def parse_or(self) -> Expr:
        left = self.parse_and()
        while self.peek().is_keyword("or"):
            self.advance()
            left = BinOp("or", left, self.parse_and())
        return left

    def parse_and(self) -> Expr:
        left = self.parse_not()
        while self.peek().is_keyword("and"):
            self.advance()
            left = BinOp("and", left, self.parse_not())
        return left

    def parse_not(self) -> Expr:
        if self.peek().is_keyword("not"):
            self.advance()
            return UnaryOp("not", self._nested(self.parse_not))
        return self.parse_comparison()

    def parse_comparison(self) -> Expr:
        left = self.parse_additive()
        while self.at_op(*COMPARISON_OPS):
            op = self.advance().value
            left = BinOp(op, left, self.parse_additive())
        return left

    def parse_additive(self) -> Expr:
        left = self.parse_term()
        while self.at_op("+", "-"):
            op = self.advance().value
            left = BinOp(op, left, self.parse_term())
        return left

    def parse_term(self) -> Expr:
        left = self.parse_unary()
        while self.at_op("*", "/", "%"):
            op = self.advance().value
            left = BinOp(op, left, self.parse_unary())
        return left

    def parse_unary(self) -> Expr:
        if self.at_op("-", "+"):
            op = self.advance().value
            return UnaryOp(op, self._nested(self.parse_unary))
        return self.parse_postfix()

    def parse_postfix(self) -> Expr:
        expr = self.parse_primary()
        while True:
            if self.at_op("("):
                self.advance()
                args, kwargs = self._parse_args()
                expr = Call(expr, args, kwargs)
            elif self.at_op("."):
                self.advance()
                expr = Attribute(expr, self.expect_ident().value)
            elif self.at_op("["):
                self.advance()
                index = self.parse_expr()
                self.expect_op("]")
                expr = Index(expr, index)
            else:
                return expr

    def _parse_args(self) -> tuple[tuple[Expr, ...], tuple[tuple[str, Expr], ...]]:
        args: list[Expr] = []
        kwargs: list[tuple[str, Expr]] = []
        while not self.at_op(")"):
            token = self.peek()
            if token.type == TokenType.IDENT and self.peek(1).is_op("="):
                self.advance()
                self.advance()
                kwargs.append((token.value, self.parse_expr()))
            else:
                if kwargs:
                    raise self.error("Positional argument after keyword argument")
                args.append(self.parse_expr())
            if self.at_op(","):
                self.advance()
            elif not self.at_op(")"):
                raise self.error("Expected ',' or ')'")
        self.advance()
        return tuple(args), tuple(kwargs)

    def parse_primary(self) -> Expr:
        token = self.peek()

        if token.type == TokenType.NUMBER:
            self.advance()
            text = token.value
            if any(ch in text for ch in ".eE"):
                return Const(float(text))
            return Const(int(text))
        if token.type in (TokenType.STRING, TokenType.COLOR):
            self.advance()
            return Const(token.value)
        if token.is_keyword("true", "false"):
            self.advance()
            return Const(token.value == "true")
        if token.type == TokenType.IDENT:
            self.advance()
            return Name(token.value)
        if token.is_op("("):
            self.advance()
            expr = self.parse_expr()
            self.expect_op(")")
            return expr
        if token.is_op("["):
            self.advance()
            items: list[Expr] = []
            while not self.at_op("]"):
                items.append(self.parse_expr())
                if self.at_op(","):
                    self.advance()
                elif not self.at_op("]"):
                    raise self.error("Expected ',' or ']'")
            self.advance()
            return ArrayLiteral(tuple(items))

        raise self.error("Unexpected token")


def parse(source: str) -> Program:
    """
    Parse script text into a Program.

    Raises:
        PineSyntaxError: On any lexical or grammatical error
    """
    return Parser(tokenize(source)).parse_program()
