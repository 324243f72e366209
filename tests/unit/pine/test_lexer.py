"""
Unit tests for the Pine Script tokenizer.
"""

import pytest

from app.services.pine.errors import PineSyntaxError
from app.services.pine.lexer import TokenType, scan_line, tokenize


def _types(tokens):
    return [t.type for t in tokens]


def _values(tokens):
    return [t.value for t in tokens if t.type not in (TokenType.NEWLINE, TokenType.EOF)]


class TestTokenize:
    """Tests for tokenize()."""

    def test_simple_assignment(self):
        """Identifiers, operators and numbers with NEWLINE and EOF."""
        tokens = tokenize("x = 1 + 2.5")

        assert _values(tokens) == ["x", "=", "1", "+", "2.5"]
        assert tokens[-2].type == TokenType.NEWLINE
        assert tokens[-1].type == TokenType.EOF

    def test_longest_operator_wins(self):
        """:= and >= are single tokens."""
        tokens = tokenize("x := a >= b")

        assert ":=" in _values(tokens)
        assert ">=" in _values(tokens)
        assert "=" not in _values(tokens)

    def test_keywords(self):
        """and/or/not/var are keywords, other words are identifiers."""
        tokens = tokenize("var x = a and not b")

        kinds = {t.value: t.type for t in tokens}
        assert kinds["var"] == TokenType.KEYWORD
        assert kinds["and"] == TokenType.KEYWORD
        assert kinds["not"] == TokenType.KEYWORD
        assert kinds["x"] == TokenType.IDENT

    def test_string_escapes(self):
        """Both quote styles, with backslash escapes."""
        tokens = tokenize("a = \"say \\\"hi\\\"\"\nb = 'it'")

        strings = [t.value for t in tokens if t.type == TokenType.STRING]
        assert strings == ['say "hi"', "it"]

    def test_color_literal_uppercased(self):
        """#rrggbb literals become COLOR tokens in uppercase."""
        tokens = tokenize("c = #ff00aa")

        colors = [t for t in tokens if t.type == TokenType.COLOR]
        assert len(colors) == 1
        assert colors[0].value == "#FF00AA"

    def test_comment_token(self):
        """Comments keep their text without the slashes."""
        tokens = tokenize("//@version=6")

        assert tokens[0].type == TokenType.COMMENT
        assert tokens[0].value == "@version=6"

    def test_newlines_suppressed_inside_brackets(self):
        """A call spanning lines is one logical line."""
        tokens = tokenize("plot(close,\n     color=color.red)")

        assert _types(tokens).count(TokenType.NEWLINE) == 1

    def test_comment_inside_brackets_dropped(self):
        tokens = tokenize("plot(close, // series\n  title='x')")

        assert TokenType.COMMENT not in _types(tokens)

    def test_positions_are_one_based(self):
        tokens = tokenize("x = 1\n  y = 2")

        y = next(t for t in tokens if t.value == "y")
        assert y.line == 2
        assert y.column == 3

    def test_unterminated_string(self):
        with pytest.raises(PineSyntaxError) as exc_info:
            tokenize('x = "open')

        assert exc_info.value.line == 1
        assert "Unterminated" in exc_info.value.message

    def test_unexpected_character(self):
        with pytest.raises(PineSyntaxError) as exc_info:
            tokenize("x = 1 @ 2")

        assert exc_info.value.column == 7

    def test_mismatched_closer(self):
        with pytest.raises(PineSyntaxError):
            tokenize("x = (1]")

    def test_unclosed_opener(self):
        with pytest.raises(PineSyntaxError) as exc_info:
            tokenize("plot(close")

        assert "Unclosed" in exc_info.value.message

    def test_empty_source(self):
        tokens = tokenize("")

        assert _types(tokens) == [TokenType.EOF]


class TestScanLine:
    """Tests for the tolerant validator scan."""

    def test_never_raises_on_bad_input(self):
        tokens = scan_line('x = "open @')

        assert tokens[-1].type == TokenType.ERROR

    def test_brackets_inside_strings_are_not_operators(self):
        tokens = scan_line('plot(close, title="((")')

        opens = [t for t in tokens if t.is_op("(")]
        assert len(opens) == 1

    def test_line_number_carried(self):
        tokens = scan_line("x = 1", line=7)

        assert all(t.line == 7 for t in tokens)
