"""
Unit tests for the Pine Script translator.

Tests each rewrite and the idempotence of render() output.
"""

import math

import pytest

from app.services.pine.constants import HLINE_GRAY, PRIMARY_BLUE
from app.services.pine.errors import PineSyntaxError
from app.services.pine.nodes import (
    Assign,
    Attribute,
    Call,
    Const,
    Declaration,
    ExprStmt,
    Name,
    Sink,
    Ternary,
)
from app.services.pine.translator import render, translate


def _sinks(translated):
    return [
        s.expr
        for s in translated.program.statements
        if isinstance(s, ExprStmt) and isinstance(s.expr, Sink)
    ]


def _value(translated, name):
    for stmt in translated.program.statements:
        if isinstance(stmt, Assign) and stmt.target == name:
            return stmt.value
    raise AssertionError(f"no binding {name}")


class TestDeclarations:
    """indicator/strategy/library collapse to a title."""

    def test_indicator_title(self):
        translated = translate('indicator("My RSI", overlay=false)')

        assert translated.title == "My RSI"
        assert translated.program.body == (Declaration("indicator", "My RSI"),)

    def test_keyword_title(self):
        translated = translate('strategy(title="S")')

        assert translated.title == "S"

    def test_no_declaration(self):
        assert translate("plot(close)").title is None


class TestVersion:
    def test_version_kept_on_result(self):
        translated = translate("//@version=5\nplot(close)")

        assert translated.version == 5
        assert translated.effective_version == 5

    def test_default_version(self):
        translated = translate("plot(close)")

        assert translated.version is None
        assert translated.effective_version == 6


class TestInputs:
    """input.*(default, title) folds to the default."""

    def test_input_int_folded(self):
        translated = translate('len = input.int(14, "Length")')

        assert _value(translated, "len") == Const(14)
        assert len(translated.inputs) == 1
        recorded = translated.inputs[0]
        assert recorded.name == "len"
        assert recorded.function == "input.int"
        assert recorded.title == "Length"
        assert recorded.default == 14

    def test_generic_input_and_defval(self):
        translated = translate("a = input(1.5)\nb = input.bool(defval=true, title='On')")

        assert _value(translated, "a") == Const(1.5)
        assert _value(translated, "b") == Const(True)
        assert [i.title for i in translated.inputs] == [None, "On"]

    def test_input_source(self):
        translated = translate("src = input.source(close, 'Source')")

        assert _value(translated, "src") == Name("close")
        assert translated.inputs[0].default == "close"


class TestDestructuring:
    def test_bb_fields(self):
        translated = translate("[u, m, l] = ta.bb(close, 20, 2.0)")

        statements = translated.program.statements
        assert len(statements) == 4
        hidden = statements[0]
        assert hidden.target.startswith("__bb")
        assert statements[1] == Assign("u", Attribute(Name(hidden.target), "upper"))
        assert statements[2] == Assign("m", Attribute(Name(hidden.target), "middle"))
        assert statements[3] == Assign("l", Attribute(Name(hidden.target), "lower"))

    def test_macd_fields(self):
        translated = translate("[a, b, c] = ta.macd(close, 12, 26, 9)")

        fields = [s.value.attr for s in translated.program.statements[1:]]
        assert fields == ["macd", "signal", "hist"]

    def test_count_mismatch(self):
        with pytest.raises(PineSyntaxError) as exc_info:
            translate("[a, b] = ta.bb(close, 20, 2)")

        assert "3 values" in exc_info.value.message


class TestTaExpansion:
    @pytest.mark.parametrize(
        "source, expected",
        [
            ("ta.atr(14)", "ta.atr(high, low, close, 14)"),
            ("ta.adx(14)", "ta.adx(high, low, close, 14)"),
            ("ta.vwap(close)", "ta.vwap(close, high, low, volume)"),
            ("ta.vwap", "ta.vwap(hlc3, high, low, volume)"),
            ("ta.change(close)", "ta.change(close, 1)"),
            ("ta.tr", "ta.tr(high, low, close)"),
            ("ta.tr(true)", "ta.tr(high, low, close)"),
            ("ta.obv", "ta.obv(close, volume)"),
            ("ta.pivothigh(2, 2)", "ta.pivothigh(high, 2, 2)"),
            ("ta.highest(10)", "ta.highest(high, 10)"),
            ("ta.vwma(close, 5)", "ta.vwma(close, 5, volume)"),
            ("ta.sma(close, 5)", "ta.sma(close, 5)"),
        ],
    )
    def test_short_forms(self, source, expected):
        translated = translate(f"x = {source}")

        assert render(translated.program) == f"x = {expected}\n"


class TestSinks:
    """plot/hline/bgcolor/fill normalize to Sink nodes."""

    def test_plot_defaults(self):
        sink = _sinks(translate("plot(close)"))[0]

        assert sink.kind == "plot"
        assert sink.arg("title") == Const("close")
        assert sink.arg("color") == Const(PRIMARY_BLUE)
        assert sink.arg("linewidth") == Const(1)
        assert sink.arg("style") == Const("line")

    def test_plot_positional_arguments(self):
        sink = _sinks(translate('plot(close, "C", color.red, 2)'))[0]

        assert sink.arg("title") == Const("C")
        assert sink.arg("color") == Const("#EF4444")
        assert sink.arg("linewidth") == Const(2)

    def test_plot_expression_title_numbered(self):
        sinks = _sinks(translate("plot(close)\nplot(close * 2)"))

        assert sinks[1].arg("title") == Const("Plot 2")

    def test_plot_style_constant(self):
        sink = _sinks(translate("plot(close, style=plot.style_histogram)"))[0]

        assert sink.arg("style") == Const("histogram")

    def test_hline_defaults(self):
        sink = _sinks(translate("hline(70)"))[0]

        assert sink.arg("title") == Const("Level 70")
        assert sink.arg("color") == Const(HLINE_GRAY)

    def test_hline_float_title(self):
        sink = _sinks(translate("hline(20.5)"))[0]

        assert sink.arg("title") == Const("Level 20.5")

    def test_bgcolor_keeps_condition(self):
        sink = _sinks(translate("bgcolor(close > open ? color.green : na)"))[0]

        color = sink.arg("color")
        assert isinstance(color, Ternary)
        assert color.when_true == Const("#22C55E")
        assert color.when_false.is_na

    def test_fill(self):
        translated = translate("p1 = plot(high)\np2 = plot(low)\nfill(p1, p2)")

        sink = _sinks(translated)[0]
        assert sink.kind == "fill"
        assert sink.arg("plot1") == Name("p1")

    def test_missing_required_argument(self):
        with pytest.raises(PineSyntaxError) as exc_info:
            translate("plot()")

        assert "series" in exc_info.value.message


class TestColors:
    def test_palette_lookup(self):
        translated = translate("c = color.teal")

        assert _value(translated, "c") == Const("#14B8A6")

    def test_color_new_folded(self):
        translated = translate("c = color.new(color.red, 0)")

        assert _value(translated, "c") == Const("#EF4444FF")

    def test_color_new_dynamic_left_alone(self):
        translated = translate("t = 50\nc = color.new(color.red, t)")

        value = _value(translated, "c")
        assert isinstance(value, Call)


class TestNa:
    def test_na_value(self):
        value = _value(translate("x = na"), "x")

        assert isinstance(value, Const)
        assert math.isnan(value.value)

    def test_na_call(self):
        value = _value(translate("x = na(close)"), "x")

        assert value == Call(Name("na_fn"), (Name("close"),))


class TestIdempotence:
    """Translating render() output reproduces the same program."""

    SCRIPTS = [
        '//@version=6\nindicator("x", overlay=true)\nf = ta.sma(close, 3)\n'
        's = ta.sma(close, 5)\nplot(f, "Fast", color.blue)\nplot(s, "Slow", color.red)',
        "[u, m, l] = ta.bb(close, 20, 2.0)\nplot(u)\nplot(m)\nplot(l)",
        "// comment\nlen = input.int(14)\nr = ta.rsi(close, len)\nhline(70, 'OB')\n"
        "bgcolor(r > 70 ? color.new(color.red, 80) : na)",
        "x = ta.tr\ny = ta.atr(14)\nplot(x - y, style=plot.style_columns, linewidth=2)",
        "mid(a, b) => (a + b) / 2\nvar float total = 0\ntotal := total + 1\n"
        "plot(not na(close) and close > 0 ? mid(high, low) : -1)",
        "s = 'a \"quoted\" é'\nc = #aabbcc\nplot(close[1] % 2)",
    ]

    @pytest.mark.parametrize("script", SCRIPTS)
    def test_translate_render_fixed_point(self, script):
        first = translate(script)
        rendered = first.render()
        second = translate(rendered)

        assert second.program == first.program
        assert second.render() == rendered

    def test_version_header_rendered(self):
        assert translate("//@version=5\nx = 1").render().startswith("//@version=5\n")
