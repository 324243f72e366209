"""
Unit tests for the runner entry points.

Covers the end-to-end scenarios, the result laws (length, purity, emission
order), rejection paths, metrics and debug mode.
"""

import math

import numpy as np
import pytest

from app.services.pine import (
    PineScriptError,
    PlotKind,
    Severity,
    execute_pine_script,
    generate_mock_ohlc,
    get_last_metrics,
    is_debug_mode,
    run_pine_script,
    set_debug_mode,
    validate_script,
)
from app.services.pine.constants import (
    DIAG_I101_VERSION_DETECTED,
    DIAG_I102_FILL_RECORDED,
    DIAG_R001_RUNTIME,
    DIAG_S001_SYNTAX,
    DIAG_W101_NO_VERSION,
)
from app.services.pine.models import DiagnosticKind

SMA_CROSS = (
    '//@version=6\nindicator("x", overlay=true)\nf = ta.sma(close, 3)\n'
    's = ta.sma(close, 5)\nplot(f, "Fast", color.blue)\nplot(s, "Slow", color.red)'
)

KITCHEN_SINK = """//@version=5
indicator("Kitchen sink")
len = input.int(14, "Length")
src = input.source(close, "Source")
r = ta.rsi(src, len)
[m, s, h] = ta.macd(src, 12, 26, 9)
atr = ta.atr(len)
plot(r, "RSI", color.purple)
plot(h, "Hist", color.new(color.teal, 50), style=plot.style_histogram)
hline(70, "OB")
hline(30, "OS")
bgcolor(r > 70 ? color.new(color.red, 80) : na)
plot(ta.vwap, "VWAP")
plot(ta.obv, "OBV")
plot(atr, "ATR", linewidth=2)
"""


class TestSeedScenarios:
    """End-to-end scenarios."""

    @pytest.mark.asyncio
    async def test_sma_crossover(self, mock_bars):
        results = await run_pine_script(SMA_CROSS, mock_bars)

        assert [r.name for r in results] == ["Fast", "Slow"]
        fast, slow = results
        assert np.isnan(fast.values[:2]).all()
        assert np.isnan(slow.values[:4]).all()
        assert not np.isnan(fast.values[2])
        assert len(fast.values) == len(slow.values) == len(mock_bars)

    @pytest.mark.asyncio
    async def test_hline(self, mock_bars):
        results = await run_pine_script('hline(70, "OB")', mock_bars)

        assert len(results) == 1
        hline = results[0]
        assert hline.name == "OB"
        assert hline.kind == PlotKind.HLINE
        assert hline.hline_value == 70
        assert (hline.values == 70).all()

    @pytest.mark.asyncio
    async def test_bb_destructuring(self, mock_bars):
        script = "[u, m, l] = ta.bb(close, 20, 2.0)\nplot(u)\nplot(m)\nplot(l)"

        results = await run_pine_script(script, mock_bars)

        assert len(results) == 3
        u, m, l = (r.values for r in results)
        finite = np.isfinite(m)
        assert finite.any()
        assert (u[finite] >= m[finite]).all()
        assert (m[finite] >= l[finite]).all()

    @pytest.mark.asyncio
    async def test_reserved_identifier(self, mock_bars):
        script = "return = close"

        diagnostics = validate_script(script)
        errors = [d for d in diagnostics if d.severity == Severity.ERROR]
        assert errors and errors[0].line == 1

        with pytest.raises(PineScriptError) as exc_info:
            await run_pine_script(script, mock_bars)
        assert exc_info.value.code == "PINE_VALIDATION_ERROR"
        assert exc_info.value.message.startswith("Line 1:")

    @pytest.mark.asyncio
    async def test_missing_version(self, mock_bars):
        script = "plot(close)"

        diagnostics = validate_script(script)
        assert [d.severity for d in diagnostics] == [Severity.WARNING]
        assert diagnostics[0].code == DIAG_W101_NO_VERSION

        result = execute_pine_script(script, mock_bars)
        assert len(result.results) == 1
        assert result.results[0].kind == PlotKind.LINE
        assert [d.code for d in result.diagnostics] == [DIAG_W101_NO_VERSION]

    def test_unbalanced_parens(self):
        diagnostics = validate_script("plot(ta.sma(close, 10)")

        errors = [d for d in diagnostics if d.severity == Severity.ERROR]
        assert len(errors) == 1
        assert errors[0].line == 1
        assert "')'" in errors[0].suggestion


class TestLaws:
    def test_length_law(self, mock_bars):
        result = execute_pine_script(KITCHEN_SINK, mock_bars)

        assert len(result.results) == 8
        for plot in result.results:
            assert plot.values.shape == (len(mock_bars),)

    def test_pure_function_law(self, mock_bars):
        first = execute_pine_script(KITCHEN_SINK, mock_bars).results
        second = execute_pine_script(KITCHEN_SINK, mock_bars).results

        assert [r.name for r in first] == [r.name for r in second]
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.values, b.values)
            assert a.kind == b.kind
            assert a.color == b.color

    def test_emission_order_law(self, mock_bars):
        result = execute_pine_script(KITCHEN_SINK, mock_bars)

        assert [r.name for r in result.results] == [
            "RSI",
            "Hist",
            "OB",
            "OS",
            "bgcolor",
            "VWAP",
            "OBV",
            "ATR",
        ]

    def test_caller_bars_untouched(self, mock_bars):
        before = [b.close for b in mock_bars]

        execute_pine_script("x = close\nplot(x * 2)", mock_bars)
        assert [b.close for b in mock_bars] == before

    def test_dict_bars(self, short_bars):
        result = execute_pine_script("plot(close)", short_bars)

        assert result.results[0].values[-1] == 15.0


class TestRejections:
    def test_syntax_error(self, mock_bars):
        with pytest.raises(PineScriptError) as exc_info:
            execute_pine_script("//@version=6\nif close > open\n    plot(close)", mock_bars)

        error = exc_info.value
        assert error.code == "PINE_SYNTAX_ERROR"
        assert error.diagnostics[0].kind == DiagnosticKind.SYNTAX
        assert error.diagnostics[0].code == DIAG_S001_SYNTAX
        assert error.diagnostics[0].line == 2

    def test_deep_nesting_is_syntax_error(self, mock_bars):
        script = "x = " + "(" * 2000 + "1" + ")" * 2000 + "\nplot(x)"

        with pytest.raises(PineScriptError) as exc_info:
            execute_pine_script(script, mock_bars)

        error = exc_info.value
        assert error.code == "PINE_SYNTAX_ERROR"
        assert error.diagnostics[0].code == DIAG_S001_SYNTAX
        assert error.diagnostics[0].line == 1

    def test_recursion_limit_is_syntax_error(self, mock_bars, monkeypatch):
        from app.services.pine import runner

        def overflowing_translate(script):
            raise RecursionError("maximum recursion depth exceeded")

        monkeypatch.setattr(runner, "translate", overflowing_translate)

        with pytest.raises(PineScriptError) as exc_info:
            execute_pine_script("plot(close)", mock_bars)

        assert exc_info.value.code == "PINE_SYNTAX_ERROR"
        assert exc_info.value.diagnostics[0].kind == DiagnosticKind.SYNTAX

    def test_runtime_error_prefixed(self, mock_bars):
        with pytest.raises(PineScriptError) as exc_info:
            execute_pine_script("//@version=6\nplot(nosuch)", mock_bars)

        error = exc_info.value
        assert error.code == "PINE_RUNTIME_ERROR"
        diagnostic = error.diagnostics[0]
        assert diagnostic.kind == DiagnosticKind.RUNTIME
        assert diagnostic.code == DIAG_R001_RUNTIME
        assert diagnostic.message.startswith("Runtime Error:")
        assert diagnostic.line == 2
        assert error.message.startswith("Line 2: Runtime Error:")

    def test_empty_bars_is_runtime_error(self):
        with pytest.raises(PineScriptError) as exc_info:
            execute_pine_script("plot(close)", [])

        assert exc_info.value.diagnostics[0].kind == DiagnosticKind.RUNTIME

    def test_all_errors_in_message(self, mock_bars):
        with pytest.raises(PineScriptError) as exc_info:
            execute_pine_script("return = 1\nplot(close", mock_bars)

        error = exc_info.value
        assert len(error.diagnostics) == 2
        assert error.message.count("Line ") == 2
        assert "  • " in error.message

    def test_no_partial_results_recorded(self, mock_bars):
        with pytest.raises(PineScriptError):
            execute_pine_script("plot(close)\nplot(nosuch)", mock_bars)

        assert get_last_metrics() is None


class TestMetrics:
    def test_none_before_first_run(self):
        assert get_last_metrics() is None

    def test_recorded_after_run(self, mock_bars):
        execute_pine_script(SMA_CROSS, mock_bars)

        metrics = get_last_metrics()
        assert metrics.bar_count == len(mock_bars)
        assert metrics.result_count == 2
        assert metrics.script_version == 6
        assert metrics.elapsed_ms >= 0
        assert metrics.end_ms == pytest.approx(metrics.start_ms + metrics.elapsed_ms)

    def test_overwritten_by_next_run(self):
        execute_pine_script("plot(close)", generate_mock_ohlc(10))
        execute_pine_script("//@version=5\nplot(close)", generate_mock_ohlc(20))

        metrics = get_last_metrics()
        assert metrics.bar_count == 20
        assert metrics.script_version == 5

    def test_wire_shape(self, mock_bars):
        result = execute_pine_script(SMA_CROSS, mock_bars)

        payload = result.to_dict()
        assert set(payload["metrics"]) == {
            "startMs",
            "endMs",
            "elapsedMs",
            "barCount",
            "resultCount",
            "scriptVersion",
        }
        fast = payload["results"][0]
        assert fast["kind"] == "line"
        assert fast["plotType"] == "line"
        assert fast["lineWidth"] == 1
        assert fast["values"][0] is None


class TestDebugMode:
    def test_toggle(self):
        assert is_debug_mode() is False
        set_debug_mode(True)
        assert is_debug_mode() is True

    def test_info_diagnostics_only_in_debug(self, mock_bars):
        script = "//@version=6\np1 = plot(high)\np2 = plot(low)\nfill(p1, p2)"

        quiet = execute_pine_script(script, mock_bars)
        assert quiet.diagnostics == []

        set_debug_mode(True)
        loud = execute_pine_script(script, mock_bars)
        codes = [d.code for d in loud.diagnostics]
        assert codes == [DIAG_I101_VERSION_DETECTED, DIAG_I102_FILL_RECORDED]
        assert all(d.severity == Severity.INFO for d in loud.diagnostics)

    def test_results_identical_in_debug(self, mock_bars):
        quiet = execute_pine_script(KITCHEN_SINK, mock_bars).results
        set_debug_mode(True)
        loud = execute_pine_script(KITCHEN_SINK, mock_bars).results

        for a, b in zip(quiet, loud):
            np.testing.assert_array_equal(a.values, b.values)

    def test_validator_ignores_debug(self):
        script = "x = ta.sma\nplot(close"

        before = validate_script(script)
        set_debug_mode(True)
        assert validate_script(script) == before


class TestSummaryHelpers:
    def test_finite_count_and_last(self, mock_bars):
        result = execute_pine_script(SMA_CROSS, mock_bars)

        fast = result.results[0]
        assert fast.finite_count == len(mock_bars) - 2
        assert fast.last_finite == pytest.approx(float(fast.values[-1]))
        assert not math.isnan(fast.last_finite)


@pytest.mark.slow
class TestLargeSeries:
    def test_kitchen_sink_on_long_history(self):
        """Full indicator set over a long mock history."""
        bars = generate_mock_ohlc(50_000, seed=3)

        result = execute_pine_script(KITCHEN_SINK, bars)

        assert all(r.values.shape == (50_000,) for r in result.results)
        assert get_last_metrics().bar_count == 50_000
