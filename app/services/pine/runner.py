"""
Pine Script runner - public entry points.

Flow:
1. Validate the raw text (blocking on ERROR diagnostics)
2. Translate (lex, parse, rewrite)
3. Build the bar series and environment, evaluate once
4. Record metrics and return results plus non-blocking diagnostics

The debug flag and the last-metrics record are process-wide and advisory;
nothing in a run depends on a previous run.
"""

from __future__ import annotations

import time
from typing import Iterable, Optional

import structlog

from app.services.pine.bars import BarLike, BarSeries, generate_mock_ohlc
from app.services.pine.constants import (
    DIAG_I101_VERSION_DETECTED,
    DIAG_I102_FILL_RECORDED,
    DIAG_R001_RUNTIME,
    DIAG_S001_SYNTAX,
    RUNTIME_ERROR_PREFIX,
)
from app.services.pine.errors import PineRuntimeError, PineScriptError, PineSyntaxError
from app.services.pine.interpreter import Interpreter
from app.services.pine.models import (
    Diagnostic,
    DiagnosticKind,
    ExecutionMetrics,
    PineRunResult,
    PlotResult,
    Severity,
)
from app.services.pine.translator import TranslatedScript, translate
from app.services.pine.validator import validate

logger = structlog.get_logger(__name__)

_debug_mode = False
_last_metrics: Optional[ExecutionMetrics] = None

__all__ = [
    "execute_pine_script",
    "format_diagnostics",
    "generate_mock_ohlc",
    "get_last_metrics",
    "is_debug_mode",
    "run_pine_script",
    "set_debug_mode",
    "validate_script",
]


# =============================================================================
# Process-wide State
# =============================================================================


def set_debug_mode(enabled: bool) -> None:
    """Turn debug logging (and info diagnostics) on or off."""
    global _debug_mode
    _debug_mode = bool(enabled)
    logger.info("pine_debug_mode_set", enabled=_debug_mode)


def is_debug_mode() -> bool:
    return _debug_mode


def get_last_metrics() -> Optional[ExecutionMetrics]:
    """Metrics of the most recent successful run, None before the first."""
    return _last_metrics


def _reset_state() -> None:
    """Restore defaults (tests)."""
    global _debug_mode, _last_metrics
    _debug_mode = False
    _last_metrics = None


# =============================================================================
# Validation
# =============================================================================


def validate_script(script: str) -> list[Diagnostic]:
    """
    Line-level diagnostics for a script.

    Never raises. The result depends only on the script text, not on debug
    mode or previous runs.
    """
    return validate(script).diagnostics


def format_diagnostics(diagnostics: Iterable[Diagnostic]) -> str:
    """Newline-joined ``Line N: message`` entries with suggestion bullets."""
    return "\n".join(d.format() for d in diagnostics)


# =============================================================================
# Execution
# =============================================================================


def _translate_or_reject(script: str) -> TranslatedScript:
    try:
        return translate(script)
    except PineSyntaxError as e:
        diagnostic = Diagnostic(
            kind=DiagnosticKind.SYNTAX,
            severity=Severity.ERROR,
            line=e.line,
            column=e.column,
            message=e.message,
            code=DIAG_S001_SYNTAX,
        )
        logger.info("pine_syntax_error", line=e.line, error=e.message)
        raise PineScriptError(
            diagnostic.format(), diagnostics=[diagnostic], code="PINE_SYNTAX_ERROR"
        ) from e
    except RecursionError as e:
        diagnostic = Diagnostic(
            kind=DiagnosticKind.SYNTAX,
            severity=Severity.ERROR,
            line=1,
            message="Script is nested too deeply to parse",
            code=DIAG_S001_SYNTAX,
        )
        logger.info("pine_syntax_error", line=1, error="recursion limit")
        raise PineScriptError(
            diagnostic.format(), diagnostics=[diagnostic], code="PINE_SYNTAX_ERROR"
        ) from e


def _runtime_rejection(error: PineRuntimeError) -> PineScriptError:
    diagnostic = Diagnostic(
        kind=DiagnosticKind.RUNTIME,
        severity=Severity.ERROR,
        line=error.line or 1,
        message=f"{RUNTIME_ERROR_PREFIX} {error.message}",
        code=DIAG_R001_RUNTIME,
    )
    return PineScriptError(
        diagnostic.format(), diagnostics=[diagnostic], code="PINE_RUNTIME_ERROR"
    )


def _info(line: int, message: str, code: str) -> Diagnostic:
    return Diagnostic(
        kind=DiagnosticKind.VALIDATION,
        severity=Severity.INFO,
        line=line,
        message=message,
        code=code,
    )


def _log_result_summary(results: list[PlotResult]) -> None:
    for result in results:
        logger.debug(
            "pine_result_summary",
            name=result.name,
            kind=result.kind.value,
            finite_count=result.finite_count,
            last_finite=result.last_finite,
        )


def execute_pine_script(script: str, bars: Iterable[BarLike]) -> PineRunResult:
    """
    Validate, translate and run a script against a bar series.

    Args:
        script: Pine Script source text
        bars: Bar objects or dicts with timestamp/open/high/low/close/volume

    Returns:
        PineRunResult with results in emission order and the non-blocking
        diagnostics (warnings, plus info entries in debug mode)

    Raises:
        PineScriptError: On any ERROR diagnostic, syntax error or runtime
            failure; no partial results are returned
    """
    global _last_metrics

    debug = _debug_mode
    start_ms = time.time() * 1000
    started = time.perf_counter()

    validation = validate(script)
    if validation.has_errors:
        logger.info(
            "pine_validation_failed",
            error_count=validation.error_count,
            codes=[d.code for d in validation.errors],
        )
        raise PineScriptError(
            format_diagnostics(validation.errors), diagnostics=validation.errors
        )
    diagnostics = list(validation.diagnostics)

    translated = _translate_or_reject(script)
    version = translated.effective_version
    if debug:
        logger.debug("pine_version_detected", version=version)
        logger.debug("pine_translated", source=translated.render())
        diagnostics.append(
            _info(1, f"Detected Pine Script version {version}", DIAG_I101_VERSION_DETECTED)
        )

    try:
        series = BarSeries.from_bars(bars)
        interpreter = Interpreter(series, debug=debug)
        results = interpreter.run(translated.program)
    except PineRuntimeError as e:
        logger.warning("pine_runtime_error", line=e.line, error=e.message)
        raise _runtime_rejection(e) from e

    if debug:
        for fill in interpreter.fills:
            diagnostics.append(
                _info(
                    fill.line,
                    f"fill() between '{fill.plot1}' and '{fill.plot2}' recorded "
                    "without a result entry",
                    DIAG_I102_FILL_RECORDED,
                )
            )

    elapsed_ms = (time.perf_counter() - started) * 1000
    metrics = ExecutionMetrics(
        start_ms=start_ms,
        end_ms=start_ms + elapsed_ms,
        elapsed_ms=elapsed_ms,
        bar_count=len(series),
        result_count=len(results),
        script_version=version,
    )
    _last_metrics = metrics

    if debug:
        logger.debug("pine_run_timing", elapsed_ms=round(elapsed_ms, 3))
        _log_result_summary(results)

    logger.info(
        "pine_run_completed",
        title=translated.title,
        bar_count=metrics.bar_count,
        result_count=metrics.result_count,
        warning_count=validation.warning_count,
        elapsed_ms=round(elapsed_ms, 3),
    )

    return PineRunResult(
        results=results,
        diagnostics=diagnostics,
        metrics=metrics,
        title=translated.title,
    )


async def run_pine_script(script: str, bars: Iterable[BarLike]) -> list[PlotResult]:
    """
    Execute a script end to end and return its plot results.

    Raises:
        PineScriptError: On ERROR diagnostics or a runtime failure
    """
    return execute_pine_script(script, bars).results

