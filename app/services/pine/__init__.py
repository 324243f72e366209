"""
Pine Script Runner module.

Validates, translates and executes Pine Script (v5/v6 subset) indicator
scripts against a bar series and returns typed plot results.

Public API:
- Runner: run_pine_script, execute_pine_script, validate_script
- Debug/metrics: set_debug_mode, get_last_metrics
- Data: Bar, generate_mock_ohlc, load_bars_csv
- Models: PlotResult, Diagnostic, ExecutionMetrics, PineRunResult

Example usage:
    from app.services.pine import generate_mock_ohlc, run_pine_script

    results = await run_pine_script(
        "//@version=6\\nplot(ta.sma(close, 20))", generate_mock_ohlc(200)
    )
"""

from app.services.pine.constants import (
    DEFAULT_PINE_VERSION,
    ENGINE_VERSION,
    SUPPORTED_PINE_VERSIONS,
)
from app.services.pine.errors import (
    BarDataError,
    PineRuntimeError,
    PineScriptError,
    PineSyntaxError,
)
from app.services.pine.models import (
    # Enums
    DiagnosticKind,
    PlotKind,
    Severity,
    # Core models
    Bar,
    Diagnostic,
    DiagnosticSummary,
    ExecutionMetrics,
    PineRunResult,
    PlotResult,
    ScriptInput,
)
from app.services.pine.bars import (
    BarSeries,
    bars_from_frame,
    generate_mock_ohlc,
    load_bars_csv,
)
from app.services.pine.translator import (
    TranslatedScript,
    render,
    translate,
)
from app.services.pine.validator import (
    ValidationResult,
    ValidatorConfig,
    detect_version,
    validate,
)
from app.services.pine.runner import (
    execute_pine_script,
    format_diagnostics,
    get_last_metrics,
    is_debug_mode,
    run_pine_script,
    set_debug_mode,
    validate_script,
)

__all__ = [
    # Constants
    "ENGINE_VERSION",
    "DEFAULT_PINE_VERSION",
    "SUPPORTED_PINE_VERSIONS",
    # Errors
    "PineScriptError",
    "PineSyntaxError",
    "PineRuntimeError",
    "BarDataError",
    # Enums
    "DiagnosticKind",
    "Severity",
    "PlotKind",
    # Models
    "Bar",
    "Diagnostic",
    "DiagnosticSummary",
    "ExecutionMetrics",
    "PineRunResult",
    "PlotResult",
    "ScriptInput",
    # Bars
    "BarSeries",
    "bars_from_frame",
    "generate_mock_ohlc",
    "load_bars_csv",
    # Translator
    "TranslatedScript",
    "translate",
    "render",
    # Validator
    "ValidationResult",
    "ValidatorConfig",
    "detect_version",
    "validate",
    # Runner
    "run_pine_script",
    "execute_pine_script",
    "validate_script",
    "format_diagnostics",
    "set_debug_mode",
    "is_debug_mode",
    "get_last_metrics",
]
