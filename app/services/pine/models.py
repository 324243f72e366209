"""
Pine Script Runner models.

Design decisions:
- Dataclasses (not Pydantic) - explicit serialization, frozen for immutables
- Series values are numpy float64 arrays; NaN is the `na` sentinel
- to_dict() emits the chart renderer's wire shape (camelCase keys, NaN -> None)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np


# =============================================================================
# Enums
# =============================================================================


class DiagnosticKind(str, Enum):
    """Where a diagnostic originated."""

    SYNTAX = "syntax"
    VALIDATION = "validation"
    RUNTIME = "runtime"


class Severity(str, Enum):
    """Diagnostic severity. Only ERROR blocks execution."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class PlotKind(str, Enum):
    """Kind of emitted indicator."""

    LINE = "line"
    HLINE = "hline"
    BGCOLOR = "bgcolor"
    HISTOGRAM = "histogram"
    CIRCLES = "circles"
    STEPLINE = "stepline"
    AREA = "area"
    COLUMNS = "columns"
    CROSS = "cross"

    @property
    def wire_kind(self) -> str:
        """Renderer kind: plot styles collapse to "line" (style goes to plotType)."""
        if self in (PlotKind.HLINE, PlotKind.BGCOLOR):
            return self.value
        return PlotKind.LINE.value


# =============================================================================
# Bar (frozen - immutable market data)
# =============================================================================


@dataclass(frozen=True)
class Bar:
    """One OHLCV observation. timestamp is epoch milliseconds."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Bar:
        return cls(
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume", 0.0)),
        )


# =============================================================================
# Diagnostic (frozen - immutable finding)
# =============================================================================


@dataclass(frozen=True)
class Diagnostic:
    """Single validation, syntax or runtime finding."""

    kind: DiagnosticKind
    severity: Severity
    line: int
    message: str
    column: Optional[int] = None
    suggestion: Optional[str] = None
    code: Optional[str] = None  # "E101", "W101", "R001"

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def format(self) -> str:
        """Render as ``Line N: message`` plus an optional suggestion bullet."""
        text = f"Line {self.line}: {self.message}"
        if self.suggestion:
            text += f"\n  • {self.suggestion}"
        return text

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "line": self.line,
            "message": self.message,
        }
        if self.column is not None:
            d["column"] = self.column
        if self.suggestion is not None:
            d["suggestion"] = self.suggestion
        if self.code is not None:
            d["code"] = self.code
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Diagnostic:
        return cls(
            kind=DiagnosticKind(data["kind"]),
            severity=Severity(data["severity"]),
            line=data["line"],
            message=data["message"],
            column=data.get("column"),
            suggestion=data.get("suggestion"),
            code=data.get("code"),
        )


@dataclass
class DiagnosticSummary:
    """Counts per severity."""

    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def to_dict(self) -> dict:
        return {
            "errors": self.error_count,
            "warnings": self.warning_count,
            "info": self.info_count,
        }

    @classmethod
    def from_diagnostics(cls, diagnostics: list[Diagnostic]) -> DiagnosticSummary:
        return cls(
            error_count=sum(1 for d in diagnostics if d.severity == Severity.ERROR),
            warning_count=sum(
                1 for d in diagnostics if d.severity == Severity.WARNING
            ),
            info_count=sum(1 for d in diagnostics if d.severity == Severity.INFO),
        )


# =============================================================================
# Script Input (recorded by the translator)
# =============================================================================


@dataclass(frozen=True)
class ScriptInput:
    """An input.* binding folded to its default by the translator."""

    name: str  # variable the input is bound to
    function: str  # "input.int", "input"
    title: Optional[str] = None
    default: Optional[int | float | bool | str] = None
    line: Optional[int] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"name": self.name, "function": self.function}
        if self.title is not None:
            d["title"] = self.title
        if self.default is not None:
            d["default"] = self.default
        if self.line is not None:
            d["line"] = self.line
        return d


# =============================================================================
# Plot Result
# =============================================================================


def _json_float(value: float) -> Optional[float]:
    return None if math.isnan(value) or math.isinf(value) else float(value)


@dataclass(eq=False)
class PlotResult:
    """
    One emitted indicator series.

    `values` always has one entry per bar. `hline_value` is set only for
    kind=HLINE.
    """

    name: str
    values: np.ndarray
    kind: PlotKind = PlotKind.LINE
    color: Optional[str] = None
    line_width: Optional[int] = None
    hline_value: Optional[float] = None

    @property
    def finite_count(self) -> int:
        return int(np.isfinite(self.values).sum())

    @property
    def last_finite(self) -> Optional[float]:
        finite = self.values[np.isfinite(self.values)]
        if finite.size == 0:
            return None
        return float(finite[-1])

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "name": self.name,
            "values": [_json_float(v) for v in self.values.tolist()],
            "kind": self.kind.wire_kind,
        }
        if self.color is not None:
            d["color"] = self.color
        if self.line_width is not None:
            d["lineWidth"] = self.line_width
        if self.hline_value is not None:
            d["hlineValue"] = self.hline_value
        if self.kind not in (PlotKind.HLINE, PlotKind.BGCOLOR):
            d["plotType"] = self.kind.value
        return d


# =============================================================================
# Execution Metrics (frozen)
# =============================================================================


@dataclass(frozen=True)
class ExecutionMetrics:
    """Timing and size of the most recent run."""

    start_ms: float
    end_ms: float
    elapsed_ms: float
    bar_count: int
    result_count: int
    script_version: int

    def to_dict(self) -> dict:
        return {
            "startMs": self.start_ms,
            "endMs": self.end_ms,
            "elapsedMs": self.elapsed_ms,
            "barCount": self.bar_count,
            "resultCount": self.result_count,
            "scriptVersion": self.script_version,
        }


# =============================================================================
# Run Result
# =============================================================================


@dataclass
class PineRunResult:
    """Full output of one execution: results plus non-blocking diagnostics."""

    results: list[PlotResult] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    metrics: Optional[ExecutionMetrics] = None
    title: Optional[str] = None

    @property
    def summary(self) -> DiagnosticSummary:
        return DiagnosticSummary.from_diagnostics(self.diagnostics)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "results": [r.to_dict() for r in self.results],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }
