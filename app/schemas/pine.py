"""Pine Script Runner request/response schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


# ===========================================
# Shared
# ===========================================


class BarSchema(BaseModel):
    """One OHLCV bar; timestamp is epoch milliseconds."""

    timestamp: int = Field(..., description="Bar open time (epoch ms)")
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0.0, ge=0)


class DiagnosticSchema(BaseModel):
    """A validation, syntax or runtime finding."""

    kind: Literal["syntax", "validation", "runtime"]
    severity: Literal["error", "warning", "info"]
    line: int = Field(..., description="1-based line number")
    message: str
    column: Optional[int] = Field(None, description="1-based column")
    suggestion: Optional[str] = Field(None, description="Suggested fix")
    code: Optional[str] = Field(None, description="Diagnostic code (E101, W101, ...)")


class PlotResultSchema(BaseModel):
    """One emitted indicator, in the chart renderer's wire shape."""

    name: str
    values: list[Optional[float]] = Field(
        ..., description="One value per bar; null where not available"
    )
    kind: Literal["line", "hline", "bgcolor"]
    color: Optional[str] = Field(None, description="Hex color, optional alpha suffix")
    lineWidth: Optional[int] = None
    hlineValue: Optional[float] = None
    plotType: Optional[
        Literal["line", "stepline", "histogram", "cross", "area", "columns", "circles"]
    ] = None


class ExecutionMetricsSchema(BaseModel):
    """Timing and size of a run."""

    startMs: float
    endMs: float
    elapsedMs: float
    barCount: int
    resultCount: int
    scriptVersion: int


# ===========================================
# Requests / Responses
# ===========================================


class PineValidateRequest(BaseModel):
    """Request body for POST /pine/validate."""

    script: str = Field(..., description="Pine Script source")


class PineValidateResponse(BaseModel):
    """Validator output."""

    valid: bool = Field(..., description="True when no error diagnostics")
    version: int = Field(..., description="Detected //@version (default 6)")
    diagnostics: list[DiagnosticSchema] = Field(default_factory=list)


class PineRunRequest(BaseModel):
    """Request body for POST /pine/run."""

    script: str = Field(..., description="Pine Script source")
    bars: Optional[list[BarSchema]] = Field(
        None, description="Bar series; mock bars are generated when omitted"
    )
    mock_bar_count: Optional[int] = Field(
        None, ge=1, description="Mock bar count when bars are omitted"
    )


class PineRunResponse(BaseModel):
    """Results, non-blocking diagnostics and metrics of a run."""

    title: Optional[str] = Field(None, description="indicator()/strategy() title")
    results: list[PlotResultSchema] = Field(default_factory=list)
    diagnostics: list[DiagnosticSchema] = Field(default_factory=list)
    metrics: Optional[ExecutionMetricsSchema] = None


class PineRunError(BaseModel):
    """Body of a 422 rejection."""

    message: str = Field(..., description="Line N: message entries, newline-joined")
    code: str = Field(..., description="PINE_VALIDATION_ERROR, PINE_SYNTAX_ERROR, ...")
    diagnostics: list[DiagnosticSchema] = Field(default_factory=list)


class MockBarsResponse(BaseModel):
    """Deterministic mock bars."""

    count: int
    seed: int
    bars: list[BarSchema]
