"""Pydantic models for request/response validation.

This package re-exports all schemas so imports like `from app.schemas import X`
work regardless of the defining module.
"""

# ===========================================
# Common: Health
# ===========================================
from app.schemas.common import (
    HealthResponse,
)

# ===========================================
# Pine Script Runner
# ===========================================
from app.schemas.pine import (
    BarSchema,
    DiagnosticSchema,
    ExecutionMetricsSchema,
    MockBarsResponse,
    PineRunError,
    PineRunRequest,
    PineRunResponse,
    PineValidateRequest,
    PineValidateResponse,
    PlotResultSchema,
)

__all__ = [
    # Common
    "HealthResponse",
    # Pine
    "BarSchema",
    "DiagnosticSchema",
    "ExecutionMetricsSchema",
    "MockBarsResponse",
    "PineRunError",
    "PineRunRequest",
    "PineRunResponse",
    "PineValidateRequest",
    "PineValidateResponse",
    "PlotResultSchema",
]
