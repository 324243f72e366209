"""Pine Script Runner exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from app.services.pine.models import Diagnostic


class PineSyntaxError(Exception):
    """Script text could not be tokenized or parsed."""

    def __init__(self, message: str, line: int, column: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column


class PineRuntimeError(Exception):
    """Error raised while evaluating a translated script."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line


class BarDataError(Exception):
    """Error building bars from tabular OHLCV data."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PineScriptError(Exception):
    """
    Rejection of a run_pine_script() call.

    Carries every blocking diagnostic; the message is the newline-joined
    ``Line N: message`` list with suggestion bullets.
    """

    def __init__(
        self,
        message: str,
        diagnostics: Optional[list[Diagnostic]] = None,
        code: str = "PINE_VALIDATION_ERROR",
    ):
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics or []
        self.code = code
