"""
Runtime value helpers.

Series are numpy arrays (float64, or bool for conditions); scalars are plain
Python numbers, bools and strings. `na` is NaN and is only ever tested with
is_na(), never with ==.
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np

from app.services.pine.errors import PineRuntimeError

NA = float("nan")


def is_series(value: Any) -> bool:
    return isinstance(value, np.ndarray)


def is_na(value: Any) -> Any:
    """
    The `na()` predicate.

    Scalars return a bool; series return an elementwise bool array.
    None, NaN and object-array NaN entries (e.g. conditional colors) are na.
    """
    if value is None:
        return True
    if isinstance(value, np.ndarray):
        if value.dtype == object:
            return np.array([bool(is_na(v)) for v in value], dtype=bool)
        if value.dtype == bool:
            return np.zeros(value.shape, dtype=bool)
        return np.isnan(value.astype(float))
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isnan(value)
    return False


def nz(value: Any, replacement: Any = 0) -> Any:
    """Replace na with `replacement` (elementwise for series)."""
    if isinstance(value, np.ndarray):
        mask = is_na(value)
        if not mask.any():
            return value
        out = value.astype(float if value.dtype != object else object, copy=True)
        out[mask] = replacement if not is_series(replacement) else replacement[mask]
        return out
    return replacement if is_na(value) else value


def to_series(value: Any, length: int) -> np.ndarray:
    """Broadcast a scalar (or pass through a series) as a float64 array."""
    if isinstance(value, np.ndarray):
        if value.shape != (length,):
            raise PineRuntimeError(
                f"Series length mismatch: expected {length}, got {value.shape[0]}"
            )
        if value.dtype == object:
            return np.array([NA if is_na(v) else float(v) for v in value])
        return value.astype(float)
    if value is None:
        return np.full(length, NA)
    if isinstance(value, (bool, int, float, np.number)):
        return np.full(length, float(value))
    raise PineRuntimeError(f"Cannot use {type(value).__name__} value as a series")


def to_bool(value: Any) -> Any:
    """Pine truthiness: na and 0 are false."""
    if isinstance(value, np.ndarray):
        if value.dtype == bool:
            return value
        if value.dtype == object:
            return np.array([to_bool(v) for v in value], dtype=bool)
        with np.errstate(invalid="ignore"):
            return np.nan_to_num(value.astype(float), nan=0.0) != 0.0
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def last_value(value: Any) -> Any:
    """Collapse a series to its last element (simple-value contexts)."""
    if isinstance(value, np.ndarray):
        if value.size == 0:
            return NA
        item = value[-1]
        return item.item() if hasattr(item, "item") else item
    return value


def as_int(value: Any, what: str = "length") -> int:
    """Coerce a simple numeric value to int; series use their last value."""
    value = last_value(value)
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        raise PineRuntimeError(f"{what} must be a number, got {value!r}")
    if math.isnan(value):
        raise PineRuntimeError(f"{what} must not be na")
    return int(value)


def shift(value: Any, offset: int) -> Any:
    """History reference x[offset]: series shifted right, na padded."""
    if offset < 0:
        raise PineRuntimeError(f"History offset must be >= 0, got {offset}")
    if not isinstance(value, np.ndarray):
        return value
    if offset == 0:
        return value
    if value.dtype == object:
        out = np.empty(value.shape, dtype=object)
        out[:] = NA
    elif value.dtype == bool:
        out = np.zeros(value.shape, dtype=bool)
    else:
        out = np.full(value.shape, NA)
    if offset < value.shape[0]:
        out[offset:] = value[:-offset]
    return out


def select(condition: Any, when_true: Any, when_false: Any) -> Any:
    """Elementwise ternary over a series condition."""
    cond = to_bool(condition)
    if not isinstance(cond, np.ndarray):
        return when_true if cond else when_false

    n = cond.shape[0]
    if _is_text(when_true) or _is_text(when_false):
        out = np.empty(n, dtype=object)
        for i in range(n):
            source = when_true if cond[i] else when_false
            out[i] = source[i] if isinstance(source, np.ndarray) else source
        return out

    if _is_boolish(when_true) and _is_boolish(when_false):
        return np.where(cond, when_true, when_false).astype(bool)
    return np.where(cond, to_series(when_true, n), to_series(when_false, n))


def divide(left: Any, right: Any) -> Any:
    """Division where x/0 is na instead of an error or inf."""
    if not isinstance(left, np.ndarray) and not isinstance(right, np.ndarray):
        if right == 0 or is_na(right) or is_na(left):
            return NA
        return left / right
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.true_divide(
            np.asarray(left, dtype=float), np.asarray(right, dtype=float)
        )
    out[~np.isfinite(out)] = NA
    return out


def _is_text(value: Any) -> bool:
    if isinstance(value, str):
        return True
    return isinstance(value, np.ndarray) and value.dtype == object


def _is_boolish(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, np.ndarray) and value.dtype == bool
