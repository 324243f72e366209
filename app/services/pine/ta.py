"""
Technical analysis library (the `ta` namespace).

Every function is pure: numpy series in, a new series of the same length out.
Windowed functions emit NaN for the first `length - 1` bars (warmup).
Recursive smoothers (EMA, RMA) start at the first non-na input so they can be
chained onto warmed-up series.

All indicators implemented in numpy for determinism and minimal dependencies.
"""

from __future__ import annotations

import inspect
import math
from typing import Any, Callable

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from app.services.pine.errors import PineRuntimeError
from app.services.pine.values import NA, as_int, to_series

# Parameter names that take a series / a simple int / a simple float
SERIES_PARAMS = frozenset(
    ["source", "high", "low", "close", "volume", "source1", "source2"]
)
INT_PARAMS = frozenset(
    ["length", "fastlen", "slowlen", "siglen", "leftbars", "rightbars"]
)
FLOAT_PARAMS = frozenset(["mult"])


# =============================================================================
# Helpers
# =============================================================================


def _check_length(length: int, name: str = "length") -> int:
    if length < 1:
        raise PineRuntimeError(f"{name} must be >= 1, got {length}")
    return length


def _first_valid(x: np.ndarray) -> int | None:
    idx = np.flatnonzero(~np.isnan(x))
    return int(idx[0]) if idx.size else None


def _rolling(x: np.ndarray, length: int, reducer: Callable) -> np.ndarray:
    """Apply reducer(windows, axis=1) over trailing windows; NaN warmup."""
    out = np.full(x.shape[0], NA)
    if length <= x.shape[0]:
        out[length - 1 :] = reducer(sliding_window_view(x, length), axis=1)
    return out


def _prev(x: np.ndarray) -> np.ndarray:
    out = np.full(x.shape[0], NA)
    out[1:] = x[:-1]
    return out


def _safe_ratio(num: np.ndarray, den: np.ndarray, fallback: float) -> np.ndarray:
    """num/den where den != 0, `fallback` where den == 0, NaN stays NaN."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(den != 0, num / den, fallback)


# =============================================================================
# Moving Averages
# =============================================================================


def sma(source: np.ndarray, length: int) -> np.ndarray:
    """Simple moving average."""
    return _rolling(source, _check_length(length), np.mean)


def ema(source: np.ndarray, length: int) -> np.ndarray:
    """
    Exponential moving average.

    EMA[0] = x[0]; EMA[i] = k*x[i] + (1-k)*EMA[i-1] with k = 2/(length+1).
    """
    k = 2.0 / (_check_length(length) + 1)
    out = np.full(source.shape[0], NA)
    start = _first_valid(source)
    if start is None:
        return out
    out[start] = source[start]
    for i in range(start + 1, source.shape[0]):
        x = source[i]
        out[i] = out[i - 1] if math.isnan(x) else k * x + (1 - k) * out[i - 1]
    return out


def wma(source: np.ndarray, length: int) -> np.ndarray:
    """Linearly weighted moving average (newest bar weighs `length`)."""
    weights = np.arange(1, _check_length(length) + 1, dtype=float)
    return _rolling(
        source, length, lambda w, axis: (w @ weights) / weights.sum()
    )


def rma(source: np.ndarray, length: int) -> np.ndarray:
    """
    Wilder's smoothing.

    Seeded with the SMA of the first `length` values, then
    RMA[i] = a*x[i] + (1-a)*RMA[i-1] with a = 1/length.
    """
    alpha = 1.0 / _check_length(length)
    out = np.full(source.shape[0], NA)
    start = _first_valid(source)
    if start is None or start + length > source.shape[0]:
        return out
    seed = start + length - 1
    out[seed] = np.mean(source[start : seed + 1])
    for i in range(seed + 1, source.shape[0]):
        out[i] = alpha * source[i] + (1 - alpha) * out[i - 1]
    return out


def vwma(source: np.ndarray, length: int, volume: np.ndarray) -> np.ndarray:
    """Volume-weighted moving average."""
    return _safe_ratio(sma(source * volume, length), sma(volume, length), NA)


def hma(source: np.ndarray, length: int) -> np.ndarray:
    """Hull moving average."""
    _check_length(length)
    half = max(1, length // 2)
    root = max(1, int(math.floor(math.sqrt(length))))
    return wma(2 * wma(source, half) - wma(source, length), root)


# =============================================================================
# Dispersion
# =============================================================================


def stdev(source: np.ndarray, length: int) -> np.ndarray:
    """Population standard deviation over the last `length` values."""
    return _rolling(source, _check_length(length), np.std)


def dev(source: np.ndarray, length: int) -> np.ndarray:
    """Mean absolute deviation from the window mean."""

    def _mad(windows: np.ndarray, axis: int) -> np.ndarray:
        means = windows.mean(axis=axis, keepdims=True)
        return np.abs(windows - means).mean(axis=axis)

    return _rolling(source, _check_length(length), _mad)


# =============================================================================
# Oscillators
# =============================================================================


def rsi(source: np.ndarray, length: int = 14) -> np.ndarray:
    """
    Relative Strength Index.

    Average gain/loss seeded with the simple mean of the first `length`
    changes after the first non-na input, Wilder-smoothed afterwards. RSI is
    100 when average loss is 0. First value lands `length` bars after the
    first non-na input. A na change leaves the averages untouched and yields na.
    """
    _check_length(length)
    n = source.shape[0]
    out = np.full(n, NA)
    start = _first_valid(source)
    if start is None or n - start <= length:
        return out

    delta = np.diff(source[start:])
    missing = np.isnan(delta)
    gains = np.where(missing, NA, np.where(delta > 0, delta, 0.0))
    losses = np.where(missing, NA, np.where(delta < 0, -delta, 0.0))

    if missing[:length].all():
        return out
    avg_gain = np.nanmean(gains[:length])
    avg_loss = np.nanmean(losses[:length])
    if not missing[length - 1]:
        out[start + length] = _rsi_value(avg_gain, avg_loss)

    for j in range(length, delta.shape[0]):
        if missing[j]:
            continue
        avg_gain = (avg_gain * (length - 1) + gains[j]) / length
        avg_loss = (avg_loss * (length - 1) + losses[j]) / length
        out[start + j + 1] = _rsi_value(avg_gain, avg_loss)
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def stoch(
    source: np.ndarray, high: np.ndarray, low: np.ndarray, length: int
) -> np.ndarray:
    """Stochastic %K; 50 when the high/low range is zero."""
    hh = highest(high, length)
    ll = lowest(low, length)
    return _safe_ratio(100.0 * (source - ll), hh - ll, 50.0)


def cci(source: np.ndarray, length: int) -> np.ndarray:
    """Commodity Channel Index (0.015 constant, 0 when mean deviation is 0)."""
    mean = sma(source, length)
    mad = dev(source, length)
    return _safe_ratio(source - mean, 0.015 * mad, 0.0)


def wpr(
    high: np.ndarray, low: np.ndarray, close: np.ndarray, length: int
) -> np.ndarray:
    """Williams %R; -50 when the range is zero."""
    hh = highest(high, length)
    ll = lowest(low, length)
    return _safe_ratio(-100.0 * (hh - close), hh - ll, -50.0)


def macd(
    source: np.ndarray, fastlen: int, slowlen: int, siglen: int
) -> dict[str, np.ndarray]:
    """MACD line, signal line and histogram."""
    line = ema(source, fastlen) - ema(source, slowlen)
    signal = ema(line, siglen)
    return {"macd": line, "signal": signal, "hist": line - signal}


def bb(source: np.ndarray, length: int, mult: float) -> dict[str, np.ndarray]:
    """Bollinger Bands: SMA middle, +/- mult population stdevs."""
    middle = sma(source, length)
    width = mult * stdev(source, length)
    return {"upper": middle + width, "middle": middle, "lower": middle - width}


# =============================================================================
# Volatility / Trend
# =============================================================================


def tr(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    """True range; the first bar is simply high - low."""
    prev_close = _prev(close)
    hl = high - low
    out = np.maximum(
        hl, np.maximum(np.abs(high - prev_close), np.abs(low - prev_close))
    )
    if out.shape[0]:
        out[0] = hl[0]
    return out


def atr(
    high: np.ndarray, low: np.ndarray, close: np.ndarray, length: int
) -> np.ndarray:
    """Average true range (Wilder-smoothed)."""
    return rma(tr(high, low, close), length)


def adx(
    high: np.ndarray, low: np.ndarray, close: np.ndarray, length: int
) -> np.ndarray:
    """Average directional index via RMA of +DM, -DM and TR."""
    up = high - _prev(high)
    down = _prev(low) - low
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)

    smooth_tr = rma(tr(high, low, close), length)
    plus_di = _safe_ratio(100.0 * rma(plus_dm, length), smooth_tr, 0.0)
    minus_di = _safe_ratio(100.0 * rma(minus_dm, length), smooth_tr, 0.0)

    dx = _safe_ratio(100.0 * np.abs(plus_di - minus_di), plus_di + minus_di, 0.0)
    return rma(dx, length)


def obv(close: np.ndarray, volume: np.ndarray) -> np.ndarray:
    """On-balance volume seeded with the first bar's volume."""
    out = np.empty(close.shape[0])
    if out.shape[0] == 0:
        return out
    direction = np.sign(np.diff(close))
    out[0] = volume[0]
    out[1:] = volume[0] + np.cumsum(direction * volume[1:])
    return out


def vwap(
    source: np.ndarray, high: np.ndarray, low: np.ndarray, volume: np.ndarray
) -> np.ndarray:
    """Cumulative VWAP of the typical price; typical price while volume is 0."""
    typical = (high + low + source) / 3.0
    cum_pv = np.cumsum(typical * volume)
    cum_v = np.cumsum(volume)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(cum_v != 0, cum_pv / cum_v, typical)


# =============================================================================
# Rolling Extremes / Differences
# =============================================================================


def highest(source: np.ndarray, length: int) -> np.ndarray:
    return _rolling(source, _check_length(length), np.max)


def lowest(source: np.ndarray, length: int) -> np.ndarray:
    return _rolling(source, _check_length(length), np.min)


def change(source: np.ndarray, length: int = 1) -> np.ndarray:
    """x[i] - x[i-length]."""
    _check_length(length)
    out = np.full(source.shape[0], NA)
    out[length:] = source[length:] - source[:-length]
    return out


def mom(source: np.ndarray, length: int) -> np.ndarray:
    return change(source, length)


def roc(source: np.ndarray, length: int) -> np.ndarray:
    """Percent change over `length` bars; na when the reference is 0."""
    _check_length(length)
    out = np.full(source.shape[0], NA)
    ref = source[:-length]
    out[length:] = _safe_ratio(100.0 * (source[length:] - ref), ref, NA)
    return out


def cum(source: np.ndarray) -> np.ndarray:
    """Cumulative sum; na bars contribute nothing."""
    return np.nancumsum(source)


def rising(source: np.ndarray, length: int) -> np.ndarray:
    """True when x is above every one of the previous `length` values."""
    prev_high = highest(_prev(source), length)
    return source > prev_high


def falling(source: np.ndarray, length: int) -> np.ndarray:
    """True when x is below every one of the previous `length` values."""
    prev_low = lowest(_prev(source), length)
    return source < prev_low


# =============================================================================
# Events
# =============================================================================


def crossover(source1: np.ndarray, source2: np.ndarray) -> np.ndarray:
    """True on bars where source1 moves from <= source2 to > source2."""
    out = np.zeros(source1.shape[0], dtype=bool)
    out[1:] = (source1[:-1] <= source2[:-1]) & (source1[1:] > source2[1:])
    return out


def crossunder(source1: np.ndarray, source2: np.ndarray) -> np.ndarray:
    """True on bars where source1 moves from >= source2 to < source2."""
    out = np.zeros(source1.shape[0], dtype=bool)
    out[1:] = (source1[:-1] >= source2[:-1]) & (source1[1:] < source2[1:])
    return out


def _pivot(
    source: np.ndarray, leftbars: int, rightbars: int, compare: Callable
) -> np.ndarray:
    if leftbars < 0 or rightbars < 0:
        raise PineRuntimeError("Pivot bar counts must be >= 0")
    span = leftbars + rightbars + 1
    out = np.full(source.shape[0], NA)
    if span > source.shape[0]:
        return out
    windows = sliding_window_view(source, span)
    center = windows[:, leftbars]
    others = np.delete(windows, leftbars, axis=1)
    # Strict comparison: ties are never pivots
    is_pivot = np.all(compare(others, center[:, None]), axis=1)
    out[span - 1 :] = np.where(is_pivot, center, NA)
    return out


def pivothigh(source: np.ndarray, leftbars: int, rightbars: int) -> np.ndarray:
    """Pivot value at bar i-rightbars, reported on bar i; na otherwise."""
    return _pivot(source, leftbars, rightbars, np.less)


def pivotlow(source: np.ndarray, leftbars: int, rightbars: int) -> np.ndarray:
    return _pivot(source, leftbars, rightbars, np.greater)


# =============================================================================
# Namespace
# =============================================================================

TA_FUNCTION_TABLE: dict[str, Callable[..., Any]] = {
    "sma": sma,
    "ema": ema,
    "wma": wma,
    "rma": rma,
    "vwma": vwma,
    "hma": hma,
    "stdev": stdev,
    "dev": dev,
    "rsi": rsi,
    "stoch": stoch,
    "cci": cci,
    "wpr": wpr,
    "macd": macd,
    "bb": bb,
    "tr": tr,
    "atr": atr,
    "adx": adx,
    "obv": obv,
    "vwap": vwap,
    "highest": highest,
    "lowest": lowest,
    "change": change,
    "mom": mom,
    "roc": roc,
    "cum": cum,
    "rising": rising,
    "falling": falling,
    "crossover": crossover,
    "crossunder": crossunder,
    "pivothigh": pivothigh,
    "pivotlow": pivotlow,
}


def bind_ta_function(func: Callable[..., Any], bar_count: int) -> Callable[..., Any]:
    """
    Wrap a ta function for script calls.

    Series parameters accept scalars (broadcast to bar_count); length-like
    parameters are coerced to simple ints; keyword arguments use the
    parameter names above.
    """
    signature = inspect.signature(func)
    name = func.__name__

    def call(*args: Any, **kwargs: Any) -> Any:
        try:
            bound = signature.bind(*args, **kwargs)
        except TypeError as e:
            raise PineRuntimeError(f"ta.{name}: {e}")
        bound.apply_defaults()
        coerced = {}
        for param, value in bound.arguments.items():
            if param in SERIES_PARAMS:
                coerced[param] = to_series(value, bar_count)
            elif param in INT_PARAMS:
                coerced[param] = as_int(value, f"ta.{name} {param}")
            elif param in FLOAT_PARAMS:
                coerced[param] = float(to_series(value, bar_count)[-1])
            else:
                coerced[param] = value
        return func(**coerced)

    call.__name__ = name
    return call
