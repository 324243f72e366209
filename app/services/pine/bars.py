"""
Bar series model.

BarSeries materializes the built-in series a script can reference
(open/high/low/close/volume/time, bar_index, hl2/hlc3/ohlc4, bid/ask) once
per invocation. Arrays are read-only so TA calls can never mutate them.

Also provides:
- generate_mock_ohlc(): deterministic random-walk bars for tests and demos
- bars_from_frame() / load_bars_csv(): OHLCV tables to Bar lists
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable, Mapping, Union

import numpy as np
import pandas as pd
import structlog

from app.services.pine.constants import (
    MOCK_BAR_INTERVAL_MS,
    MOCK_DEFAULT_BAR_COUNT,
    MOCK_DEFAULT_SEED,
    MOCK_MAX_STEP,
    MOCK_MAX_WICK,
    MOCK_REFERENCE_END_MS,
    MOCK_START_PRICE,
    MOCK_VOLUME_MAX,
    MOCK_VOLUME_MIN,
)
from app.services.pine.errors import BarDataError, PineRuntimeError
from app.services.pine.models import Bar

logger = structlog.get_logger(__name__)

BarLike = Union[Bar, Mapping]


# =============================================================================
# Bar Series
# =============================================================================


@dataclass(frozen=True)
class BarSeries:
    """Frozen record of every built-in series, all of length N."""

    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray
    time: np.ndarray
    bar_index: np.ndarray
    hl2: np.ndarray
    hlc3: np.ndarray
    ohlc4: np.ndarray
    bid: np.ndarray
    ask: np.ndarray

    def __len__(self) -> int:
        return int(self.close.shape[0])

    @classmethod
    def from_bars(cls, bars: Iterable[BarLike]) -> BarSeries:
        """
        Build the series record from caller-supplied bars.

        Raises:
            PineRuntimeError: If no bars are supplied
        """
        rows = [b if isinstance(b, Bar) else Bar.from_dict(dict(b)) for b in bars]
        if not rows:
            raise PineRuntimeError("No bar data supplied (bar series is empty)")

        o = np.array([b.open for b in rows], dtype=float)
        h = np.array([b.high for b in rows], dtype=float)
        lo = np.array([b.low for b in rows], dtype=float)
        c = np.array([b.close for b in rows], dtype=float)
        v = np.array([b.volume for b in rows], dtype=float)
        t = np.array([b.timestamp for b in rows], dtype=float)

        series = cls(
            open=o,
            high=h,
            low=lo,
            close=c,
            volume=v,
            time=t,
            bar_index=np.arange(len(rows), dtype=float),
            hl2=(h + lo) / 2,
            hlc3=(h + lo + c) / 3,
            ohlc4=(o + h + lo + c) / 4,
            bid=c * 0.9999,
            ask=c * 1.0001,
        )
        for f in fields(series):
            getattr(series, f.name).setflags(write=False)
        return series

    def as_bindings(self) -> dict[str, np.ndarray]:
        """Name -> series mapping for the execution environment."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


# =============================================================================
# Mock Data
# =============================================================================


def generate_mock_ohlc(
    bar_count: int = MOCK_DEFAULT_BAR_COUNT,
    seed: int = MOCK_DEFAULT_SEED,
    end_ms: int = MOCK_REFERENCE_END_MS,
) -> list[Bar]:
    """
    Generate deterministic mock bars.

    Seed rule: the same (bar_count, seed, end_ms) always yields the same bars.
    Close follows a random walk of +/-MOCK_MAX_STEP starting at
    MOCK_START_PRICE, open is the prior close, high/low extend the body by up
    to MOCK_MAX_WICK, and bars are hourly with the last one at end_ms.
    """
    if bar_count < 0:
        raise ValueError(f"bar_count must be >= 0, got {bar_count}")

    rng = np.random.default_rng(seed)
    start_ms = end_ms - (bar_count - 1) * MOCK_BAR_INTERVAL_MS
    price = MOCK_START_PRICE
    bars: list[Bar] = []

    for i in range(bar_count):
        change = rng.uniform(-MOCK_MAX_STEP, MOCK_MAX_STEP)
        open_ = price
        close = price + change
        high = max(open_, close) + rng.uniform(0.0, MOCK_MAX_WICK)
        low = min(open_, close) - rng.uniform(0.0, MOCK_MAX_WICK)
        volume = int(rng.integers(MOCK_VOLUME_MIN, MOCK_VOLUME_MAX))

        bars.append(
            Bar(
                timestamp=start_ms + i * MOCK_BAR_INTERVAL_MS,
                open=float(open_),
                high=float(high),
                low=float(low),
                close=float(close),
                volume=float(volume),
            )
        )
        price = close

    return bars


# =============================================================================
# Tabular Loading
# =============================================================================

REQUIRED_COLUMNS = {"timestamp", "open", "high", "low", "close", "volume"}

# Column aliases mapping (lowercase)
COLUMN_ALIASES = {
    "date": "timestamp",
    "datetime": "timestamp",
    "time": "timestamp",
    "ts": "timestamp",
    "adj_close": "close",
    "adjusted_close": "close",
    "o": "open",
    "h": "high",
    "l": "low",
    "c": "close",
    "v": "volume",
    "vol": "volume",
}


def bars_from_frame(df: pd.DataFrame) -> list[Bar]:
    """
    Convert an OHLCV DataFrame to bars.

    Column names are matched case-insensitively with common aliases.
    Timestamps may be epoch milliseconds or anything pd.to_datetime parses.
    Rows with NaN prices are dropped; output is sorted by timestamp.

    Raises:
        BarDataError: If required columns are missing or nothing is left
    """
    df = df.copy()
    df.columns = [str(c).lower().strip() for c in df.columns]
    df = df.rename(columns={c: COLUMN_ALIASES[c] for c in df.columns if c in COLUMN_ALIASES})

    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise BarDataError(
            f"Missing required columns: {', '.join(sorted(missing))}",
            {"missing_columns": sorted(missing), "found_columns": list(df.columns)},
        )

    numeric_cols = ["open", "high", "low", "close", "volume"]
    for col in numeric_cols:
        df[col] = pd.to_numeric(df[col], errors="coerce")

    if pd.api.types.is_numeric_dtype(df["timestamp"]):
        df["timestamp"] = df["timestamp"].astype("int64")
    else:
        try:
            parsed = pd.to_datetime(df["timestamp"], utc=True)
        except (ValueError, TypeError) as e:
            raise BarDataError(f"Failed to parse timestamp column: {e}")
        epoch = pd.Timestamp(0, tz="UTC")
        df["timestamp"] = (parsed - epoch) // pd.Timedelta(milliseconds=1)

    original_len = len(df)
    df = df.dropna(subset=numeric_cols)
    if len(df) < original_len:
        logger.warning(
            "bars_dropped_nan_rows",
            dropped=original_len - len(df),
        )
    if len(df) == 0:
        raise BarDataError("No valid rows after removing NaN values")

    df = df.sort_values("timestamp", kind="stable")
    return [
        Bar(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def load_bars_csv(path: Union[str, Path]) -> list[Bar]:
    """Read an OHLCV CSV file into bars."""
    try:
        df = pd.read_csv(path)
    except pd.errors.EmptyDataError:
        raise BarDataError(f"CSV file is empty: {path}")
    except OSError as e:
        raise BarDataError(f"Failed to read CSV: {e}")
    return bars_from_frame(df)
