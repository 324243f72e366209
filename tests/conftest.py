"""Root conftest for test suite.

Auto-skips slow tests unless requested with: pytest -m slow
"""

import pytest

from app.services.pine import generate_mock_ohlc
from app.services.pine import runner


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested."""
    markexpr = config.getoption("-m", default="")
    explicit_slow = "slow" in markexpr

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )

    for item in items:
        if "slow" in item.keywords and not explicit_slow:
            item.add_marker(skip_slow)


@pytest.fixture(autouse=True)
def reset_runner_state():
    """Debug flag and last metrics are process-wide; isolate each test."""
    runner._reset_state()
    yield
    runner._reset_state()


@pytest.fixture
def mock_bars():
    """200 deterministic mock bars (seed 42)."""
    return generate_mock_ohlc(200)


@pytest.fixture
def short_bars():
    """A handful of hand-written bars for exact-value checks."""
    closes = [10.0, 11.0, 12.0, 11.0, 13.0, 14.0, 12.0, 15.0]
    return [
        {
            "timestamp": 1_700_000_000_000 + i * 60_000,
            "open": c - 0.5,
            "high": c + 1.0,
            "low": c - 1.0,
            "close": c,
            "volume": 1000.0 + i,
        }
        for i, c in enumerate(closes)
    ]
