"""Pine Script Runner - indicator script execution service

Validates, translates and runs Pine Script (v5/v6 subset) indicator scripts
against OHLCV bar series and returns chart-ready plot results.
"""

__version__ = "0.2.0"
