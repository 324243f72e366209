#!/usr/bin/env python3
"""
Run a Pine Script file from the command line.

Validates and executes the script against bars from a CSV file or against
deterministic mock bars, then prints a JSON summary.

Usage:
    python scripts/run_pine.py my_indicator.pine

    # Real data (timestamp,open,high,low,close,volume)
    python scripts/run_pine.py my_indicator.pine --csv docs/historical_data/ES_h1.csv

    # Mock bars, debug logging, full per-bar values
    python scripts/run_pine.py my_indicator.pine --bars 500 --seed 7 --debug --values

    # Validate only
    python scripts/run_pine.py my_indicator.pine --validate-only

Exit codes: 0 on success, 1 when the script is rejected, 2 on bad input data.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.pine import (  # noqa: E402
    BarDataError,
    PineScriptError,
    execute_pine_script,
    generate_mock_ohlc,
    load_bars_csv,
    set_debug_mode,
    validate,
)


def _summarize(result, include_values: bool) -> dict:
    summary = {
        "title": result.title,
        "metrics": result.metrics.to_dict() if result.metrics else None,
        "diagnostics": [d.to_dict() for d in result.diagnostics],
        "results": [],
    }
    for plot in result.results:
        entry = plot.to_dict()
        if not include_values:
            entry.pop("values")
            entry["finiteCount"] = plot.finite_count
            entry["last"] = plot.last_finite
        summary["results"].append(entry)
    return summary


def main():
    parser = argparse.ArgumentParser(
        description="Validate and run a Pine Script file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("script", type=Path, help="Path to the .pine file")
    parser.add_argument("--csv", type=Path, default=None, help="OHLCV CSV file")
    parser.add_argument("--bars", type=int, default=200, help="Mock bar count")
    parser.add_argument("--seed", type=int, default=42, help="Mock bar seed")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--values", action="store_true", help="Include per-bar values in the output"
    )
    parser.add_argument(
        "--validate-only", action="store_true", help="Print diagnostics and exit"
    )

    args = parser.parse_args()

    script = args.script.read_text(encoding="utf-8")

    if args.validate_only:
        result = validate(script)
        print(
            json.dumps(
                {
                    "valid": not result.has_errors,
                    "version": result.version,
                    "diagnostics": [d.to_dict() for d in result.diagnostics],
                },
                indent=2,
            )
        )
        sys.exit(1 if result.has_errors else 0)

    if args.debug:
        set_debug_mode(True)

    try:
        bars = load_bars_csv(args.csv) if args.csv else generate_mock_ohlc(args.bars, args.seed)
    except BarDataError as e:
        print(f"Bad bar data: {e.message}", file=sys.stderr)
        sys.exit(2)

    try:
        result = execute_pine_script(script, bars)
    except PineScriptError as e:
        print(f"[{e.code}]\n{e.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(_summarize(result, args.values), indent=2))


if __name__ == "__main__":
    main()
