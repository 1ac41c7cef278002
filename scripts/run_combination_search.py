#!/usr/bin/env python3
"""
Combination Search Runner.

Usage:
    python scripts/run_combination_search.py data/EURUSD.parquet --symbol EURUSD
    python scripts/run_combination_search.py bars.csv --entry-periods 5 10 20 --exit-periods 5 10
    python scripts/run_combination_search.py bars.csv --walk-forward --folds 5
"""

import argparse
import json
import sys
import uuid
from datetime import datetime
from pathlib import Path

import pandas as pd

from combo_engine.config import get_settings
from combo_engine.domain.bar import BarSeries
from combo_engine.errors import NoViableCombination
from combo_engine.logging import clear_run_id, set_run_id, setup_logging
from combo_engine.search.combination_search import CombinationSearch
from combo_engine.search.models import SearchMode
from combo_engine.search.walk_forward import WalkForwardValidator


def load_bars(path: Path, symbol: str) -> BarSeries:
    """Load a CSV or parquet bar file into a BarSeries."""
    if path.suffix == ".parquet":
        frame = pd.read_parquet(path, engine="pyarrow")
    else:
        frame = pd.read_csv(path, parse_dates=["timestamp"])
    return BarSeries.from_dataframe(frame, symbol)


def main() -> int:
    parser = argparse.ArgumentParser(description="Find the best entry/exit combination for one instrument")
    parser.add_argument("bars", type=Path, help="CSV or parquet file with timestamp/open/high/low/close[/volume]")
    parser.add_argument("--symbol", default=None, help="Instrument id (default: file stem)")
    parser.add_argument("--entry-periods", nargs="+", type=int, default=None, help="Explicit entry lookbacks")
    parser.add_argument("--exit-periods", nargs="+", type=int, default=None, help="Explicit exit lookbacks")
    parser.add_argument("--period-strategy", default="Breakout", help="Strategy whose lookback is varied")
    parser.add_argument("--strategies", nargs="+", default=None, help="Library subset for full search")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes")
    parser.add_argument("--deadline", type=float, default=None, help="Search deadline in seconds")
    parser.add_argument("--walk-forward", action="store_true", help="Validate with walk-forward folds")
    parser.add_argument("--folds", type=int, default=5, help="Walk-forward folds")
    parser.add_argument("--leaderboard", action="store_true", help="Write the leaderboard parquet to data_dir")
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    run_id = uuid.uuid4().hex[:8]
    set_run_id(run_id)

    symbol = args.symbol or args.bars.stem
    series = load_bars(args.bars, symbol)

    overrides: dict = {}
    if args.entry_periods or args.exit_periods:
        overrides.update(
            mode=SearchMode.EXPLICIT_PERIODS,
            entry_periods=args.entry_periods or [],
            exit_periods=args.exit_periods or [],
            period_strategy=args.period_strategy,
        )
    if args.strategies:
        overrides["strategies"] = args.strategies
    if args.workers:
        overrides["max_workers"] = args.workers
    if args.deadline:
        overrides["deadline_s"] = args.deadline

    search = CombinationSearch(settings.search_config(**overrides), settings.backtest_config())

    print(f"\n{'='*60}")
    print(f"COMBINATION SEARCH - {symbol} - {datetime.now().strftime('%Y-%m-%d %H:%M')}")
    print(f"{'='*60}\n")
    print(f"  Bars:     {len(series)}")
    print(f"  Mode:     {search.config.mode.value}")
    print(f"  Workers:  {search.config.max_workers}")
    print()

    try:
        if args.walk_forward:
            report = WalkForwardValidator(search, folds=args.folds).run(series)
            print(json.dumps(report.to_dict(), indent=2, default=str))
            return 0 if not report.filtered_out else 2

        best = search.search(series)
    except NoViableCombination as e:
        print(f"No result: {e}")
        return 1
    finally:
        clear_run_id()

    print(f"{'='*60}")
    print("BEST COMBINATION")
    print(f"{'='*60}")
    print(json.dumps(best.to_dict(), indent=2, default=str))

    if args.leaderboard:
        path = settings.ensure_data_dir() / f"leaderboard_{symbol}_{run_id}.parquet"
        best.write_leaderboard(str(path))
        print(f"\nLeaderboard written to {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
