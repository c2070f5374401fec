"""
Replay the Wickless Strategy on Historical Candles

Usage:
    python -m wickless.backtest data/EUR_USD_M15.csv --pair EUR_USD --timeframe M15

Every bar from --start-index on is scanned as if it were the latest
complete candle; actionable setups are registered with a fresh in-memory
SignalManager and then all candles are replayed oldest first through the
retracement monitor and outcome evaluator. Only raw counts are reported.
"""

import argparse
import itertools
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd

from .candles import Candle, CandleSeries, ensure_series
from .config import (
    DEFAULT_TIMEFRAME, ConfigError, InstrumentConfig, StrategyConfig, get_instrument, load_config,
)
from .signals.manager import SignalManager
from .signals.models import ScanSummary, compute_win_rate
from .signals.repository import InMemorySetupRepository
from .signals.scanner import HISTORICAL_START_INDEX, scan_historical

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BacktestResult:
    pair: str
    timeframe: str
    candles: int
    setups: int
    triggered: int
    expired: int
    wins: int
    losses: int
    open: int          # triggered signals without an outcome at the end of data

    @property
    def win_rate(self) -> float:
        return compute_win_rate(self.wins, self.losses)


def load_candles(path: Union[str, Path]) -> CandleSeries:
    """Read candles from CSV or Parquet (columns time, open, high, low, close[, complete, volume])."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Candle file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == '.csv':
        df = pd.read_csv(path, float_precision='round_trip')
    elif suffix in ('.parquet', '.pq'):
        df = pd.read_parquet(path)
    else:
        raise ValueError(f"Unsupported candle file type: {path.suffix}")

    df.columns = [str(c).strip().lower() for c in df.columns]
    series = CandleSeries.from_dataframe(df)
    logger.info(f"Loaded {len(series)} candles from {path}")
    return series


class FileCandleSource:
    """
    Candle fetcher backed by a directory of '<PAIR>_<TIMEFRAME>.csv' (or
    .parquet) files; returns the most recent `count` candles.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, pair: str, timeframe: str) -> Path:
        for suffix in ('.csv', '.parquet'):
            candidate = self.directory / f"{pair}_{timeframe}{suffix}"
            if candidate.exists():
                return candidate
        raise FileNotFoundError(f"No candle file for {pair} {timeframe} in {self.directory}")

    def __call__(self, pair: str, timeframe: str, count: int) -> CandleSeries:
        series = load_candles(self.path_for(pair, timeframe))
        return series[-count:] if count > 0 else series


def run_backtest(pair: str, timeframe: str, candles: Sequence[Candle],
                 instrument: Optional[InstrumentConfig] = None,
                 strategy: Optional[StrategyConfig] = None,
                 start_index: int = HISTORICAL_START_INDEX) -> BacktestResult:
    """Replay one instrument's history and count the lifecycle outcomes."""
    series = ensure_series(candles)
    instrument = instrument or get_instrument(pair)
    strategy = strategy or StrategyConfig()

    counter = itertools.count(1)
    manager = SignalManager(
        InMemorySetupRepository(),
        strategy=strategy,
        instruments={pair: instrument},
        id_factory=lambda: f"BT-{next(counter)}",
    )

    setups = 0
    for result in scan_historical(pair, timeframe, series, instrument, strategy, start_index):
        if manager.register_setup(result):
            setups += 1

    summary = ScanSummary(timeframe=timeframe, started_at=manager.clock(), pairs_scanned=[pair])
    manager.replay_candles(pair, timeframe, series, summary)

    result = BacktestResult(
        pair=pair,
        timeframe=timeframe,
        candles=len(series),
        setups=setups,
        triggered=summary.triggered_count,
        expired=summary.expired_count,
        wins=summary.win_count,
        losses=summary.loss_count,
        open=len(manager.repository.open_signals(pair, timeframe)),
    )
    logger.info(
        f"Backtest {pair} {timeframe}: {result.setups} setups, {result.triggered} triggered, "
        f"{result.expired} expired, {result.wins}W/{result.losses}L"
    )
    return result


def print_results(result: BacktestResult):
    print("\n" + "=" * 60)
    print(f"  WICKLESS BACKTEST  {result.pair} @ {result.timeframe}")
    print("=" * 60)
    print(f"  Candles:    {result.candles}")
    print(f"  Setups:     {result.setups}")
    print(f"  Triggered:  {result.triggered}")
    print(f"  Expired:    {result.expired}")
    print(f"  Wins:       {result.wins}")
    print(f"  Losses:     {result.losses}")
    print(f"  Still open: {result.open}")
    print(f"  Win rate:   {result.win_rate:.1f}%")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Replay the wickless strategy on historical candles')
    parser.add_argument('file', type=str, help='CSV or Parquet candle file')
    parser.add_argument('--pair', type=str, default='EUR_USD', help='Instrument symbol')
    parser.add_argument('--timeframe', type=str, default=DEFAULT_TIMEFRAME, help='Candle timeframe')
    parser.add_argument('--config', type=str, help='Path to config.yaml')
    parser.add_argument('--start-index', type=int, default=HISTORICAL_START_INDEX,
                        help='First bar evaluated as a signal candle')
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        candles = load_candles(args.file)
        instrument = config.instrument(args.pair)
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Cannot run backtest: {e}")
        return 1

    result = run_backtest(args.pair, args.timeframe, candles, instrument,
                          config.strategy, args.start_index)
    print_results(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
