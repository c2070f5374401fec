#!/usr/bin/env python
"""
Wickless Signal Engine - Scheduled Scan Cycle

Runs one scan/monitor/outcome cycle for a timeframe against a directory of
candle files ('<PAIR>_<TIMEFRAME>.csv') and stores setups and signals in
the SQLite database from config.yaml. Meant to be invoked by cron.
"""

import argparse
import logging
import sys

from wickless.backtest import FileCandleSource
from wickless.config import ConfigError, is_valid_timeframe, load_config
from wickless.signals.manager import SignalManager
from wickless.signals.repository import SQLiteSetupRepository

logger = logging.getLogger(__name__)


def print_summary(summary, stats):
    """Print cycle results"""
    print("\n" + "=" * 70)
    print(f"  📈 Wickless scan @ {summary.timeframe}  ({summary.duration_ms}ms)")
    print("=" * 70)
    print(f"  Pairs:       {', '.join(summary.pairs_scanned)}")
    print(f"  New setups:  {summary.signals_found}")
    print(f"  Triggered:   {summary.triggered_count}")
    print(f"  Expired:     {summary.expired_count}")
    print(f"  Closed:      {summary.win_count} wins / {summary.loss_count} losses")
    print("-" * 70)
    print(f"  Waiting setups: {stats.active_setups}   Open signals: {stats.open_signals}")
    print(f"  All-time: {stats.wins}W / {stats.losses}L  ({stats.win_rate:.1f}% win rate)")
    if summary.errors:
        print("-" * 70)
        for error in summary.errors:
            print(f"  ❌ {error}")
    print("=" * 70)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Run one wickless scan cycle'
    )
    parser.add_argument(
        '--timeframe',
        type=str,
        default='M15',
        help='Timeframe to scan (M15, M30, H1, H4)'
    )
    parser.add_argument(
        '--data-dir',
        type=str,
        required=True,
        help='Directory holding <PAIR>_<TIMEFRAME>.csv candle files'
    )
    parser.add_argument(
        '--config',
        type=str,
        help='Path to config.yaml'
    )
    parser.add_argument(
        '--pairs',
        type=str,
        nargs='+',
        help='Override pairs from config'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        choices=['debug', 'info', 'warning', 'error', 'critical'],
        help='Override log level from config'
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)

    log_level = (args.log_level or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not is_valid_timeframe(args.timeframe):
        print(f"Error: invalid timeframe {args.timeframe}")
        sys.exit(1)

    pairs = args.pairs or config.pairs

    repository = SQLiteSetupRepository(config.db_path)
    try:
        manager = SignalManager(
            repository,
            strategy=config.strategy,
            instruments=config.instruments,
        )
        summary = manager.run_cycle(args.timeframe, FileCandleSource(args.data_dir), pairs)
        print_summary(summary, manager.stats())
    except KeyboardInterrupt:
        print("\n\n👋 Interrupted")
    finally:
        repository.close()


if __name__ == '__main__':
    main()
