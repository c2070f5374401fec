"""
Signal Manager

Lifecycle engine on top of an injected SetupRepository:

1. register_setup   - persist an actionable scan result as a WAITING setup
2. process_candle   - advance WAITING setups by one completed candle;
                      a trigger creates the Signal in the same write
3. check_outcomes   - resolve open signals against a completed candle
4. run_cycle        - one scheduled pass over a timeframe: fetch, scan,
                      register, then replay new candles through 2 and 3

Every write goes through the repository's compare-and-swap methods, so a
lost race is reported as a conflict instead of a double transition.
"""

import concurrent.futures
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..candles import Candle, CandleSeries
from ..config import PAIR_CONFIGS, InstrumentConfig, StrategyConfig, get_instrument
from .models import (
    ActiveSetup, ScanSummary, Signal, SignalOutcome, compute_win_rate,
)
from .outcome import resolve_signal
from .repository import SetupRepository
from .retracement import advance_setup
from .scanner import ScanRequest, ScanResult, scan_many

logger = logging.getLogger(__name__)

# fetch_candles(pair, timeframe, count) -> oldest-first candles or candle records
CandleFetcher = Callable[[str, str, int], Iterable[Any]]


def _default_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_series(data: Iterable[Any]) -> CandleSeries:
    """Normalise fetcher output (CandleSeries, Candles or dict records)."""
    if isinstance(data, CandleSeries):
        return data
    items = list(data)
    if all(isinstance(c, Candle) for c in items):
        return CandleSeries(items)
    return CandleSeries.from_records(items)


@dataclass
class CandleReport:
    """What one candle did to the setups of a (pair, timeframe)."""
    triggered: List[Signal] = field(default_factory=list)
    expired: List[ActiveSetup] = field(default_factory=list)
    still_active: List[ActiveSetup] = field(default_factory=list)
    conflicts: int = 0


@dataclass(frozen=True)
class EngineStats:
    active_setups: int
    open_signals: int
    completed_signals: int
    expired_setups: int
    wins: int
    losses: int
    win_rate: float


class SignalManager:
    """
    Owns the setup -> signal lifecycle for any number of pairs.

    Args:
        repository: Storage with compare-and-swap semantics
        strategy: Strategy constants
        instruments: Per-pair settings (defaults to the built-in table)
        id_factory: Generates setup and signal ids
        clock: Current time for created_at stamps
    """

    def __init__(self, repository: SetupRepository,
                 strategy: Optional[StrategyConfig] = None,
                 instruments: Optional[Dict[str, InstrumentConfig]] = None,
                 id_factory: Callable[[], str] = _default_id,
                 clock: Callable[[], datetime] = _utc_now,
                 max_workers: int = 4):
        self.repository = repository
        self.strategy = strategy or StrategyConfig()
        self.instruments = dict(PAIR_CONFIGS if instruments is None else instruments)
        self.id_factory = id_factory
        self.clock = clock
        self.max_workers = max_workers

    # ── Setups ──

    def register_setup(self, result: ScanResult) -> Optional[ActiveSetup]:
        """Persist an actionable scan result. None if not actionable or already known."""
        if not result.is_actionable:
            return None

        trade = result.setup
        setup = ActiveSetup(
            id=self.id_factory(),
            pair=result.pair,
            timeframe=result.timeframe,
            direction=trade.direction,
            entry_zone=trade.entry_zone,
            stop_loss=trade.stop_loss,
            take_profit=trade.take_profit,
            risk_pips=trade.risk_pips,
            structure_price=trade.structure_point.price,
            signal_candle=result.signal_candle.candle,
            created_at=self.clock(),
        )

        if not self.repository.add_setup(setup):
            logger.warning(
                f"Duplicate setup ignored for {setup.pair} @ {setup.signal_candle_time}"
            )
            return None

        logger.info(
            f"New {setup.direction.value} setup {setup.id} on {setup.pair} {setup.timeframe}: "
            f"entry={setup.entry_zone} sl={setup.stop_loss} tp={setup.take_profit} "
            f"risk={setup.risk_pips:.1f} pips"
        )
        return setup

    def _signal_for(self, setup: ActiveSetup, candle: Candle) -> Signal:
        return Signal(
            id=self.id_factory(),
            setup_id=setup.id,
            pair=setup.pair,
            timeframe=setup.timeframe,
            direction=setup.direction,
            entry_price=setup.entry_zone,
            stop_loss=setup.stop_loss,
            take_profit=setup.take_profit,
            entry_time=candle.time,
            created_at=self.clock(),
        )

    def process_candle(self, pair: str, timeframe: str, candle: Candle) -> CandleReport:
        """Advance every WAITING setup of (pair, timeframe) by one completed candle."""
        report = CandleReport()
        max_candles = self.strategy.max_candles_for_entry

        for setup in self.repository.waiting_setups(pair, timeframe):
            step = advance_setup(setup, candle, max_candles)
            if not step.changed:
                continue

            updated = step.setup
            signal = self._signal_for(updated, candle) if step.triggered else None
            if not self.repository.save_setup_transition(updated, setup.candles_elapsed, signal):
                logger.warning(f"Setup {setup.id} changed concurrently, transition skipped")
                report.conflicts += 1
                continue

            if step.triggered:
                logger.info(
                    f"Setup {updated.id} TRIGGERED on {pair} {timeframe} after "
                    f"{updated.candles_elapsed} candles -> signal {signal.id}"
                )
                report.triggered.append(signal)
            elif step.expired:
                logger.info(f"Setup {updated.id} EXPIRED on {pair} {timeframe}")
                report.expired.append(updated)
            else:
                report.still_active.append(updated)

        return report

    # ── Signals ──

    def check_outcomes(self, pair: str, timeframe: str, candle: Candle) -> List[Signal]:
        """Resolve open signals of (pair, timeframe) against a completed candle."""
        closed = []
        for signal in self.repository.open_signals(pair, timeframe):
            resolved = resolve_signal(signal, candle, self.strategy.fill_priority)
            if resolved.outcome is None:
                continue
            if not self.repository.record_outcome(resolved):
                logger.warning(f"Signal {signal.id} already closed, outcome not recorded")
                continue
            logger.info(
                f"Signal {signal.id} on {pair} {timeframe}: {resolved.outcome.value} "
                f"@ {resolved.outcome_price}"
            )
            closed.append(resolved)
        return closed

    # ── Scan cycle ──

    def _fetch(self, fetch_candles: CandleFetcher, pairs: Sequence[str], timeframe: str,
               errors: List[str]) -> Dict[str, CandleSeries]:
        def fetch_one(pair):
            return as_series(fetch_candles(pair, timeframe, self.strategy.candles_to_fetch))

        fetched: Dict[str, CandleSeries] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_map = {executor.submit(fetch_one, pair): pair for pair in pairs}
            for future in concurrent.futures.as_completed(future_map):
                pair = future_map[future]
                try:
                    fetched[pair] = future.result()
                except Exception as e:
                    logger.error(f"Failed to fetch candles for {pair} {timeframe}: {e}", exc_info=True)
                    errors.append(f"Failed to fetch {pair}: {e}")
        return fetched

    def replay_candles(self, pair: str, timeframe: str, candles: Sequence[Candle],
                       summary: Optional[ScanSummary] = None):
        """
        Feed completed candles, oldest first, through process_candle and
        check_outcomes. Candles a setup or signal has already seen are no-ops.
        """
        for candle in candles:
            if not candle.complete:
                continue
            report = self.process_candle(pair, timeframe, candle)
            closed = self.check_outcomes(pair, timeframe, candle)
            if summary is not None:
                summary.triggered_count += len(report.triggered)
                summary.expired_count += len(report.expired)
                summary.win_count += sum(1 for s in closed if s.outcome == SignalOutcome.WIN)
                summary.loss_count += sum(1 for s in closed if s.outcome == SignalOutcome.LOSS)

    def _pending_since(self, pair: str, timeframe: str) -> Optional[int]:
        """Oldest candle time any WAITING setup or open signal still needs to see past."""
        marks = [s.last_candle_time for s in self.repository.waiting_setups(pair, timeframe)]
        marks += [s.entry_time for s in self.repository.open_signals(pair, timeframe)]
        return min(marks) if marks else None

    def run_cycle(self, timeframe: str, fetch_candles: CandleFetcher,
                  pairs: Optional[Sequence[str]] = None) -> ScanSummary:
        """
        One scheduled pass over a timeframe.

        Scans `pairs` for new setups, registers the actionable ones, then
        replays every completed candle newer than what pending setups and
        open signals have already seen. Errors on one pair are logged and
        collected; the rest of the cycle continues.
        """
        started = time.time()
        pairs = list(pairs) if pairs is not None else list(self.instruments)
        summary = ScanSummary(timeframe=timeframe, started_at=self.clock(), pairs_scanned=pairs)

        # pairs with pending work are fetched even when not scanned this cycle
        pending_pairs = {s.pair for s in self.repository.waiting_setups(timeframe=timeframe)}
        pending_pairs |= {s.pair for s in self.repository.open_signals(timeframe=timeframe)}
        to_fetch = pairs + sorted(pending_pairs - set(pairs))

        fetched = self._fetch(fetch_candles, to_fetch, timeframe, summary.errors)

        # Step 1: scan for new setups
        requests = []
        for pair in pairs:
            if pair not in fetched:
                continue
            try:
                instrument = get_instrument(pair, self.instruments)
            except KeyError as e:
                logger.error(f"Cannot scan {pair}: {e}")
                summary.errors.append(f"Cannot scan {pair}: {e}")
                continue
            requests.append(ScanRequest(pair, timeframe, fetched[pair], instrument))

        batch = scan_many(requests, self.strategy, self.max_workers)
        summary.errors.extend(f"Scan failed for {e.pair}: {e.message}" for e in batch.errors)

        for result in batch.signals_found:
            try:
                if self.register_setup(result):
                    summary.signals_found += 1
            except Exception as e:
                logger.error(f"Failed to save setup for {result.pair}: {e}", exc_info=True)
                summary.errors.append(f"Failed to save setup for {result.pair}: {e}")

        # Step 2 + 3: advance setups and resolve signals with unseen candles
        for pair in to_fetch:
            if pair not in fetched:
                continue
            try:
                since = self._pending_since(pair, timeframe)
                if since is None:
                    continue
                self.replay_candles(pair, timeframe, fetched[pair].complete().after(since), summary)
            except Exception as e:
                logger.error(f"Error monitoring {pair} {timeframe}: {e}", exc_info=True)
                summary.errors.append(f"Error monitoring {pair}: {e}")

        summary.duration_ms = int((time.time() - started) * 1000)
        try:
            self.repository.record_scan(summary)
        except Exception as e:
            logger.error(f"Failed to log scan: {e}", exc_info=True)

        logger.info(
            f"Cycle {timeframe}: {summary.signals_found} new, {summary.triggered_count} triggered, "
            f"{summary.expired_count} expired, {summary.win_count}W/{summary.loss_count}L, "
            f"{len(summary.errors)} errors in {summary.duration_ms}ms"
        )
        return summary

    # ── Reporting ──

    def stats(self) -> EngineStats:
        closed = self.repository.closed_signals()
        wins = sum(1 for s in closed if s.outcome == SignalOutcome.WIN)
        losses = sum(1 for s in closed if s.outcome == SignalOutcome.LOSS)
        return EngineStats(
            active_setups=len(self.repository.waiting_setups()),
            open_signals=len(self.repository.open_signals()),
            completed_signals=len(closed),
            expired_setups=len(self.repository.expired_setups()),
            wins=wins,
            losses=losses,
            win_rate=compute_win_rate(wins, losses),
        )
