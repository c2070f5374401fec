"""
Scan Orchestrator

Composes the detection pipeline for one (pair, timeframe):

    candles -> swing points -> trend -> signal candle -> setup -> validation

Short-circuits at the first negative gate and reports where it stopped via
ScanStage. scan_series() is pure: fetching candles and persisting setups are
the caller's business. scan_many() runs independent scans on a thread pool
and keeps going when one instrument fails.
"""

import concurrent.futures
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence

from ..candles import Candle, ensure_series
from ..config import InstrumentConfig, StrategyConfig
from ..detection.signal_candle import SignalCandle, latest_signal_candle
from ..detection.structure import SetupResultStatus, SetupValidation, TradeSetup, calculate_trade_setup
from ..detection.swing_points import find_swing_points
from ..detection.trend import Trend, classify_trend

logger = logging.getLogger(__name__)

HISTORICAL_START_INDEX = 50
HISTORICAL_MIN_CANDLES = 20


class ScanStage(Enum):
    """Where the pipeline stopped."""
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    RANGING = "RANGING"
    NO_SIGNAL = "NO_SIGNAL"
    NO_STRUCTURE = "NO_STRUCTURE"
    INVALID_SETUP = "INVALID_SETUP"
    VALID = "VALID"


@dataclass(frozen=True)
class ScanResult:
    pair: str
    timeframe: str
    trend: Trend
    stage: ScanStage
    candle_count: int
    signal_candle: Optional[SignalCandle] = None
    setup: Optional[TradeSetup] = None
    validation: Optional[SetupValidation] = None

    @property
    def signal_detected(self) -> bool:
        return self.signal_candle is not None

    @property
    def is_actionable(self) -> bool:
        return self.stage == ScanStage.VALID and self.setup is not None

    @property
    def scan_time(self) -> Optional[int]:
        return self.signal_candle.candle.time if self.signal_candle else None


def scan_series(pair: str, timeframe: str, candles: Sequence[Candle],
                instrument: InstrumentConfig, strategy: Optional[StrategyConfig] = None) -> ScanResult:
    """
    Evaluate the most recent complete candle of a series for a wickless setup.

    Args:
        pair: Instrument symbol, e.g. 'EUR_USD'
        timeframe: Candle granularity, e.g. 'M15'
        candles: Oldest-first candles; a trailing incomplete candle is ignored
        instrument: Tolerance, stop buffer and pip multiplier
        strategy: Strategy constants (defaults when omitted)

    Returns:
        ScanResult describing how far the series got through the pipeline
    """
    strategy = strategy or StrategyConfig()
    complete = ensure_series(candles).complete()
    count = len(complete)

    if count < strategy.min_candles_required:
        logger.debug(f"{pair} {timeframe}: {count} complete candles, need {strategy.min_candles_required}")
        return ScanResult(pair, timeframe, Trend.RANGING, ScanStage.INSUFFICIENT_DATA, count)

    swings = find_swing_points(complete, strategy.swing_lookback)
    trend = classify_trend(swings, strategy.min_swing_points)
    if trend == Trend.RANGING:
        return ScanResult(pair, timeframe, trend, ScanStage.RANGING, count)

    signal = latest_signal_candle(complete, trend, instrument.tolerance)
    if signal is None:
        return ScanResult(pair, timeframe, trend, ScanStage.NO_SIGNAL, count)

    result = calculate_trade_setup(
        signal.direction, signal.entry_zone, swings, instrument,
        strategy.min_risk_pips, strategy.max_risk_pips,
    )
    if result.status == SetupResultStatus.NO_STRUCTURE:
        stage = ScanStage.NO_STRUCTURE
    elif result.status == SetupResultStatus.INVALID:
        stage = ScanStage.INVALID_SETUP
    else:
        stage = ScanStage.VALID
        logger.debug(
            f"{pair} {timeframe}: {signal.direction.value} setup entry={result.setup.entry_zone} "
            f"sl={result.setup.stop_loss} tp={result.setup.take_profit}"
        )

    return ScanResult(
        pair=pair,
        timeframe=timeframe,
        trend=trend,
        stage=stage,
        candle_count=count,
        signal_candle=signal,
        setup=result.setup,
        validation=result.validation,
    )


# ═══════════════════════════════════════════════════════════════════════════
# BATCH SCANNING
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScanRequest:
    pair: str
    timeframe: str
    candles: Sequence[Candle]
    instrument: InstrumentConfig


@dataclass(frozen=True)
class ScanError:
    pair: str
    timeframe: str
    message: str


@dataclass
class BatchScanResult:
    results: List[ScanResult] = field(default_factory=list)
    errors: List[ScanError] = field(default_factory=list)

    @property
    def signals_found(self) -> List[ScanResult]:
        return [r for r in self.results if r.is_actionable]


def scan_many(requests: Sequence[ScanRequest], strategy: Optional[StrategyConfig] = None,
              max_workers: int = 4) -> BatchScanResult:
    """
    Scan independent instruments concurrently.

    A failure on one instrument is logged and recorded in `errors`; the
    remaining scans still complete. Results keep the order of `requests`.
    """
    strategy = strategy or StrategyConfig()
    batch = BatchScanResult()
    if not requests:
        return batch

    outcomes = [None] * len(requests)
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_map = {
            executor.submit(scan_series, r.pair, r.timeframe, r.candles, r.instrument, strategy): i
            for i, r in enumerate(requests)
        }
        for future in concurrent.futures.as_completed(future_map):
            i = future_map[future]
            request = requests[i]
            try:
                outcomes[i] = future.result()
            except Exception as e:
                logger.error(f"Scan failed for {request.pair} {request.timeframe}: {e}", exc_info=True)
                outcomes[i] = ScanError(request.pair, request.timeframe, str(e))

    for outcome in outcomes:
        if isinstance(outcome, ScanError):
            batch.errors.append(outcome)
        else:
            batch.results.append(outcome)
    return batch


def scan_historical(pair: str, timeframe: str, candles: Sequence[Candle],
                    instrument: InstrumentConfig, strategy: Optional[StrategyConfig] = None,
                    start_index: int = HISTORICAL_START_INDEX) -> List[ScanResult]:
    """
    Rolling scan: evaluate the series as it stood at every bar from
    `start_index` onwards. Bars with fewer than 20 complete candles behind
    them are skipped.
    """
    strategy = strategy or StrategyConfig()
    series = ensure_series(candles)
    results: List[ScanResult] = []
    if len(series) < start_index:
        return results

    rolling = replace(strategy, min_candles_required=HISTORICAL_MIN_CANDLES)

    for i in range(start_index, len(series)):
        window = series[:i + 1]
        if len(window.complete()) < HISTORICAL_MIN_CANDLES:
            continue
        results.append(scan_series(pair, timeframe, window, instrument, rolling))
    return results
