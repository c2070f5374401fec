"""
No-Wick Signal Candle Detection

Bullish no-bottom-wick (BUY, uptrend only):
    close > open  and  low >= open - epsilon
Bearish no-top-wick (SELL, downtrend only):
    close < open  and  high <= open + epsilon

Epsilon is an absolute per-instrument price tolerance. Candles whose body is
smaller than epsilon are dojis and never signal. The entry zone is the
candle's low (BUY) or high (SELL): the level price must retrace to.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..candles import Candle
from .trend import Direction, Trend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalCandle:
    """A candle that qualified as a no-wick entry trigger."""
    candle: Candle
    direction: Direction
    entry_zone: float


def detect_signal_candle(candle: Candle, trend: Trend, tolerance: float) -> Optional[SignalCandle]:
    """
    Check a single candle against the no-wick rules for the current trend.

    Returns:
        SignalCandle if valid, None otherwise (ranging, incomplete, doji,
        wrong colour or wick present)
    """
    if trend == Trend.RANGING or not candle.complete:
        return None

    if candle.body < tolerance:
        return None

    if trend == Trend.UP:
        if candle.close > candle.open and candle.low >= candle.open - tolerance:
            return SignalCandle(candle=candle, direction=Direction.BUY, entry_zone=candle.low)
        return None

    if candle.close < candle.open and candle.high <= candle.open + tolerance:
        return SignalCandle(candle=candle, direction=Direction.SELL, entry_zone=candle.high)
    return None


def latest_signal_candle(candles: Sequence[Candle], trend: Trend,
                         tolerance: float) -> Optional[SignalCandle]:
    """Only the most recent complete candle is eligible."""
    for candle in reversed(candles):
        if candle.complete:
            return detect_signal_candle(candle, trend, tolerance)
    return None


def scan_signal_candles(candles: Sequence[Candle], trend: Trend, tolerance: float,
                        max_candles: int = 10) -> List[Tuple[int, SignalCandle]]:
    """All qualifying candles among the last `max_candles`, with their indices."""
    results = []
    start = max(0, len(candles) - max_candles)
    for i in range(start, len(candles)):
        signal = detect_signal_candle(candles[i], trend, tolerance)
        if signal:
            results.append((i, signal))
    return results


@dataclass(frozen=True)
class WickAnalysis:
    upper_wick: float
    lower_wick: float
    body: float
    range: float
    upper_wick_percent: float
    lower_wick_percent: float
    is_bullish: bool
    tolerance: float
    meets_no_top_wick: bool
    meets_no_bottom_wick: bool


def analyze_wicks(candle: Candle, tolerance: float) -> WickAnalysis:
    upper = candle.high - max(candle.open, candle.close)
    lower = min(candle.open, candle.close) - candle.low
    rng = candle.high - candle.low
    return WickAnalysis(
        upper_wick=upper,
        lower_wick=lower,
        body=candle.body,
        range=rng,
        upper_wick_percent=(upper / rng) * 100 if rng > 0 else 0.0,
        lower_wick_percent=(lower / rng) * 100 if rng > 0 else 0.0,
        is_bullish=candle.is_bullish,
        tolerance=tolerance,
        meets_no_top_wick=candle.high <= candle.open + tolerance,
        meets_no_bottom_wick=candle.low >= candle.open - tolerance,
    )


@dataclass(frozen=True)
class SignalCandleChecks:
    trend_aligned: bool
    is_complete: bool
    not_doji: bool
    correct_direction: bool
    wick_requirement_met: bool
    reason: str

    @property
    def is_valid(self) -> bool:
        return (self.trend_aligned and self.is_complete and self.not_doji
                and self.correct_direction and self.wick_requirement_met)


def validate_signal_candle(candle: Candle, trend: Trend, tolerance: float) -> SignalCandleChecks:
    """Per-rule breakdown with the first failing rule as the reason."""
    wicks = analyze_wicks(candle, tolerance)
    trend_aligned = trend != Trend.RANGING
    correct_direction = (
        (trend == Trend.UP and candle.is_bullish)
        or (trend == Trend.DOWN and candle.is_bearish)
    )
    wick_ok = (
        (trend == Trend.UP and candle.is_bullish and wicks.meets_no_bottom_wick)
        or (trend == Trend.DOWN and candle.is_bearish and wicks.meets_no_top_wick)
    )
    not_doji = candle.body >= tolerance

    if not trend_aligned:
        reason = "Market is ranging - no trades"
    elif not candle.complete:
        reason = "Candle is not complete"
    elif not not_doji:
        reason = "Candle body too small (doji)"
    elif not correct_direction:
        wanted = 'bullish' if trend == Trend.UP else 'bearish'
        reason = f"Need {wanted} candle for {trend.value.lower()}trend"
    elif not wick_ok:
        side = 'bottom' if trend == Trend.UP else 'top'
        reason = f"Has {side} wick - not valid"
    else:
        reason = "Valid wickless signal candle"

    return SignalCandleChecks(
        trend_aligned=trend_aligned,
        is_complete=candle.complete,
        not_doji=not_doji,
        correct_direction=correct_direction,
        wick_requirement_met=wick_ok,
        reason=reason,
    )
