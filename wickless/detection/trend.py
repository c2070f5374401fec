"""
Trend Classification

Trade only with the trend:
- UP:      latest swing high above the previous one AND latest swing low above the previous one
- DOWN:    latest swing high below the previous one AND latest swing low below the previous one
- RANGING: anything else (mixed structure, too few swings) -- no signals at all

The trend is always recomputed from the swing points it is given; nothing
is cached between calls.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ..candles import Candle
from .swing_points import (
    DEFAULT_LOOKBACK, DEFAULT_MIN_SWING_POINTS,
    SwingKind, SwingPoint,
    find_swing_points, has_enough_swing_points, of_kind, swing_relationships,
)

logger = logging.getLogger(__name__)


class Trend(Enum):
    UP = "UP"
    DOWN = "DOWN"
    RANGING = "RANGING"


class Direction(Enum):
    BUY = "BUY"
    SELL = "SELL"


def classify_trend(swings: Sequence[SwingPoint],
                   min_swing_points: int = DEFAULT_MIN_SWING_POINTS) -> Trend:
    """
    Classify market structure from a swing point sequence.

    Args:
        swings: Swing points sorted by index
        min_swing_points: Below this count the result is RANGING

    Returns:
        Trend.UP, Trend.DOWN or Trend.RANGING
    """
    if not has_enough_swing_points(swings, min_swing_points):
        return Trend.RANGING

    rel = swing_relationships(swings)

    if rel.higher_high is True and rel.higher_low is True:
        return Trend.UP
    if rel.lower_high is True and rel.lower_low is True:
        return Trend.DOWN
    return Trend.RANGING


def classify_candles(candles: Sequence[Candle],
                     lookback: int = DEFAULT_LOOKBACK,
                     min_swing_points: int = DEFAULT_MIN_SWING_POINTS) -> Trend:
    return classify_trend(find_swing_points(candles, lookback), min_swing_points)


@dataclass(frozen=True)
class TrendAnalysis:
    trend: Trend
    swings: List[SwingPoint] = field(default_factory=list)
    latest_hh: Optional[SwingPoint] = None
    latest_hl: Optional[SwingPoint] = None
    latest_lh: Optional[SwingPoint] = None
    latest_ll: Optional[SwingPoint] = None

    @property
    def swing_highs(self) -> List[SwingPoint]:
        return of_kind(self.swings, SwingKind.HIGH)

    @property
    def swing_lows(self) -> List[SwingPoint]:
        return of_kind(self.swings, SwingKind.LOW)


def analyze_swings(swings: Sequence[SwingPoint],
                   min_swing_points: int = DEFAULT_MIN_SWING_POINTS) -> TrendAnalysis:
    """Trend plus the labelled latest structure points."""
    rel = swing_relationships(swings)

    latest_hh = latest_lh = latest_hl = latest_ll = None
    if len(rel.highs) == 2:
        if rel.higher_high:
            latest_hh = rel.highs[1]
        elif rel.lower_high:
            latest_lh = rel.highs[1]
    if len(rel.lows) == 2:
        if rel.higher_low:
            latest_hl = rel.lows[1]
        elif rel.lower_low:
            latest_ll = rel.lows[1]

    return TrendAnalysis(
        trend=classify_trend(swings, min_swing_points),
        swings=list(swings),
        latest_hh=latest_hh,
        latest_hl=latest_hl,
        latest_lh=latest_lh,
        latest_ll=latest_ll,
    )


def analyze_trend(candles: Sequence[Candle],
                  lookback: int = DEFAULT_LOOKBACK,
                  min_swing_points: int = DEFAULT_MIN_SWING_POINTS) -> TrendAnalysis:
    return analyze_swings(find_swing_points(candles, lookback), min_swing_points)


def is_trend_tradeable(trend: Trend) -> bool:
    return trend != Trend.RANGING


def allowed_direction(trend: Trend) -> Optional[Direction]:
    if trend == Trend.UP:
        return Direction.BUY
    if trend == Trend.DOWN:
        return Direction.SELL
    return None


def is_trend_aligned(trend: Trend, direction: Direction) -> bool:
    return allowed_direction(trend) == direction


def trend_strength(analysis: TrendAnalysis) -> Optional[int]:
    """
    Rough 0-100 strength from the size of the last swing-to-swing moves,
    normalised by price. None when ranging or when structure is incomplete.
    """
    if analysis.trend == Trend.RANGING:
        return None

    highs = analysis.swing_highs[-2:]
    lows = analysis.swing_lows[-2:]
    if len(highs) < 2 or len(lows) < 2:
        return None

    avg_price = (highs[1].price + lows[1].price) / 2
    if avg_price <= 0:
        return None

    high_diff = abs(highs[1].price - highs[0].price) / avg_price * 100
    low_diff = abs(lows[1].price - lows[0].price) / avg_price * 100
    return round(min((high_diff + low_diff) / 2 * 10, 100))


def trend_change_warning(swings: Sequence[SwingPoint], trend: Trend) -> Optional[str]:
    """Early warning when the latest swings contradict the established trend."""
    if trend == Trend.RANGING:
        return None

    rel = swing_relationships(swings)

    if trend == Trend.UP:
        if rel.lower_high is True:
            return "Potential trend change: Lower High forming in uptrend"
        if rel.lower_low is True:
            return "Warning: Lower Low formed - trend may be reversing"
    else:
        if rel.higher_low is True:
            return "Potential trend change: Higher Low forming in downtrend"
        if rel.higher_high is True:
            return "Warning: Higher High formed - trend may be reversing"

    return None
