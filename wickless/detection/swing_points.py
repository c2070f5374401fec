"""
Swing Point Detection

Locates local price extrema used as market-structure anchors for trend
classification and stop placement.

A swing high is a candle whose high is strictly greater than the highs of
the `lookback` candles on each side. A swing low is a candle whose low is
strictly less than the lows of the `lookback` candles on each side. Ties
never qualify, and a single candle may be both.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..candles import Candle

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = 3
DEFAULT_MIN_SWING_POINTS = 4


class SwingKind(Enum):
    HIGH = "HIGH"
    LOW = "LOW"


@dataclass(frozen=True)
class SwingPoint:
    index: int       # position in the candle sequence
    time: int
    price: float
    kind: SwingKind


def _strict_extrema(values: np.ndarray, lookback: int, greater: bool) -> np.ndarray:
    """Indices whose value beats every neighbour within `lookback` on both sides."""
    window = 2 * lookback + 1
    windows = np.lib.stride_tricks.sliding_window_view(values, window)
    centers = windows[:, lookback]
    neighbours = np.delete(windows, lookback, axis=1)
    if greater:
        mask = centers > neighbours.max(axis=1)
    else:
        mask = centers < neighbours.min(axis=1)
    return np.flatnonzero(mask) + lookback


def find_swing_points(candles: Sequence[Candle],
                      lookback: int = DEFAULT_LOOKBACK) -> List[SwingPoint]:
    """
    Identify all swing highs and lows in a candle sequence.

    Args:
        candles: Complete candles, oldest first
        lookback: Number of candles compared on each side (>= 1)

    Returns:
        Swing points sorted by index. For a candle that is both a high and
        a low, the HIGH comes first. Empty if fewer than 2*lookback+1 candles.
    """
    if lookback < 1:
        raise ValueError(f"lookback must be >= 1, got {lookback}")
    if len(candles) < 2 * lookback + 1:
        return []

    highs = np.array([c.high for c in candles], dtype=float)
    lows = np.array([c.low for c in candles], dtype=float)

    found: Dict[int, List[SwingPoint]] = {}
    for i in _strict_extrema(highs, lookback, greater=True):
        i = int(i)
        found.setdefault(i, []).append(
            SwingPoint(index=i, time=candles[i].time, price=candles[i].high, kind=SwingKind.HIGH)
        )
    for i in _strict_extrema(lows, lookback, greater=False):
        i = int(i)
        found.setdefault(i, []).append(
            SwingPoint(index=i, time=candles[i].time, price=candles[i].low, kind=SwingKind.LOW)
        )

    swings = [point for i in sorted(found) for point in found[i]]
    logger.debug(f"Found {len(swings)} swing points in {len(candles)} candles (lookback={lookback})")
    return swings


def find_swing_highs(candles: Sequence[Candle], lookback: int = DEFAULT_LOOKBACK) -> List[SwingPoint]:
    return [s for s in find_swing_points(candles, lookback) if s.kind == SwingKind.HIGH]


def find_swing_lows(candles: Sequence[Candle], lookback: int = DEFAULT_LOOKBACK) -> List[SwingPoint]:
    return [s for s in find_swing_points(candles, lookback) if s.kind == SwingKind.LOW]


def of_kind(swings: Sequence[SwingPoint], kind: SwingKind) -> List[SwingPoint]:
    return [s for s in swings if s.kind == kind]


def most_recent_swing_high(swings: Sequence[SwingPoint]) -> Optional[SwingPoint]:
    highs = of_kind(swings, SwingKind.HIGH)
    return highs[-1] if highs else None


def most_recent_swing_low(swings: Sequence[SwingPoint]) -> Optional[SwingPoint]:
    lows = of_kind(swings, SwingKind.LOW)
    return lows[-1] if lows else None


def last_n_swings(swings: Sequence[SwingPoint], kind: SwingKind, count: int) -> List[SwingPoint]:
    if count <= 0:
        return []
    return of_kind(swings, kind)[-count:]


def _require(current: SwingPoint, previous: SwingPoint, kind: SwingKind):
    if current.kind != kind or previous.kind != kind:
        raise ValueError(f"Both swing points must be {kind.value}s")


def is_higher_high(current: SwingPoint, previous: SwingPoint) -> bool:
    _require(current, previous, SwingKind.HIGH)
    return current.price > previous.price


def is_higher_low(current: SwingPoint, previous: SwingPoint) -> bool:
    _require(current, previous, SwingKind.LOW)
    return current.price > previous.price


def is_lower_high(current: SwingPoint, previous: SwingPoint) -> bool:
    _require(current, previous, SwingKind.HIGH)
    return current.price < previous.price


def is_lower_low(current: SwingPoint, previous: SwingPoint) -> bool:
    _require(current, previous, SwingKind.LOW)
    return current.price < previous.price


@dataclass(frozen=True)
class SwingRelationships:
    """Last two highs and lows with their pairwise comparisons (None = not enough points)."""
    highs: List[SwingPoint]
    lows: List[SwingPoint]
    higher_high: Optional[bool] = None
    higher_low: Optional[bool] = None
    lower_high: Optional[bool] = None
    lower_low: Optional[bool] = None


def swing_relationships(swings: Sequence[SwingPoint]) -> SwingRelationships:
    highs = last_n_swings(swings, SwingKind.HIGH, 2)
    lows = last_n_swings(swings, SwingKind.LOW, 2)

    higher_high = lower_high = higher_low = lower_low = None
    if len(highs) == 2:
        higher_high = is_higher_high(highs[1], highs[0])
        lower_high = is_lower_high(highs[1], highs[0])
    if len(lows) == 2:
        higher_low = is_higher_low(lows[1], lows[0])
        lower_low = is_lower_low(lows[1], lows[0])

    return SwingRelationships(
        highs=highs,
        lows=lows,
        higher_high=higher_high,
        higher_low=higher_low,
        lower_high=lower_high,
        lower_low=lower_low,
    )


def has_enough_swing_points(swings: Sequence[SwingPoint],
                            min_required: int = DEFAULT_MIN_SWING_POINTS) -> bool:
    return len(swings) >= min_required
