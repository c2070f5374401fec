"""
Tests for swing point detection
"""

import numpy as np
import pytest

from wickless.detection.swing_points import (
    SwingKind, SwingPoint, find_swing_highs, find_swing_lows, find_swing_points,
    has_enough_swing_points, is_higher_high, is_higher_low, is_lower_high,
    is_lower_low, last_n_swings, most_recent_swing_high, most_recent_swing_low,
    swing_relationships,
)

from conftest import make_candle, wave_candles, zigzag_mids


def candles_from_hl(highs, lows):
    return [
        make_candle(i, (h + l) / 2, h, l, (h + l) / 2)
        for i, (h, l) in enumerate(zip(highs, lows))
    ]


@pytest.fixture
def random_candles():
    rng = np.random.default_rng(7)
    closes = 1.1 + np.cumsum(rng.normal(0, 0.0005, 300))
    candles = []
    for i, c in enumerate(closes):
        o = c + rng.normal(0, 0.0002)
        h = max(o, c) + abs(rng.normal(0, 0.0003))
        l = min(o, c) - abs(rng.normal(0, 0.0003))
        candles.append(make_candle(i, o, h, l, c))
    return candles


class TestFindSwingPoints:
    """Test strict local extrema detection"""

    def test_single_peak(self):
        highs = [1, 2, 3, 5, 3, 2, 1]
        lows = [0.5, 1.5, 2.5, 4.5, 2.5, 1.5, 0.5]
        swings = find_swing_points(candles_from_hl(highs, lows))
        assert swings == [SwingPoint(index=3, time=swings[0].time, price=5, kind=SwingKind.HIGH)]

    def test_too_few_candles(self):
        candles = candles_from_hl([1, 2, 3, 5, 3, 2], [0, 1, 2, 4, 2, 1])
        assert find_swing_points(candles) == []

    def test_ties_never_qualify(self):
        highs = [1, 2, 3, 5, 5, 3, 2, 1]
        lows = [0.5, 1.5, 2.5, 4.5, 4.5, 2.5, 1.5, 0.5]
        assert find_swing_highs(candles_from_hl(highs, lows)) == []

    def test_candle_can_be_high_and_low(self):
        # outside bar in the middle
        highs = [2, 2, 2, 3, 2, 2, 2]
        lows = [1, 1, 1, 0, 1, 1, 1]
        swings = find_swing_points(candles_from_hl(highs, lows))
        assert [(s.index, s.kind) for s in swings] == [(3, SwingKind.HIGH), (3, SwingKind.LOW)]

    def test_lookback_is_configurable(self):
        highs = [1, 3, 1, 2, 1]
        lows = [0.5, 2.5, 0.5, 1.5, 0.5]
        candles = candles_from_hl(highs, lows)
        assert [s.index for s in find_swing_highs(candles, lookback=1)] == [1, 3]
        assert find_swing_highs(candles, lookback=2) == []

    def test_invalid_lookback(self):
        with pytest.raises(ValueError):
            find_swing_points([], lookback=0)

    def test_zigzag_pivots(self):
        candles = wave_candles(zigzag_mids([1.1000, 1.1040, 1.1020, 1.1060, 1.1040, 1.1050]))
        swings = find_swing_points(candles)
        assert [(s.index, s.kind) for s in swings] == [
            (4, SwingKind.HIGH), (8, SwingKind.LOW), (12, SwingKind.HIGH), (16, SwingKind.LOW),
        ]
        assert swings[0].price == pytest.approx(1.1042)
        assert swings[1].price == pytest.approx(1.1018)

    def test_sorted_and_strict_on_random_data(self, random_candles):
        lookback = 3
        swings = find_swing_points(random_candles, lookback)
        indices = [s.index for s in swings]
        assert indices == sorted(indices)
        for s in swings:
            neighbours = (random_candles[s.index - lookback:s.index]
                          + random_candles[s.index + 1:s.index + lookback + 1])
            assert len(neighbours) == 2 * lookback
            if s.kind == SwingKind.HIGH:
                assert all(s.price > c.high for c in neighbours)
            else:
                assert all(s.price < c.low for c in neighbours)

    def test_deterministic(self, random_candles):
        assert find_swing_points(random_candles) == find_swing_points(random_candles)


class TestSwingHelpers:
    """Test swing point selection and comparison helpers"""

    @pytest.fixture
    def swings(self, uptrend):
        return find_swing_points(uptrend)

    def test_most_recent(self, swings):
        assert most_recent_swing_high(swings).price == pytest.approx(1.1142)
        assert most_recent_swing_low(swings).price == pytest.approx(1.1118)

    def test_most_recent_empty(self):
        assert most_recent_swing_high([]) is None
        assert most_recent_swing_low([]) is None

    def test_last_n(self, swings):
        lows = last_n_swings(swings, SwingKind.LOW, 2)
        assert [round(s.price, 4) for s in lows] == [1.1098, 1.1118]
        assert last_n_swings(swings, SwingKind.LOW, 0) == []

    def test_relationships_in_uptrend(self, swings):
        rel = swing_relationships(swings)
        assert rel.higher_high is True
        assert rel.higher_low is True
        assert rel.lower_high is False
        assert rel.lower_low is False

    def test_comparison_kind_mismatch(self, swings):
        high = most_recent_swing_high(swings)
        low = most_recent_swing_low(swings)
        with pytest.raises(ValueError):
            is_higher_high(high, low)
        with pytest.raises(ValueError):
            is_lower_low(high, low)

    def test_direct_comparisons(self):
        a = SwingPoint(1, 0, 1.0, SwingKind.HIGH)
        b = SwingPoint(5, 0, 1.2, SwingKind.HIGH)
        c = SwingPoint(3, 0, 0.9, SwingKind.LOW)
        d = SwingPoint(7, 0, 0.8, SwingKind.LOW)
        assert is_higher_high(b, a)
        assert is_lower_high(a, b)
        assert is_lower_low(d, c)
        assert is_higher_low(c, d)

    def test_relationships_with_too_few_points(self):
        rel = swing_relationships([SwingPoint(1, 0, 1.0, SwingKind.HIGH)])
        assert rel.higher_high is None
        assert rel.lower_low is None

    def test_has_enough(self, swings):
        assert has_enough_swing_points(swings, 4)
        assert not has_enough_swing_points(swings[:3], 4)

    def test_find_lows_from_candles(self, uptrend):
        lows = find_swing_lows(uptrend)
        assert all(s.kind == SwingKind.LOW for s in lows)
        assert len(lows) == 6
