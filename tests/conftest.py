"""
Shared candle builders for the test suite.

The trend builders produce a zigzag whose pivots are the only swing points
(lookback 3), followed by a short continuation leg and a no-wick signal
candle as the most recent complete candle.

Uptrend with 6 cycles from 1.1000:
    last swing low 1.1120 (candle low 1.1118), last swing high 1.1140
    signal candle open=low=1.1134 -> entry 1.1134, stop 1.1116, target 1.1152
"""

from datetime import datetime, timezone

import pytest

from wickless.candles import Candle
from wickless.detection.trend import Direction
from wickless.signals.models import ActiveSetup, SetupStatus

T0 = 1_700_000_000
STEP = 900  # M15


def make_candle(i, open, high, low, close, complete=True):
    return Candle(time=T0 + i * STEP, open=open, high=high, low=low, close=close, complete=complete)


def zigzag_mids(pivots, steps=4):
    mids = [pivots[0]]
    for a, b in zip(pivots, pivots[1:]):
        for k in range(1, steps + 1):
            mids.append(a + (b - a) * k / steps)
    return mids


def wave_candles(mids, first_index=0):
    """Bullish candles with 1 pip wicks on both sides around each mid price."""
    return [
        make_candle(first_index + i, m - 0.0001, m + 0.0002, m - 0.0002, m + 0.0001)
        for i, m in enumerate(mids)
    ]


def build_uptrend(cycles=6, start=1.1000):
    pivots = [start]
    low = start
    for _ in range(cycles):
        high = low + 0.0040
        low = high - 0.0020
        pivots += [high, low]
    pivots.append(low + 0.0016)

    candles = wave_candles(zigzag_mids(pivots))
    entry = low + 0.0014
    candles.append(make_candle(len(candles), entry, entry + 0.0012, entry, entry + 0.0010))
    return candles


def build_downtrend(cycles=6, start=1.2000):
    pivots = [start]
    high = start
    for _ in range(cycles):
        low = high - 0.0040
        high = low + 0.0020
        pivots += [low, high]
    pivots.append(high - 0.0016)

    mids = zigzag_mids(pivots)
    candles = [
        make_candle(i, m + 0.0001, m + 0.0002, m - 0.0002, m - 0.0001)
        for i, m in enumerate(mids)
    ]
    entry = high - 0.0014
    candles.append(make_candle(len(candles), entry, entry, entry - 0.0012, entry - 0.0010))
    return candles


def build_ranging(start=1.1000):
    """Expanding range: higher highs with lower lows."""
    pivots = [start, 1.1040, 1.0990, 1.1050, 1.0980, 1.1060, 1.0970, 1.1070, 1.0960, 1.0976]
    candles = wave_candles(zigzag_mids(pivots))
    entry = 1.0974
    candles.append(make_candle(len(candles), entry, entry + 0.0012, entry, entry + 0.0010))
    return candles


def uptrend_followups(start_index):
    """No retrace, retrace into entry (1.1134), then a candle through the 1.1152 target."""
    return [
        make_candle(start_index, 1.1144, 1.1148, 1.1140, 1.1142),
        make_candle(start_index + 1, 1.1142, 1.1143, 1.1130, 1.1135),
        make_candle(start_index + 2, 1.1135, 1.1155, 1.1133, 1.1150),
    ]


def make_setup(setup_id='setup-1', pair='EUR_USD', timeframe='M15',
               direction=Direction.BUY, entry=1.0999, stop=1.0948, target=1.1050,
               signal_index=0, candles_elapsed=0, status=SetupStatus.WAITING):
    if direction == Direction.BUY:
        signal = make_candle(signal_index, 1.0999, 1.1010, 1.0999, 1.1008)
    else:
        signal = make_candle(signal_index, entry, entry, entry - 0.0010, entry - 0.0008)
    return ActiveSetup(
        id=setup_id,
        pair=pair,
        timeframe=timeframe,
        direction=direction,
        entry_zone=entry,
        stop_loss=stop,
        take_profit=target,
        risk_pips=abs(entry - stop) * 10000,
        structure_price=stop + 0.0002 if direction == Direction.BUY else stop - 0.0002,
        signal_candle=signal,
        created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
        candles_elapsed=candles_elapsed,
        status=status,
    )


@pytest.fixture
def uptrend():
    return build_uptrend()


@pytest.fixture
def downtrend():
    return build_downtrend()


@pytest.fixture
def ranging():
    return build_ranging()


@pytest.fixture
def fixed_clock():
    now = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
    return lambda: now


@pytest.fixture
def id_factory():
    counter = iter(range(1, 10_000))
    return lambda: f"id-{next(counter)}"
