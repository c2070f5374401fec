"""
Tests for the scan orchestrator
"""

import pytest

from wickless.config import StrategyConfig, get_instrument
from wickless.detection.trend import Direction, Trend
from wickless.signals.scanner import (
    ScanRequest, ScanStage, scan_historical, scan_many, scan_series,
)

from conftest import make_candle

EUR_USD = get_instrument('EUR_USD')


class TestScanSeries:
    """Test the single-instrument pipeline gates"""

    def test_uptrend_buy_setup(self, uptrend):
        result = scan_series('EUR_USD', 'M15', uptrend, EUR_USD)
        assert result.stage == ScanStage.VALID
        assert result.is_actionable
        assert result.trend == Trend.UP
        assert result.candle_count == 54
        assert result.signal_candle.direction == Direction.BUY
        assert result.setup.entry_zone == pytest.approx(1.1134)
        assert result.setup.stop_loss == pytest.approx(1.1116)
        assert result.setup.take_profit == pytest.approx(1.1152)
        assert result.setup.risk_pips == pytest.approx(18.0)
        assert result.scan_time == uptrend[-1].time

    def test_downtrend_sell_setup(self, downtrend):
        result = scan_series('EUR_USD', 'M15', downtrend, EUR_USD)
        assert result.stage == ScanStage.VALID
        assert result.trend == Trend.DOWN
        assert result.setup.direction == Direction.SELL
        assert result.setup.entry_zone == pytest.approx(1.1866)
        assert result.setup.stop_loss == pytest.approx(1.1884)
        assert result.setup.take_profit == pytest.approx(1.1848)

    def test_forming_candle_ignored(self, uptrend):
        forming = make_candle(len(uptrend), 1.1144, 1.1150, 1.1130, 1.1140, complete=False)
        result = scan_series('EUR_USD', 'M15', uptrend + [forming], EUR_USD)
        assert result.stage == ScanStage.VALID
        assert result.candle_count == 54
        assert result.signal_candle.candle == uptrend[-1]

    def test_insufficient_data(self, ranging):
        result = scan_series('EUR_USD', 'M15', ranging, EUR_USD)
        assert result.stage == ScanStage.INSUFFICIENT_DATA
        assert not result.signal_detected

    def test_ranging(self, ranging):
        result = scan_series('EUR_USD', 'M15', ranging, EUR_USD, StrategyConfig(min_candles_required=20))
        assert result.stage == ScanStage.RANGING
        assert result.trend == Trend.RANGING
        assert result.setup is None

    def test_no_signal(self, uptrend):
        result = scan_series('EUR_USD', 'M15', uptrend[:-1], EUR_USD)
        assert result.stage == ScanStage.NO_SIGNAL
        assert result.trend == Trend.UP

    def test_invalid_setup_keeps_levels(self, uptrend):
        strategy = StrategyConfig(min_risk_pips=5, max_risk_pips=10)
        result = scan_series('EUR_USD', 'M15', uptrend, EUR_USD, strategy)
        assert result.stage == ScanStage.INVALID_SETUP
        assert result.signal_detected
        assert not result.is_actionable
        assert result.setup.stop_loss == pytest.approx(1.1116)
        assert result.validation.reason == "Risk too large: 18.0 pips (max: 10)"

    def test_malformed_series_raises(self, uptrend):
        with pytest.raises(ValueError):
            scan_series('EUR_USD', 'M15', list(reversed(uptrend)), EUR_USD)


class TestScanMany:
    """Test concurrent scanning with per-instrument isolation"""

    def test_failure_is_isolated(self, uptrend, downtrend):
        requests = [
            ScanRequest('EUR_USD', 'M15', uptrend, EUR_USD),
            ScanRequest('GBP_USD', 'M15', list(reversed(uptrend)), get_instrument('GBP_USD')),
            ScanRequest('AUD_USD', 'M15', downtrend, get_instrument('AUD_USD')),
        ]
        batch = scan_many(requests, max_workers=3)

        assert [r.pair for r in batch.results] == ['EUR_USD', 'AUD_USD']
        assert [e.pair for e in batch.errors] == ['GBP_USD']
        assert [r.pair for r in batch.signals_found] == ['EUR_USD', 'AUD_USD']

    def test_empty(self):
        batch = scan_many([])
        assert batch.results == []
        assert batch.errors == []


class TestScanHistorical:
    """Test rolling backtest scans"""

    def test_rolling_windows(self, uptrend):
        results = scan_historical('EUR_USD', 'M15', uptrend, EUR_USD)
        assert len(results) == len(uptrend) - 50
        assert [r.is_actionable for r in results] == [False, False, False, True]
        assert results[-1].setup.entry_zone == pytest.approx(1.1134)

    def test_short_series(self, ranging):
        assert scan_historical('EUR_USD', 'M15', ranging, EUR_USD) == []

    def test_custom_start(self, uptrend):
        results = scan_historical('EUR_USD', 'M15', uptrend, EUR_USD, start_index=30)
        assert len(results) == len(uptrend) - 30
        assert all(r.candle_count >= 20 for r in results)
