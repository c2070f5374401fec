"""
Tests for the setup/signal repositories

Every contract test runs against both the in-memory and the SQLite
implementation.
"""

import sqlite3
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from wickless.signals.models import ScanSummary, SetupStatus, Signal, SignalOutcome
from wickless.signals.repository import InMemorySetupRepository, SQLiteSetupRepository

from conftest import T0, STEP, make_setup


@pytest.fixture(params=['memory', 'sqlite'])
def repo(request, tmp_path):
    if request.param == 'memory':
        repository = InMemorySetupRepository()
    else:
        repository = SQLiteSetupRepository(tmp_path / 'signals.db')
    yield repository
    repository.close()


def signal_for(setup, signal_id='sig-1', entry_index=2):
    return Signal(
        id=signal_id,
        setup_id=setup.id,
        pair=setup.pair,
        timeframe=setup.timeframe,
        direction=setup.direction,
        entry_price=setup.entry_zone,
        stop_loss=setup.stop_loss,
        take_profit=setup.take_profit,
        entry_time=T0 + entry_index * STEP,
        created_at=datetime(2024, 1, 2, 12, tzinfo=timezone.utc),
    )


def triggered(setup, elapsed=2):
    return replace(setup, status=SetupStatus.TRIGGERED, candles_elapsed=elapsed,
                   last_candle_time=T0 + elapsed * STEP)


class TestSetups:
    """Test setup identity and deduplication"""

    def test_add_and_get(self, repo):
        setup = make_setup()
        assert repo.add_setup(setup)
        assert repo.get_setup(setup.id) == setup
        assert repo.setup_exists('EUR_USD', setup.signal_candle_time)

    def test_duplicate_signal_candle_rejected(self, repo):
        assert repo.add_setup(make_setup('a'))
        assert not repo.add_setup(make_setup('b'))
        assert repo.get_setup('b') is None

    def test_same_candle_other_pair_allowed(self, repo):
        assert repo.add_setup(make_setup('a', pair='EUR_USD'))
        assert repo.add_setup(make_setup('b', pair='GBP_USD'))

    def test_duplicate_id_rejected(self, repo):
        assert repo.add_setup(make_setup('a', signal_index=0))
        assert not repo.add_setup(make_setup('a', signal_index=5))

    def test_missing(self, repo):
        assert repo.get_setup('nope') is None
        assert not repo.setup_exists('EUR_USD', T0)

    def test_waiting_filters(self, repo):
        repo.add_setup(make_setup('a', pair='EUR_USD'))
        repo.add_setup(make_setup('b', pair='GBP_USD'))
        repo.add_setup(make_setup('c', pair='EUR_USD', timeframe='H1', signal_index=4))

        assert {s.id for s in repo.waiting_setups()} == {'a', 'b', 'c'}
        assert {s.id for s in repo.waiting_setups(pair='EUR_USD')} == {'a', 'c'}
        assert [s.id for s in repo.waiting_setups(pair='EUR_USD', timeframe='H1')] == ['c']


class TestTransitions:
    """Test compare-and-swap lifecycle writes"""

    def test_waiting_step(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        step = replace(setup, candles_elapsed=1, last_candle_time=T0 + STEP)
        assert repo.save_setup_transition(step, expected_elapsed=0)
        assert repo.get_setup(setup.id).candles_elapsed == 1

    def test_stale_writer_loses(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        step = replace(setup, candles_elapsed=1, last_candle_time=T0 + STEP)
        assert repo.save_setup_transition(step, expected_elapsed=0)
        assert not repo.save_setup_transition(step, expected_elapsed=0)

    def test_trigger_inserts_signal_atomically(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        signal = signal_for(setup)

        assert repo.save_setup_transition(triggered(setup), expected_elapsed=0, signal=signal)
        assert repo.get_setup(setup.id).status == SetupStatus.TRIGGERED
        assert repo.get_signal('sig-1') == signal
        assert repo.waiting_setups() == []

    def test_terminal_setup_never_resurrected(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        repo.save_setup_transition(triggered(setup), expected_elapsed=0, signal=signal_for(setup))

        back = replace(setup, candles_elapsed=3, status=SetupStatus.WAITING)
        assert not repo.save_setup_transition(back, expected_elapsed=2)
        assert repo.get_setup(setup.id).status == SetupStatus.TRIGGERED

    def test_conflicting_signal_rolls_back_transition(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        assert repo.add_signal(signal_for(setup, 'sig-1'))

        ok = repo.save_setup_transition(triggered(setup), expected_elapsed=0,
                                        signal=signal_for(setup, 'sig-2'))
        assert not ok
        assert repo.get_setup(setup.id).status == SetupStatus.WAITING
        assert repo.get_signal('sig-2') is None

    def test_unknown_setup(self, repo):
        assert not repo.save_setup_transition(make_setup('ghost'), expected_elapsed=0)

    def test_expired_setups(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        expired = replace(setup, status=SetupStatus.EXPIRED, candles_elapsed=10)
        assert repo.save_setup_transition(expired, expected_elapsed=0)
        assert [s.id for s in repo.expired_setups()] == [setup.id]


class TestSignals:
    """Test signal storage and outcome recording"""

    @pytest.fixture
    def stored(self, repo):
        setup = make_setup()
        repo.add_setup(setup)
        signal = signal_for(setup)
        repo.add_signal(signal)
        return signal

    def test_one_signal_per_setup(self, repo, stored):
        setup = repo.get_setup(stored.setup_id)
        assert not repo.add_signal(signal_for(setup, 'sig-2'))

    def test_open_signals(self, repo, stored):
        assert repo.open_signals() == [stored]
        assert repo.open_signals(pair='GBP_USD') == []
        assert repo.closed_signals() == []

    def test_record_outcome_once(self, repo, stored):
        win = replace(stored, outcome=SignalOutcome.WIN, outcome_time=T0 + 3 * STEP,
                      outcome_price=stored.take_profit)
        loss = replace(win, outcome=SignalOutcome.LOSS, outcome_price=stored.stop_loss)

        assert repo.record_outcome(win)
        assert not repo.record_outcome(loss)
        assert repo.get_signal(stored.id).outcome == SignalOutcome.WIN
        assert repo.closed_signals() == [win]
        assert repo.open_signals() == []

    def test_record_outcome_requires_outcome(self, repo, stored):
        with pytest.raises(ValueError):
            repo.record_outcome(stored)


class TestReporting:
    """Test per-pair stats and scan logs"""

    def test_stats(self, repo):
        for i, (pair, outcome) in enumerate([
            ('EUR_USD', SignalOutcome.WIN), ('EUR_USD', SignalOutcome.LOSS),
            ('EUR_USD', SignalOutcome.WIN), ('GBP_USD', None),
        ]):
            setup = make_setup(f"s{i}", pair=pair, signal_index=i * 20)
            repo.add_setup(setup)
            signal = signal_for(setup, f"sig{i}", entry_index=i * 20 + 1)
            repo.add_signal(signal)
            if outcome:
                repo.record_outcome(replace(signal, outcome=outcome, outcome_time=signal.entry_time + STEP,
                                            outcome_price=signal.take_profit))

        expired = make_setup('x', pair='GBP_USD', signal_index=200)
        repo.add_setup(expired)
        repo.save_setup_transition(replace(expired, status=SetupStatus.EXPIRED, candles_elapsed=10),
                                   expected_elapsed=0)

        stats = {s.pair: s for s in repo.stats()}
        assert stats['EUR_USD'].total_signals == 3
        assert stats['EUR_USD'].wins == 2
        assert stats['EUR_USD'].win_rate == pytest.approx(66.67)
        assert stats['GBP_USD'].total_signals == 0
        assert stats['GBP_USD'].expired == 1
        assert stats['GBP_USD'].win_rate == 0.0

    def test_scan_log(self, repo):
        first = ScanSummary(timeframe='M15', started_at=datetime(2024, 1, 2, 12, tzinfo=timezone.utc),
                            pairs_scanned=['EUR_USD'], signals_found=1, duration_ms=12)
        second = ScanSummary(timeframe='M15', started_at=datetime(2024, 1, 2, 12, 15, tzinfo=timezone.utc),
                             pairs_scanned=['EUR_USD', 'GBP_USD'], triggered_count=1,
                             errors=['GBP_USD: timeout'])
        repo.record_scan(first)
        repo.record_scan(second)

        scans = repo.recent_scans()
        assert scans == [second, first]
        assert repo.recent_scans(limit=1) == [second]


class TestSQLitePersistence:
    """Test SQLite-specific behaviour"""

    def test_survives_reopen(self, tmp_path):
        path = tmp_path / 'nested' / 'signals.db'
        setup = make_setup()
        with SQLiteSetupRepository(path) as repo:
            repo.add_setup(setup)
            repo.save_setup_transition(triggered(setup), expected_elapsed=0, signal=signal_for(setup))

        with SQLiteSetupRepository(path) as repo:
            assert repo.get_setup(setup.id) == triggered(setup)
            assert repo.open_signals()[0].setup_id == setup.id

    def test_signal_requires_setup(self):
        with SQLiteSetupRepository() as repo:
            orphan = signal_for(make_setup('ghost'))
            with pytest.raises(sqlite3.IntegrityError):
                repo.add_signal(orphan)

    def test_performance_view(self):
        with SQLiteSetupRepository() as repo:
            setup = make_setup()
            repo.add_setup(setup)
            signal = signal_for(setup)
            repo.add_signal(signal)
            repo.record_outcome(replace(signal, outcome=SignalOutcome.WIN, outcome_time=signal.entry_time + STEP,
                                        outcome_price=signal.take_profit))
            rows = repo.performance_by_pair()
        assert rows == [{'pair': 'EUR_USD', 'total_signals': 1, 'wins': 1, 'losses': 0, 'win_rate': 100.0}]
