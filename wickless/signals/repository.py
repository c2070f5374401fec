"""
Setup / Signal Repository

Storage boundary for the lifecycle engine. The engine assumes single-writer
ownership per setup id; the repository makes that safe with
compare-and-swap writes:

- add_setup             rejects a duplicate (pair, signal_candle_time)
- save_setup_transition applies only if the stored setup is still WAITING
                        with the expected candles_elapsed
- add_signal            rejects a second signal for the same setup
- record_outcome        applies only while the stored outcome is NULL

Two implementations: InMemorySetupRepository (lock-guarded dicts) and
SQLiteSetupRepository (WAL mode, UNIQUE constraints, conditional UPDATEs).
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..candles import Candle
from ..detection.trend import Direction
from .models import (
    ActiveSetup, PairStats, ScanSummary, SetupStatus, Signal, SignalOutcome,
)

logger = logging.getLogger(__name__)


class SetupRepository(ABC):
    """Persistence contract for setups, signals and scan logs."""

    # ── Setups ──

    @abstractmethod
    def add_setup(self, setup: ActiveSetup) -> bool:
        """Insert a new setup. False if (pair, signal_candle_time) or id already exists."""

    @abstractmethod
    def get_setup(self, setup_id: str) -> Optional[ActiveSetup]:
        ...

    @abstractmethod
    def setup_exists(self, pair: str, signal_candle_time: int) -> bool:
        ...

    @abstractmethod
    def waiting_setups(self, pair: Optional[str] = None,
                       timeframe: Optional[str] = None) -> List[ActiveSetup]:
        ...

    @abstractmethod
    def expired_setups(self, pair: Optional[str] = None,
                       timeframe: Optional[str] = None) -> List[ActiveSetup]:
        ...

    @abstractmethod
    def save_setup_transition(self, updated: ActiveSetup, expected_elapsed: int,
                              signal: Optional[Signal] = None) -> bool:
        """
        Persist a monitor step for a WAITING setup.

        Applies only if the stored setup is WAITING with candles_elapsed ==
        expected_elapsed. When `signal` is given it is inserted in the same
        unit of work. Returns False (and writes nothing) on conflict.
        """

    # ── Signals ──

    @abstractmethod
    def add_signal(self, signal: Signal) -> bool:
        """Insert a signal. False if one already exists for the setup."""

    @abstractmethod
    def get_signal(self, signal_id: str) -> Optional[Signal]:
        ...

    @abstractmethod
    def open_signals(self, pair: Optional[str] = None,
                     timeframe: Optional[str] = None) -> List[Signal]:
        ...

    @abstractmethod
    def closed_signals(self, pair: Optional[str] = None,
                       timeframe: Optional[str] = None) -> List[Signal]:
        ...

    @abstractmethod
    def record_outcome(self, signal: Signal) -> bool:
        """Write a resolved outcome. False if the stored signal is already closed."""

    # ── Reporting ──

    @abstractmethod
    def stats(self) -> List[PairStats]:
        ...

    @abstractmethod
    def record_scan(self, summary: ScanSummary) -> None:
        ...

    @abstractmethod
    def recent_scans(self, limit: int = 20) -> List[ScanSummary]:
        ...

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def _matches(item, pair: Optional[str], timeframe: Optional[str]) -> bool:
    return (pair is None or item.pair == pair) and (timeframe is None or item.timeframe == timeframe)


def _build_stats(setups: Iterable[ActiveSetup], signals: Iterable[Signal]) -> List[PairStats]:
    counts: Dict[Tuple[str, str], Dict[str, int]] = {}

    def bucket(pair, timeframe):
        return counts.setdefault((pair, timeframe), {'wins': 0, 'losses': 0, 'expired': 0})

    for setup in setups:
        if setup.status == SetupStatus.EXPIRED:
            bucket(setup.pair, setup.timeframe)['expired'] += 1
    for signal in signals:
        if signal.outcome == SignalOutcome.WIN:
            bucket(signal.pair, signal.timeframe)['wins'] += 1
        elif signal.outcome == SignalOutcome.LOSS:
            bucket(signal.pair, signal.timeframe)['losses'] += 1

    return [
        PairStats(pair=pair, timeframe=timeframe,
                  total_signals=c['wins'] + c['losses'],
                  wins=c['wins'], losses=c['losses'], expired=c['expired'])
        for (pair, timeframe), c in sorted(counts.items())
    ]


# ═══════════════════════════════════════════════════════════════════════════
# IN-MEMORY
# ═══════════════════════════════════════════════════════════════════════════

class InMemorySetupRepository(SetupRepository):
    """Thread-safe dict-backed repository for tests and replays."""

    def __init__(self):
        self._lock = threading.Lock()
        self._setups: Dict[str, ActiveSetup] = {}
        self._setup_keys: Dict[Tuple[str, int], str] = {}
        self._signals: Dict[str, Signal] = {}
        self._signal_by_setup: Dict[str, str] = {}
        self._scans: List[ScanSummary] = []

    def add_setup(self, setup: ActiveSetup) -> bool:
        key = (setup.pair, setup.signal_candle_time)
        with self._lock:
            if key in self._setup_keys or setup.id in self._setups:
                return False
            self._setups[setup.id] = setup
            self._setup_keys[key] = setup.id
            return True

    def get_setup(self, setup_id: str) -> Optional[ActiveSetup]:
        with self._lock:
            return self._setups.get(setup_id)

    def setup_exists(self, pair: str, signal_candle_time: int) -> bool:
        with self._lock:
            return (pair, signal_candle_time) in self._setup_keys

    def waiting_setups(self, pair=None, timeframe=None) -> List[ActiveSetup]:
        with self._lock:
            return [s for s in self._setups.values()
                    if s.status == SetupStatus.WAITING and _matches(s, pair, timeframe)]

    def expired_setups(self, pair=None, timeframe=None) -> List[ActiveSetup]:
        with self._lock:
            return [s for s in self._setups.values()
                    if s.status == SetupStatus.EXPIRED and _matches(s, pair, timeframe)]

    def save_setup_transition(self, updated: ActiveSetup, expected_elapsed: int,
                              signal: Optional[Signal] = None) -> bool:
        with self._lock:
            stored = self._setups.get(updated.id)
            if stored is None or stored.status != SetupStatus.WAITING:
                return False
            if stored.candles_elapsed != expected_elapsed:
                return False
            if signal is not None and signal.setup_id in self._signal_by_setup:
                return False
            self._setups[updated.id] = updated
            if signal is not None:
                self._signals[signal.id] = signal
                self._signal_by_setup[signal.setup_id] = signal.id
            return True

    def add_signal(self, signal: Signal) -> bool:
        with self._lock:
            if signal.setup_id in self._signal_by_setup or signal.id in self._signals:
                return False
            self._signals[signal.id] = signal
            self._signal_by_setup[signal.setup_id] = signal.id
            return True

    def get_signal(self, signal_id: str) -> Optional[Signal]:
        with self._lock:
            return self._signals.get(signal_id)

    def open_signals(self, pair=None, timeframe=None) -> List[Signal]:
        with self._lock:
            return [s for s in self._signals.values()
                    if s.outcome is None and _matches(s, pair, timeframe)]

    def closed_signals(self, pair=None, timeframe=None) -> List[Signal]:
        with self._lock:
            return [s for s in self._signals.values()
                    if s.outcome is not None and _matches(s, pair, timeframe)]

    def record_outcome(self, signal: Signal) -> bool:
        if signal.outcome is None:
            raise ValueError(f"Signal {signal.id} has no outcome to record")
        with self._lock:
            stored = self._signals.get(signal.id)
            if stored is None or stored.outcome is not None:
                return False
            self._signals[signal.id] = replace(
                stored,
                outcome=signal.outcome,
                outcome_time=signal.outcome_time,
                outcome_price=signal.outcome_price,
            )
            return True

    def stats(self) -> List[PairStats]:
        with self._lock:
            return _build_stats(list(self._setups.values()), list(self._signals.values()))

    def record_scan(self, summary: ScanSummary) -> None:
        with self._lock:
            self._scans.append(summary)

    def recent_scans(self, limit: int = 20) -> List[ScanSummary]:
        with self._lock:
            return list(reversed(self._scans))[:limit]


# ═══════════════════════════════════════════════════════════════════════════
# SQLITE
# ═══════════════════════════════════════════════════════════════════════════

SCHEMA_SQL = """
-- Setups waiting for retracement (WAITING -> TRIGGERED | EXPIRED)
CREATE TABLE IF NOT EXISTS active_setups (
    id TEXT PRIMARY KEY,
    pair TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('BUY', 'SELL')),
    signal_candle_time INTEGER NOT NULL,
    signal_candle_open REAL NOT NULL,
    signal_candle_high REAL NOT NULL,
    signal_candle_low REAL NOT NULL,
    signal_candle_close REAL NOT NULL,
    entry_zone REAL NOT NULL,
    stop_loss REAL NOT NULL,
    take_profit REAL NOT NULL,
    risk_pips REAL NOT NULL,
    structure_price REAL NOT NULL,
    candles_elapsed INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'WAITING' CHECK (status IN ('WAITING', 'TRIGGERED', 'EXPIRED')),
    last_candle_time INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at INTEGER DEFAULT (strftime('%s', 'now')),
    UNIQUE(pair, signal_candle_time)
);

CREATE INDEX IF NOT EXISTS idx_active_setups_pair ON active_setups(pair, timeframe);
CREATE INDEX IF NOT EXISTS idx_active_setups_status ON active_setups(status);

-- Triggered entries and their outcomes
CREATE TABLE IF NOT EXISTS signals (
    id TEXT PRIMARY KEY,
    setup_id TEXT NOT NULL REFERENCES active_setups(id),
    pair TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('BUY', 'SELL')),
    entry_price REAL NOT NULL,
    stop_loss REAL NOT NULL,
    take_profit REAL NOT NULL,
    entry_time INTEGER NOT NULL,
    outcome TEXT CHECK (outcome IN ('WIN', 'LOSS')),
    outcome_time INTEGER,
    outcome_price REAL,
    created_at TEXT NOT NULL,
    UNIQUE(setup_id)
);

CREATE INDEX IF NOT EXISTS idx_signals_pair ON signals(pair, timeframe);
CREATE INDEX IF NOT EXISTS idx_signals_outcome ON signals(outcome);
CREATE INDEX IF NOT EXISTS idx_signals_entry_time ON signals(entry_time);

-- One row per scan cycle
CREATE TABLE IF NOT EXISTS scan_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timeframe TEXT NOT NULL,
    started_at TEXT NOT NULL,
    pairs_scanned TEXT NOT NULL,
    signals_found INTEGER DEFAULT 0,
    results TEXT,
    duration_ms INTEGER
);

CREATE INDEX IF NOT EXISTS idx_scan_logs_started ON scan_logs(started_at);

-- Win rate per pair across timeframes
CREATE VIEW IF NOT EXISTS v_performance_by_pair AS
SELECT
    pair,
    SUM(CASE WHEN outcome IS NOT NULL THEN 1 ELSE 0 END) as total_signals,
    SUM(CASE WHEN outcome = 'WIN' THEN 1 ELSE 0 END) as wins,
    SUM(CASE WHEN outcome = 'LOSS' THEN 1 ELSE 0 END) as losses,
    ROUND(
        CAST(SUM(CASE WHEN outcome = 'WIN' THEN 1 ELSE 0 END) AS REAL) * 100 /
        NULLIF(SUM(CASE WHEN outcome IS NOT NULL THEN 1 ELSE 0 END), 0),
        2
    ) as win_rate
FROM signals
GROUP BY pair;
"""

_SETUP_COLUMNS = """
    id, pair, timeframe, direction,
    signal_candle_time, signal_candle_open, signal_candle_high,
    signal_candle_low, signal_candle_close,
    entry_zone, stop_loss, take_profit, risk_pips, structure_price,
    candles_elapsed, status, last_candle_time, created_at
"""

_SIGNAL_COLUMNS = """
    id, setup_id, pair, timeframe, direction,
    entry_price, stop_loss, take_profit, entry_time,
    outcome, outcome_time, outcome_price, created_at
"""


def _setup_row(setup: ActiveSetup) -> dict:
    candle = setup.signal_candle
    return {
        'id': setup.id,
        'pair': setup.pair,
        'timeframe': setup.timeframe,
        'direction': setup.direction.value,
        'signal_candle_time': candle.time,
        'signal_candle_open': candle.open,
        'signal_candle_high': candle.high,
        'signal_candle_low': candle.low,
        'signal_candle_close': candle.close,
        'entry_zone': setup.entry_zone,
        'stop_loss': setup.stop_loss,
        'take_profit': setup.take_profit,
        'risk_pips': setup.risk_pips,
        'structure_price': setup.structure_price,
        'candles_elapsed': setup.candles_elapsed,
        'status': setup.status.value,
        'last_candle_time': setup.last_candle_time,
        'created_at': setup.created_at.isoformat(),
    }


def _setup_from_row(row: sqlite3.Row) -> ActiveSetup:
    return ActiveSetup(
        id=row['id'],
        pair=row['pair'],
        timeframe=row['timeframe'],
        direction=Direction(row['direction']),
        entry_zone=row['entry_zone'],
        stop_loss=row['stop_loss'],
        take_profit=row['take_profit'],
        risk_pips=row['risk_pips'],
        structure_price=row['structure_price'],
        signal_candle=Candle(
            time=row['signal_candle_time'],
            open=row['signal_candle_open'],
            high=row['signal_candle_high'],
            low=row['signal_candle_low'],
            close=row['signal_candle_close'],
        ),
        created_at=datetime.fromisoformat(row['created_at']),
        candles_elapsed=row['candles_elapsed'],
        status=SetupStatus(row['status']),
        last_candle_time=row['last_candle_time'],
    )


def _signal_row(signal: Signal) -> dict:
    return {
        'id': signal.id,
        'setup_id': signal.setup_id,
        'pair': signal.pair,
        'timeframe': signal.timeframe,
        'direction': signal.direction.value,
        'entry_price': signal.entry_price,
        'stop_loss': signal.stop_loss,
        'take_profit': signal.take_profit,
        'entry_time': signal.entry_time,
        'outcome': signal.outcome.value if signal.outcome else None,
        'outcome_time': signal.outcome_time,
        'outcome_price': signal.outcome_price,
        'created_at': signal.created_at.isoformat(),
    }


def _signal_from_row(row: sqlite3.Row) -> Signal:
    return Signal(
        id=row['id'],
        setup_id=row['setup_id'],
        pair=row['pair'],
        timeframe=row['timeframe'],
        direction=Direction(row['direction']),
        entry_price=row['entry_price'],
        stop_loss=row['stop_loss'],
        take_profit=row['take_profit'],
        entry_time=row['entry_time'],
        created_at=datetime.fromisoformat(row['created_at']),
        outcome=SignalOutcome(row['outcome']) if row['outcome'] else None,
        outcome_time=row['outcome_time'],
        outcome_price=row['outcome_price'],
    )


def _filters(pair: Optional[str], timeframe: Optional[str]) -> Tuple[str, list]:
    clauses, params = [], []
    if pair is not None:
        clauses.append("pair = ?")
        params.append(pair)
    if timeframe is not None:
        clauses.append("timeframe = ?")
        params.append(timeframe)
    return ''.join(f" AND {c}" for c in clauses), params


class SQLiteSetupRepository(SetupRepository):
    """
    SQLite repository with WAL mode.

    Writes are serialised through a lock and each one is a single
    transaction; CAS conditions live in the UPDATE ... WHERE clauses.
    """

    def __init__(self, db_path: Union[str, Path] = ':memory:'):
        self.db_path = str(db_path)
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
        self.conn.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

        logger.info(f"Signal DB initialized at {self.db_path}")

    def _configure(self):
        self.conn.executescript("""
            PRAGMA journal_mode=WAL;
            PRAGMA synchronous=NORMAL;
            PRAGMA foreign_keys=ON;
            PRAGMA temp_store=MEMORY;
        """)

    def _create_schema(self):
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # ── Setups ──

    def add_setup(self, setup: ActiveSetup) -> bool:
        row = _setup_row(setup)
        with self._lock, self.conn:
            cursor = self.conn.execute(
                f"INSERT OR IGNORE INTO active_setups ({_SETUP_COLUMNS}) "
                f"VALUES ({', '.join(':' + k for k in row)})",
                row,
            )
            return cursor.rowcount == 1

    def get_setup(self, setup_id: str) -> Optional[ActiveSetup]:
        rows = self._query(f"SELECT {_SETUP_COLUMNS} FROM active_setups WHERE id = ?", (setup_id,))
        return _setup_from_row(rows[0]) if rows else None

    def setup_exists(self, pair: str, signal_candle_time: int) -> bool:
        rows = self._query(
            "SELECT 1 FROM active_setups WHERE pair = ? AND signal_candle_time = ?",
            (pair, signal_candle_time),
        )
        return bool(rows)

    def _setups_with_status(self, status: SetupStatus, pair, timeframe) -> List[ActiveSetup]:
        where, params = _filters(pair, timeframe)
        rows = self._query(
            f"SELECT {_SETUP_COLUMNS} FROM active_setups WHERE status = ?{where} "
            f"ORDER BY signal_candle_time",
            [status.value] + params,
        )
        return [_setup_from_row(r) for r in rows]

    def waiting_setups(self, pair=None, timeframe=None) -> List[ActiveSetup]:
        return self._setups_with_status(SetupStatus.WAITING, pair, timeframe)

    def expired_setups(self, pair=None, timeframe=None) -> List[ActiveSetup]:
        return self._setups_with_status(SetupStatus.EXPIRED, pair, timeframe)

    def save_setup_transition(self, updated: ActiveSetup, expected_elapsed: int,
                              signal: Optional[Signal] = None) -> bool:
        with self._lock:
            try:
                with self.conn:
                    cursor = self.conn.execute("""
                        UPDATE active_setups
                        SET candles_elapsed = ?, status = ?, last_candle_time = ?,
                            updated_at = strftime('%s', 'now')
                        WHERE id = ? AND status = 'WAITING' AND candles_elapsed = ?
                    """, (updated.candles_elapsed, updated.status.value, updated.last_candle_time,
                          updated.id, expected_elapsed))
                    if cursor.rowcount != 1:
                        return False
                    if signal is not None:
                        row = _signal_row(signal)
                        self.conn.execute(
                            f"INSERT INTO signals ({_SIGNAL_COLUMNS}) "
                            f"VALUES ({', '.join(':' + k for k in row)})",
                            row,
                        )
            except sqlite3.IntegrityError as e:
                # the context manager has rolled the setup update back
                logger.warning(f"Setup {updated.id} transition rejected: {e}")
                return False
        return True

    # ── Signals ──

    def add_signal(self, signal: Signal) -> bool:
        row = _signal_row(signal)
        with self._lock, self.conn:
            cursor = self.conn.execute(
                f"INSERT OR IGNORE INTO signals ({_SIGNAL_COLUMNS}) "
                f"VALUES ({', '.join(':' + k for k in row)})",
                row,
            )
            return cursor.rowcount == 1

    def get_signal(self, signal_id: str) -> Optional[Signal]:
        rows = self._query(f"SELECT {_SIGNAL_COLUMNS} FROM signals WHERE id = ?", (signal_id,))
        return _signal_from_row(rows[0]) if rows else None

    def open_signals(self, pair=None, timeframe=None) -> List[Signal]:
        where, params = _filters(pair, timeframe)
        rows = self._query(
            f"SELECT {_SIGNAL_COLUMNS} FROM signals WHERE outcome IS NULL{where} ORDER BY entry_time",
            params,
        )
        return [_signal_from_row(r) for r in rows]

    def closed_signals(self, pair=None, timeframe=None) -> List[Signal]:
        where, params = _filters(pair, timeframe)
        rows = self._query(
            f"SELECT {_SIGNAL_COLUMNS} FROM signals WHERE outcome IS NOT NULL{where} "
            f"ORDER BY outcome_time",
            params,
        )
        return [_signal_from_row(r) for r in rows]

    def record_outcome(self, signal: Signal) -> bool:
        if signal.outcome is None:
            raise ValueError(f"Signal {signal.id} has no outcome to record")
        with self._lock, self.conn:
            cursor = self.conn.execute("""
                UPDATE signals
                SET outcome = ?, outcome_time = ?, outcome_price = ?
                WHERE id = ? AND outcome IS NULL
            """, (signal.outcome.value, signal.outcome_time, signal.outcome_price, signal.id))
            return cursor.rowcount == 1

    # ── Reporting ──

    def stats(self) -> List[PairStats]:
        return _build_stats(self.expired_setups(), self.closed_signals())

    def performance_by_pair(self) -> List[dict]:
        return [dict(r) for r in self._query("SELECT * FROM v_performance_by_pair ORDER BY pair")]

    def record_scan(self, summary: ScanSummary) -> None:
        results = {
            'triggered_count': summary.triggered_count,
            'expired_count': summary.expired_count,
            'win_count': summary.win_count,
            'loss_count': summary.loss_count,
            'errors': summary.errors,
        }
        with self._lock, self.conn:
            self.conn.execute("""
                INSERT INTO scan_logs (timeframe, started_at, pairs_scanned, signals_found,
                                       results, duration_ms)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (summary.timeframe, summary.started_at.isoformat(),
                  json.dumps(summary.pairs_scanned), summary.signals_found,
                  json.dumps(results), summary.duration_ms))

    def recent_scans(self, limit: int = 20) -> List[ScanSummary]:
        rows = self._query(
            "SELECT * FROM scan_logs ORDER BY id DESC LIMIT ?", (limit,)
        )
        scans = []
        for row in rows:
            results = json.loads(row['results'] or '{}')
            scans.append(ScanSummary(
                timeframe=row['timeframe'],
                started_at=datetime.fromisoformat(row['started_at']),
                pairs_scanned=json.loads(row['pairs_scanned']),
                signals_found=row['signals_found'],
                triggered_count=results.get('triggered_count', 0),
                expired_count=results.get('expired_count', 0),
                win_count=results.get('win_count', 0),
                loss_count=results.get('loss_count', 0),
                errors=results.get('errors', []),
                duration_ms=row['duration_ms'] or 0,
            ))
        return scans
