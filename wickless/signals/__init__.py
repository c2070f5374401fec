"""
Setup lifecycle: scanning, retracement monitoring, outcomes and storage
"""
from .models import (
    ActiveSetup,
    Signal,
    SetupStatus,
    SignalOutcome,
    ScanSummary,
    PairStats,
)
from .retracement import (
    RetracementStep,
    UrgencyLevel,
    advance_setup,
    monitor_setups,
    check_retracement,
    remaining_candles,
    is_setup_expired,
    urgency_level,
    is_setup_valid,
)
from .outcome import check_outcome, resolve_signal
from .scanner import (
    ScanStage,
    ScanResult,
    ScanRequest,
    BatchScanResult,
    scan_series,
    scan_many,
    scan_historical,
)
from .repository import (
    SetupRepository,
    InMemorySetupRepository,
    SQLiteSetupRepository,
)
from .manager import SignalManager, CandleReport, EngineStats

__all__ = [
    # Entities
    'ActiveSetup',
    'Signal',
    'SetupStatus',
    'SignalOutcome',
    'ScanSummary',
    'PairStats',

    # Retracement
    'RetracementStep',
    'UrgencyLevel',
    'advance_setup',
    'monitor_setups',
    'check_retracement',
    'remaining_candles',
    'is_setup_expired',
    'urgency_level',
    'is_setup_valid',

    # Outcome
    'check_outcome',
    'resolve_signal',

    # Scanning
    'ScanStage',
    'ScanResult',
    'ScanRequest',
    'BatchScanResult',
    'scan_series',
    'scan_many',
    'scan_historical',

    # Storage
    'SetupRepository',
    'InMemorySetupRepository',
    'SQLiteSetupRepository',

    # Manager
    'SignalManager',
    'CandleReport',
    'EngineStats',
]
