"""
Lifecycle entities: pending setups and the signals they turn into.

ActiveSetup  WAITING -> TRIGGERED | EXPIRED (terminal, never resurrected)
Signal       outcome None -> WIN | LOSS (set once, never reverted)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..candles import Candle
from ..detection.trend import Direction


class SetupStatus(Enum):
    WAITING = "WAITING"
    TRIGGERED = "TRIGGERED"
    EXPIRED = "EXPIRED"


class SignalOutcome(Enum):
    WIN = "WIN"
    LOSS = "LOSS"


TERMINAL_STATUSES = (SetupStatus.TRIGGERED, SetupStatus.EXPIRED)


@dataclass(frozen=True)
class ActiveSetup:
    """A validated setup waiting for price to retrace into its entry zone."""
    id: str
    pair: str
    timeframe: str
    direction: Direction
    entry_zone: float
    stop_loss: float
    take_profit: float
    risk_pips: float
    structure_price: float
    signal_candle: Candle
    created_at: datetime
    candles_elapsed: int = 0
    status: SetupStatus = SetupStatus.WAITING
    last_candle_time: Optional[int] = None   # newest candle already counted

    def __post_init__(self):
        if self.last_candle_time is None:
            object.__setattr__(self, 'last_candle_time', self.signal_candle.time)

    @property
    def signal_candle_time(self) -> int:
        return self.signal_candle.time

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class Signal:
    """A triggered setup with frozen entry, stop and target levels."""
    id: str
    setup_id: str
    pair: str
    timeframe: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit: float
    entry_time: int          # time of the candle that filled the entry
    created_at: datetime
    outcome: Optional[SignalOutcome] = None
    outcome_time: Optional[int] = None
    outcome_price: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.outcome is None


@dataclass
class ScanSummary:
    """What one scheduled scan cycle did."""
    timeframe: str
    started_at: datetime
    pairs_scanned: List[str] = field(default_factory=list)
    signals_found: int = 0
    triggered_count: int = 0
    expired_count: int = 0
    win_count: int = 0
    loss_count: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'timeframe': self.timeframe,
            'started_at': self.started_at.isoformat(),
            'pairs_scanned': list(self.pairs_scanned),
            'signals_found': self.signals_found,
            'triggered_count': self.triggered_count,
            'expired_count': self.expired_count,
            'win_count': self.win_count,
            'loss_count': self.loss_count,
            'errors': list(self.errors),
            'duration_ms': self.duration_ms,
        }


@dataclass(frozen=True)
class PairStats:
    """Performance for one (pair, timeframe). total_signals counts closed signals."""
    pair: str
    timeframe: str
    total_signals: int
    wins: int
    losses: int
    expired: int

    @property
    def win_rate(self) -> float:
        return compute_win_rate(self.wins, self.losses)


def compute_win_rate(wins: int, losses: int) -> float:
    """Percentage of closed signals that won, 0 when none closed."""
    closed = wins + losses
    return round(wins / closed * 100, 2) if closed else 0.0
