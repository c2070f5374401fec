"""
Retracement Monitor

After a no-wick signal candle, wait for price to tap back into the entry zone:
- BUY triggers when a candle's low reaches the signal candle's low
- SELL triggers when a candle's high reaches the signal candle's high

Each newly observed complete candle increments candles_elapsed by one. The
trigger check runs before the expiry check, so a retracement on the last
allowed candle still triggers. Without a trigger the setup expires once
candles_elapsed reaches max_candles (default 10).

Feeding a candle that was already counted, an incomplete candle, or any
candle to a terminal setup is a no-op.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from ..candles import Candle
from ..detection.trend import Direction
from .models import ActiveSetup, SetupStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANDLES = 10


class UrgencyLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


def is_retraced(direction: Direction, entry_zone: float, high: float, low: float) -> bool:
    if direction == Direction.BUY:
        return low <= entry_zone
    return high >= entry_zone


@dataclass(frozen=True)
class RetracementStep:
    """Result of feeding one candle to one setup."""
    setup: ActiveSetup
    changed: bool

    @property
    def triggered(self) -> bool:
        return self.changed and self.setup.status == SetupStatus.TRIGGERED

    @property
    def expired(self) -> bool:
        return self.changed and self.setup.status == SetupStatus.EXPIRED


def advance_setup(setup: ActiveSetup, candle: Candle,
                  max_candles: int = DEFAULT_MAX_CANDLES) -> RetracementStep:
    """
    Advance a WAITING setup by one newly completed candle.

    Returns:
        RetracementStep with the updated setup, or the original setup and
        changed=False when the candle does not count
    """
    if setup.is_terminal:
        return RetracementStep(setup, changed=False)
    if not candle.complete or candle.time <= setup.last_candle_time:
        return RetracementStep(setup, changed=False)

    elapsed = setup.candles_elapsed + 1

    if is_retraced(setup.direction, setup.entry_zone, candle.high, candle.low):
        status = SetupStatus.TRIGGERED
    elif elapsed >= max_candles:
        status = SetupStatus.EXPIRED
    else:
        status = SetupStatus.WAITING

    updated = replace(setup, candles_elapsed=elapsed, status=status,
                      last_candle_time=candle.time)
    if status != SetupStatus.WAITING:
        logger.debug(f"Setup {setup.id} ({setup.pair}) -> {status.value} after {elapsed} candles")
    return RetracementStep(updated, changed=True)


@dataclass
class MonitorResult:
    triggered: List[ActiveSetup] = field(default_factory=list)
    expired: List[ActiveSetup] = field(default_factory=list)
    still_active: List[ActiveSetup] = field(default_factory=list)


def monitor_setups(setups: Iterable[ActiveSetup], candle: Candle,
                   max_candles: int = DEFAULT_MAX_CANDLES) -> MonitorResult:
    """Feed one candle to many setups; terminal setups are skipped."""
    result = MonitorResult()
    for setup in setups:
        if setup.is_terminal:
            continue
        step = advance_setup(setup, candle, max_candles)
        if step.triggered:
            result.triggered.append(step.setup)
        elif step.expired:
            result.expired.append(step.setup)
        else:
            result.still_active.append(step.setup)
    return result


@dataclass(frozen=True)
class RetracementCheck:
    triggered: bool
    candles_elapsed: int
    entry_price: Optional[float] = None
    trigger_candle: Optional[Candle] = None
    expired: bool = False


def check_retracement(direction: Direction, entry_zone: float,
                      subsequent_candles: Sequence[Candle],
                      max_candles: int = DEFAULT_MAX_CANDLES) -> RetracementCheck:
    """
    Replay the candles that followed a signal candle.

    Only complete candles count, and at most `max_candles` of them.
    """
    elapsed = 0
    for candle in subsequent_candles:
        if not candle.complete:
            continue
        elapsed += 1
        if is_retraced(direction, entry_zone, candle.high, candle.low):
            return RetracementCheck(
                triggered=True,
                candles_elapsed=elapsed,
                entry_price=entry_zone,
                trigger_candle=candle,
            )
        if elapsed >= max_candles:
            break

    return RetracementCheck(
        triggered=False,
        candles_elapsed=elapsed,
        expired=elapsed >= max_candles,
    )


def remaining_candles(candles_elapsed: int, max_candles: int = DEFAULT_MAX_CANDLES) -> int:
    return max(0, max_candles - candles_elapsed)


def is_setup_expired(candles_elapsed: int, max_candles: int = DEFAULT_MAX_CANDLES) -> bool:
    return candles_elapsed >= max_candles


def urgency_level(candles_elapsed: int, max_candles: int = DEFAULT_MAX_CANDLES) -> UrgencyLevel:
    remaining = remaining_candles(candles_elapsed, max_candles)
    if remaining >= 7:
        return UrgencyLevel.LOW
    if remaining >= 4:
        return UrgencyLevel.MEDIUM
    if remaining >= 2:
        return UrgencyLevel.HIGH
    return UrgencyLevel.CRITICAL


def is_setup_valid(setup: ActiveSetup, max_candles: int = DEFAULT_MAX_CANDLES) -> bool:
    """Still waiting and inside its candle window."""
    return setup.status == SetupStatus.WAITING and not is_setup_expired(setup.candles_elapsed, max_candles)
