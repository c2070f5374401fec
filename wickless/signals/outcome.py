"""
Outcome Evaluator

Resolves a triggered signal against later candles:
- BUY:  WIN if high >= take profit, LOSS if low <= stop loss
- SELL: WIN if low <= take profit,  LOSS if high >= stop loss

When one candle touches both levels the intrabar order is unknown.
FillPriority.TARGET_FIRST (default) scores it a WIN, which is an optimistic
fill assumption; FillPriority.STOP_FIRST scores it a LOSS.
"""

import logging
from dataclasses import replace
from typing import Optional

from ..candles import Candle
from ..config import FillPriority
from ..detection.trend import Direction
from .models import Signal, SignalOutcome

logger = logging.getLogger(__name__)


def check_outcome(direction: Direction, stop_loss: float, take_profit: float,
                  high: float, low: float,
                  priority: FillPriority = FillPriority.TARGET_FIRST) -> Optional[SignalOutcome]:
    """
    Returns:
        SignalOutcome.WIN / SignalOutcome.LOSS, or None while still open
    """
    if direction == Direction.BUY:
        target_hit = high >= take_profit
        stop_hit = low <= stop_loss
    else:
        target_hit = low <= take_profit
        stop_hit = high >= stop_loss

    if target_hit and stop_hit:
        if priority == FillPriority.STOP_FIRST:
            return SignalOutcome.LOSS
        return SignalOutcome.WIN
    if target_hit:
        return SignalOutcome.WIN
    if stop_hit:
        return SignalOutcome.LOSS
    return None


def resolve_signal(signal: Signal, candle: Candle,
                   priority: FillPriority = FillPriority.TARGET_FIRST) -> Signal:
    """
    Apply one candle to an open signal.

    The signal is returned unchanged when it is already closed, when the
    candle is incomplete, or when the candle is not newer than the entry
    candle.
    """
    if signal.outcome is not None:
        return signal
    if not candle.complete or candle.time <= signal.entry_time:
        return signal

    outcome = check_outcome(signal.direction, signal.stop_loss, signal.take_profit,
                            candle.high, candle.low, priority)
    if outcome is None:
        return signal

    price = signal.take_profit if outcome == SignalOutcome.WIN else signal.stop_loss
    logger.debug(f"Signal {signal.id} ({signal.pair}) resolved {outcome.value} @ {price}")
    return replace(signal, outcome=outcome, outcome_time=candle.time, outcome_price=price)
