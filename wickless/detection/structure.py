"""
Structure-Based Stop Loss / Take Profit

BUY:  SL = most recent swing low  - buffer,  TP = entry + (entry - SL)
SELL: SL = most recent swing high + buffer,  TP = entry - (SL - entry)

Reward-to-risk is always exactly 1:1: levels are snapped to the
instrument's price tick and the target sits the same whole number of
ticks from entry as the stop. Outcomes are expressed as a three-way
SetupResult (no structure / invalid / valid); nothing here raises for an
expected "no trade" outcome.
"""

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Sequence

from ..config import InstrumentConfig, price_to_ticks, ticks_to_price
from .swing_points import SwingPoint, most_recent_swing_high, most_recent_swing_low
from .trend import Direction

logger = logging.getLogger(__name__)

DEFAULT_MIN_RISK_PIPS = 5.0
DEFAULT_MAX_RISK_PIPS = 50.0


@dataclass(frozen=True)
class TradeSetup:
    direction: Direction
    entry_zone: float
    stop_loss: float
    take_profit: float
    risk_distance: float
    risk_pips: float
    structure_point: SwingPoint
    price_decimals: int = 5

    def _ticks(self, price: float) -> int:
        return price_to_ticks(price, self.price_decimals)

    @property
    def risk_ticks(self) -> int:
        return abs(self._ticks(self.entry_zone) - self._ticks(self.stop_loss))

    @property
    def reward_ticks(self) -> int:
        return abs(self._ticks(self.take_profit) - self._ticks(self.entry_zone))

    @property
    def reward_distance(self) -> float:
        return ticks_to_price(self.reward_ticks, self.price_decimals)


@dataclass(frozen=True)
class SetupValidation:
    valid: bool
    reason: str


class SetupResultStatus(Enum):
    NO_STRUCTURE = "NO_STRUCTURE"
    INVALID = "INVALID"
    VALID = "VALID"


@dataclass(frozen=True)
class SetupResult:
    """
    NO_STRUCTURE: no anchor swing, setup and validation are None.
    INVALID:      setup computed but rejected, validation carries the reason.
    VALID:        setup is tradeable.
    """
    status: SetupResultStatus
    setup: Optional[TradeSetup] = None
    validation: Optional[SetupValidation] = None

    @property
    def is_valid(self) -> bool:
        return self.status == SetupResultStatus.VALID


def structure_for_stop(swings: Sequence[SwingPoint], direction: Direction) -> Optional[SwingPoint]:
    """Anchor for the stop: latest swing low for BUY, latest swing high for SELL."""
    if direction == Direction.BUY:
        return most_recent_swing_low(swings)
    return most_recent_swing_high(swings)


def build_trade_setup(direction: Direction, entry_zone: float,
                      structure_point: SwingPoint, instrument: InstrumentConfig) -> TradeSetup:
    # integer tick arithmetic keeps reward and risk identical
    entry = instrument.to_ticks(entry_zone)
    buffer = instrument.to_ticks(instrument.stop_buffer)
    if direction == Direction.BUY:
        stop = instrument.to_ticks(structure_point.price) - buffer
        risk = entry - stop
        target = entry + risk
    else:
        stop = instrument.to_ticks(structure_point.price) + buffer
        risk = stop - entry
        target = entry - risk

    risk_distance = instrument.from_ticks(abs(risk))
    return TradeSetup(
        direction=direction,
        entry_zone=instrument.from_ticks(entry),
        stop_loss=instrument.from_ticks(stop),
        take_profit=instrument.from_ticks(target),
        risk_distance=risk_distance,
        risk_pips=instrument.price_to_pips(risk_distance),
        structure_point=structure_point,
        price_decimals=instrument.price_decimals,
    )


def validate_setup(setup: TradeSetup,
                   min_pips: float = DEFAULT_MIN_RISK_PIPS,
                   max_pips: float = DEFAULT_MAX_RISK_PIPS) -> SetupValidation:
    """Check the risk band and level ordering. Never raises."""
    if setup.risk_pips < min_pips:
        return SetupValidation(False, f"Risk too small: {setup.risk_pips:.1f} pips (min: {min_pips:g})")
    if setup.risk_pips > max_pips:
        return SetupValidation(False, f"Risk too large: {setup.risk_pips:.1f} pips (max: {max_pips:g})")

    if setup.direction == Direction.BUY:
        if setup.entry_zone <= setup.stop_loss:
            return SetupValidation(False, "Entry must be above Stop Loss for BUY")
        if setup.entry_zone >= setup.take_profit:
            return SetupValidation(False, "Entry must be below Take Profit for BUY")
    else:
        if setup.entry_zone >= setup.stop_loss:
            return SetupValidation(False, "Entry must be below Stop Loss for SELL")
        if setup.entry_zone <= setup.take_profit:
            return SetupValidation(False, "Entry must be above Take Profit for SELL")

    return SetupValidation(True, "Setup is valid")


def calculate_trade_setup(direction: Direction, entry_zone: float,
                          swings: Sequence[SwingPoint], instrument: InstrumentConfig,
                          min_pips: float = DEFAULT_MIN_RISK_PIPS,
                          max_pips: float = DEFAULT_MAX_RISK_PIPS) -> SetupResult:
    """
    Derive entry, stop and target from market structure and validate them.

    Args:
        direction: BUY or SELL
        entry_zone: Signal candle low (BUY) or high (SELL)
        swings: Swing points of the analysed series
        instrument: Supplies stop buffer and pip multiplier
        min_pips / max_pips: Accepted risk band

    Returns:
        SetupResult with status NO_STRUCTURE, INVALID or VALID
    """
    anchor = structure_for_stop(swings, direction)
    if anchor is None:
        logger.debug(f"{instrument.symbol}: no swing anchor for {direction.value} stop")
        return SetupResult(SetupResultStatus.NO_STRUCTURE)

    setup = build_trade_setup(direction, entry_zone, anchor, instrument)
    validation = validate_setup(setup, min_pips, max_pips)
    if not validation.valid:
        logger.debug(f"{instrument.symbol}: setup rejected - {validation.reason}")
        return SetupResult(SetupResultStatus.INVALID, setup, validation)

    return SetupResult(SetupResultStatus.VALID, setup, validation)


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def calculate_position_size(account_balance: float, risk_percent: float,
                            risk_pips: float, pip_value: float) -> float:
    """Lots risking `risk_percent` of the balance, floored to 0.01 lot."""
    if risk_pips <= 0 or pip_value <= 0:
        raise ValueError("risk_pips and pip_value must be positive")
    risk_amount = account_balance * (risk_percent / 100)
    position_size = risk_amount / (risk_pips * pip_value)
    return math.floor(position_size * 100) / 100


def check_entry_trigger(setup: TradeSetup, high: float, low: float) -> bool:
    if setup.direction == Direction.BUY:
        return low <= setup.entry_zone
    return high >= setup.entry_zone


def distance_to_entry(setup: TradeSetup, current_price: float, pip_multiplier: float) -> float:
    """Pips price still has to travel to reach entry (negative once passed)."""
    if setup.direction == Direction.BUY:
        distance = current_price - setup.entry_zone
    else:
        distance = setup.entry_zone - current_price
    return distance * pip_multiplier


def adjust_for_spread(setup: TradeSetup, spread: float) -> TradeSetup:
    """Shift entry and target by the spread; the stop stays at the structure level."""
    decimals = setup.price_decimals
    shift = price_to_ticks(spread, decimals)
    if setup.direction == Direction.SELL:
        shift = -shift
    return replace(
        setup,
        entry_zone=ticks_to_price(price_to_ticks(setup.entry_zone, decimals) + shift, decimals),
        take_profit=ticks_to_price(price_to_ticks(setup.take_profit, decimals) + shift, decimals),
    )
