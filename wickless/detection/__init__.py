"""
Detection pipeline: swing points -> trend -> signal candle -> setup
"""
from .swing_points import (
    SwingKind,
    SwingPoint,
    find_swing_points,
    find_swing_highs,
    find_swing_lows,
    most_recent_swing_high,
    most_recent_swing_low,
    swing_relationships,
    has_enough_swing_points,
)
from .trend import (
    Trend,
    Direction,
    TrendAnalysis,
    classify_trend,
    analyze_trend,
    is_trend_tradeable,
    allowed_direction,
    is_trend_aligned,
    trend_strength,
    trend_change_warning,
)
from .signal_candle import (
    SignalCandle,
    detect_signal_candle,
    latest_signal_candle,
    scan_signal_candles,
    analyze_wicks,
    validate_signal_candle,
)
from .structure import (
    TradeSetup,
    SetupResult,
    SetupResultStatus,
    SetupValidation,
    structure_for_stop,
    calculate_trade_setup,
    validate_setup,
    calculate_position_size,
    check_entry_trigger,
    distance_to_entry,
    adjust_for_spread,
)

__all__ = [
    # Swing points
    'SwingKind',
    'SwingPoint',
    'find_swing_points',
    'find_swing_highs',
    'find_swing_lows',
    'most_recent_swing_high',
    'most_recent_swing_low',
    'swing_relationships',
    'has_enough_swing_points',

    # Trend
    'Trend',
    'Direction',
    'TrendAnalysis',
    'classify_trend',
    'analyze_trend',
    'is_trend_tradeable',
    'allowed_direction',
    'is_trend_aligned',
    'trend_strength',
    'trend_change_warning',

    # Signal candle
    'SignalCandle',
    'detect_signal_candle',
    'latest_signal_candle',
    'scan_signal_candles',
    'analyze_wicks',
    'validate_signal_candle',

    # Setup
    'TradeSetup',
    'SetupResult',
    'SetupResultStatus',
    'SetupValidation',
    'structure_for_stop',
    'calculate_trade_setup',
    'validate_setup',
    'calculate_position_size',
    'check_entry_trigger',
    'distance_to_entry',
    'adjust_for_spread',
]
