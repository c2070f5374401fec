"""
Engine Configuration

Per-instrument settings (no-wick tolerance, stop buffer, pip multiplier)
and strategy constants, loaded from config.yaml with built-in defaults.

Resolution order for the config file:
1. explicit path passed to load_config()
2. WICKLESS_CONFIG environment variable (.env honoured)
3. config.yaml in the repository root

Environment overrides: WICKLESS_DB_PATH, LOG_LEVEL.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_EVEN, Decimal
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / 'config.yaml'
DEFAULT_DB_PATH = Path.home() / 'wickless' / 'signals.db'


class ConfigError(ValueError):
    """Raised when configuration values are missing or inconsistent."""


class UnknownInstrumentError(KeyError):
    """Raised when a pair has no instrument configuration."""


class FillPriority(Enum):
    """Which level wins when stop and target are both touched in one candle."""
    TARGET_FIRST = "TARGET_FIRST"   # optimistic
    STOP_FIRST = "STOP_FIRST"       # pessimistic


# ═══════════════════════════════════════════════════════════════════════════
# INSTRUMENTS
# ═══════════════════════════════════════════════════════════════════════════

def price_to_ticks(price: float, decimals: int) -> int:
    """Whole price ticks (10 ** -decimals) in `price`, rounded half-even."""
    scaled = Decimal(repr(float(price))).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_HALF_EVEN))


def ticks_to_price(ticks: int, decimals: int) -> float:
    return float(Decimal(ticks).scaleb(-decimals))


@dataclass(frozen=True)
class InstrumentConfig:
    """Per-instrument detection settings."""
    symbol: str
    display_name: str
    tolerance: float        # absolute price tolerance for "no wick" (epsilon)
    stop_buffer: float      # added beyond the structure point for the stop
    pip_multiplier: float   # price difference -> pips
    price_decimals: int = 5

    def __post_init__(self):
        if self.tolerance <= 0:
            raise ConfigError(f"{self.symbol}: tolerance must be > 0")
        if self.stop_buffer < 0:
            raise ConfigError(f"{self.symbol}: stop_buffer must be >= 0")
        if self.pip_multiplier <= 0:
            raise ConfigError(f"{self.symbol}: pip_multiplier must be > 0")

    def price_to_pips(self, price_distance: float) -> float:
        return price_distance * self.pip_multiplier

    def pips_to_price(self, pips: float) -> float:
        return pips / self.pip_multiplier

    def format_price(self, price: float) -> str:
        return f"{price:.{self.price_decimals}f}"

    def to_ticks(self, price: float) -> int:
        return price_to_ticks(price, self.price_decimals)

    def from_ticks(self, ticks: int) -> float:
        return ticks_to_price(ticks, self.price_decimals)


PAIR_CONFIGS: Dict[str, InstrumentConfig] = {
    'EUR_USD': InstrumentConfig('EUR_USD', 'EUR/USD', tolerance=0.00002, stop_buffer=0.0002,
                                pip_multiplier=10000),
    'GBP_USD': InstrumentConfig('GBP_USD', 'GBP/USD', tolerance=0.00002, stop_buffer=0.0002,
                                pip_multiplier=10000),
    'AUD_USD': InstrumentConfig('AUD_USD', 'AUD/USD', tolerance=0.00002, stop_buffer=0.0002,
                                pip_multiplier=10000),
    'USD_JPY': InstrumentConfig('USD_JPY', 'USD/JPY', tolerance=0.002, stop_buffer=0.02,
                                pip_multiplier=100, price_decimals=3),
    'XAU_USD': InstrumentConfig('XAU_USD', 'Gold (XAU/USD)', tolerance=0.02, stop_buffer=0.20,
                                pip_multiplier=10, price_decimals=2),
}

# Best performers first
RECOMMENDED_PAIRS: List[str] = ['USD_JPY', 'GBP_USD', 'AUD_USD', 'XAU_USD']

PAIR_PRIORITY: Dict[str, int] = {
    'USD_JPY': 1,
    'GBP_USD': 2,
    'AUD_USD': 3,
    'EUR_USD': 4,
    'XAU_USD': 5,
}

VALID_TIMEFRAMES: List[str] = ['M15', 'M30', 'H1', 'H4']
DEFAULT_TIMEFRAME = 'M15'


# ═══════════════════════════════════════════════════════════════════════════
# STRATEGY
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StrategyConfig:
    """Strategy constants shared by every instrument."""
    swing_lookback: int = 3
    max_candles_for_entry: int = 10
    min_swing_points: int = 4
    min_risk_pips: float = 5.0
    max_risk_pips: float = 50.0
    candles_to_fetch: int = 100
    min_candles_required: int = 50
    fill_priority: FillPriority = FillPriority.TARGET_FIRST

    def __post_init__(self):
        if self.swing_lookback < 1:
            raise ConfigError("swing_lookback must be >= 1")
        if self.max_candles_for_entry < 1:
            raise ConfigError("max_candles_for_entry must be >= 1")
        if self.min_swing_points < 0:
            raise ConfigError("min_swing_points must be >= 0")
        if self.min_risk_pips < 0 or self.max_risk_pips < self.min_risk_pips:
            raise ConfigError(
                f"Invalid risk band: [{self.min_risk_pips}, {self.max_risk_pips}] pips"
            )
        if self.min_candles_required < 0:
            raise ConfigError("min_candles_required must be >= 0")


@dataclass
class EngineConfig:
    """Everything the engine and its entry points need."""
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    instruments: Dict[str, InstrumentConfig] = field(default_factory=lambda: dict(PAIR_CONFIGS))
    pairs: List[str] = field(default_factory=lambda: list(RECOMMENDED_PAIRS))
    timeframes: List[str] = field(default_factory=lambda: list(VALID_TIMEFRAMES))
    db_path: Path = DEFAULT_DB_PATH
    log_level: str = 'INFO'

    def instrument(self, pair: str) -> InstrumentConfig:
        return get_instrument(pair, self.instruments)


def get_instrument(pair: str,
                   instruments: Optional[Dict[str, InstrumentConfig]] = None) -> InstrumentConfig:
    instruments = PAIR_CONFIGS if instruments is None else instruments
    try:
        return instruments[pair]
    except KeyError:
        raise UnknownInstrumentError(
            f"Unknown pair: {pair}. Must be one of {list(instruments.keys())}"
        )


def is_valid_pair(pair: str, instruments: Optional[Dict[str, InstrumentConfig]] = None) -> bool:
    return pair in (PAIR_CONFIGS if instruments is None else instruments)


def is_valid_timeframe(timeframe: str) -> bool:
    return timeframe in VALID_TIMEFRAMES


def price_to_pips(price_distance: float, pair: str) -> float:
    return get_instrument(pair).price_to_pips(price_distance)


def pips_to_price(pips: float, pair: str) -> float:
    return get_instrument(pair).pips_to_price(pips)


# ═══════════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════════

def _parse_strategy(section: dict) -> StrategyConfig:
    known = {f for f in StrategyConfig.__dataclass_fields__}
    unknown = set(section) - known
    if unknown:
        raise ConfigError(f"Unknown strategy settings: {sorted(unknown)}")

    values = dict(section)
    if 'fill_priority' in values:
        try:
            values['fill_priority'] = FillPriority(str(values['fill_priority']).upper())
        except ValueError:
            raise ConfigError(
                f"fill_priority must be one of {[p.value for p in FillPriority]}"
            )
    return StrategyConfig(**values)


def _parse_instruments(section: dict) -> Dict[str, InstrumentConfig]:
    instruments = dict(PAIR_CONFIGS)
    for symbol, settings in section.items():
        base = instruments.get(symbol)
        settings = settings or {}
        try:
            if base is not None:
                instruments[symbol] = replace(base, **settings)
            else:
                instruments[symbol] = InstrumentConfig(
                    symbol=symbol,
                    display_name=settings.get('display_name', symbol),
                    tolerance=settings['tolerance'],
                    stop_buffer=settings['stop_buffer'],
                    pip_multiplier=settings['pip_multiplier'],
                    price_decimals=settings.get('price_decimals', 5),
                )
        except KeyError as e:
            raise ConfigError(f"Instrument {symbol} is missing {e}")
        except TypeError as e:
            raise ConfigError(f"Invalid settings for instrument {symbol}: {e}")
    return instruments


def load_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """Load configuration from YAML, falling back to defaults."""
    load_dotenv()

    config_path = Path(path) if path else Path(os.getenv('WICKLESS_CONFIG', DEFAULT_CONFIG_PATH))
    raw: dict = {}
    if config_path.exists():
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
    elif path:
        raise ConfigError(f"Configuration file not found at {config_path}")
    else:
        logger.info(f"No configuration at {config_path}, using defaults")

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration root must be a mapping, got {type(raw).__name__}")

    strategy = _parse_strategy(raw.get('strategy') or {})
    instruments = _parse_instruments(raw.get('instruments') or {})

    pairs = list(raw.get('pairs') or RECOMMENDED_PAIRS)
    for pair in pairs:
        if pair not in instruments:
            raise ConfigError(f"Pair {pair} has no instrument configuration")

    timeframes = list(raw.get('timeframes') or VALID_TIMEFRAMES)
    for timeframe in timeframes:
        if not is_valid_timeframe(timeframe):
            raise ConfigError(f"Invalid timeframe: {timeframe}")

    storage = raw.get('storage') or {}
    db_path = os.getenv('WICKLESS_DB_PATH') or storage.get('db_path') or DEFAULT_DB_PATH

    log_section = raw.get('logging') or {}
    log_level = os.getenv('LOG_LEVEL') or log_section.get('level') or 'INFO'

    return EngineConfig(
        strategy=strategy,
        instruments=instruments,
        pairs=pairs,
        timeframes=timeframes,
        db_path=Path(db_path).expanduser(),
        log_level=str(log_level).upper(),
    )
