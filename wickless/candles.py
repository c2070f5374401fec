"""
Candle Series Data Model

Immutable OHLC candles and the ordered series every detector works on.

Candles come from the market-data provider oldest-first. Only complete
candles take part in structure and trigger decisions; the provider may
append the still-forming candle as the final element and nowhere else.

Times are normalised to UTC unix seconds. ISO-8601 strings (including the
nanosecond form some brokers emit, e.g. '2024-01-02T10:15:00.000000000Z')
are accepted by the parsers.
"""

import logging
import math
import numbers
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

import pandas as pd
import pytz

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('time', 'open', 'high', 'low', 'close')


class MalformedCandleError(ValueError):
    """Raised when a candle record cannot be used for analysis."""


def parse_time(value: Union[int, float, str, datetime, pd.Timestamp]) -> int:
    """Convert a candle timestamp to UTC unix seconds."""
    if isinstance(value, bool):
        raise MalformedCandleError(f"Invalid candle time: {value!r}")
    if isinstance(value, numbers.Real):
        if not math.isfinite(value):
            raise MalformedCandleError(f"Invalid candle time: {value!r}")
        return int(value)
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError) as e:
        raise MalformedCandleError(f"Invalid candle time: {value!r}") from e
    if ts is pd.NaT:
        raise MalformedCandleError(f"Invalid candle time: {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize(pytz.UTC)
    return int(ts.timestamp())


def _parse_price(record: Dict[str, Any], key: str) -> float:
    try:
        price = float(record[key])
    except KeyError:
        raise MalformedCandleError(f"Candle is missing required field '{key}'")
    except (TypeError, ValueError) as e:
        raise MalformedCandleError(f"Candle field '{key}' is not numeric: {record[key]!r}") from e
    if not math.isfinite(price):
        raise MalformedCandleError(f"Candle field '{key}' is not finite: {price}")
    return price


@dataclass(frozen=True)
class Candle:
    """Single OHLC candle."""
    time: int            # unix seconds, UTC
    open: float
    high: float
    low: float
    close: float
    complete: bool = True
    volume: Optional[float] = None

    def __post_init__(self):
        for name in ('open', 'high', 'low', 'close'):
            if not math.isfinite(getattr(self, name)):
                raise MalformedCandleError(f"Candle at {self.time} has non-finite {name}")
        if self.high < self.low:
            raise MalformedCandleError(
                f"Candle at {self.time} has high {self.high} below low {self.low}"
            )
        if self.high < max(self.open, self.close) or self.low > min(self.open, self.close):
            raise MalformedCandleError(
                f"Candle at {self.time} has open/close outside its high/low range"
            )

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @property
    def as_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.time, tz=pytz.UTC)

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'Candle':
        """
        Build a candle from a mapping.

        Accepts flat records ({time, open, high, low, close, complete}) and
        broker-style records with prices nested under 'mid' as strings
        ({time, complete, mid: {o, h, l, c}}).
        """
        if 'mid' in record and isinstance(record['mid'], dict):
            mid = record['mid']
            record = {
                'time': record.get('time'),
                'open': mid.get('o'),
                'high': mid.get('h'),
                'low': mid.get('l'),
                'close': mid.get('c'),
                'complete': record.get('complete', True),
                'volume': record.get('volume'),
            }

        if record.get('time') is None:
            raise MalformedCandleError("Candle is missing required field 'time'")

        volume = record.get('volume')
        complete = record.get('complete')
        return cls(
            time=parse_time(record['time']),
            open=_parse_price(record, 'open'),
            high=_parse_price(record, 'high'),
            low=_parse_price(record, 'low'),
            close=_parse_price(record, 'close'),
            complete=True if complete is None else bool(complete),
            volume=_parse_price(record, 'volume') if volume is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            'time': self.time,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'complete': self.complete,
            'volume': self.volume,
        }


class CandleSeries(Sequence[Candle]):
    """
    Immutable oldest-first candle sequence for one instrument/timeframe.

    Invariants checked on construction:
    - times strictly ascending
    - an incomplete candle may only be the last element
    """

    def __init__(self, candles: Iterable[Candle]):
        self._candles = tuple(candles)
        self._validate()

    def _validate(self):
        for i, candle in enumerate(self._candles):
            if not candle.complete and i != len(self._candles) - 1:
                raise MalformedCandleError(
                    f"Incomplete candle at {candle.time} is not the most recent element"
                )
            if i > 0 and candle.time <= self._candles[i - 1].time:
                raise MalformedCandleError(
                    f"Candle times must be strictly ascending "
                    f"({self._candles[i - 1].time} -> {candle.time})"
                )

    def __getitem__(self, index):
        if isinstance(index, slice):
            return CandleSeries(self._candles[index])
        return self._candles[index]

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def __eq__(self, other) -> bool:
        if isinstance(other, CandleSeries):
            return self._candles == other._candles
        return NotImplemented

    def __repr__(self) -> str:
        return f"CandleSeries({len(self._candles)} candles)"

    def complete(self) -> 'CandleSeries':
        """Only the completed candles."""
        if self._candles and not self._candles[-1].complete:
            return CandleSeries(self._candles[:-1])
        return self

    def latest_complete(self) -> Optional[Candle]:
        for candle in reversed(self._candles):
            if candle.complete:
                return candle
        return None

    def after(self, time: int) -> 'CandleSeries':
        """Candles strictly newer than `time`."""
        return CandleSeries(c for c in self._candles if c.time > time)

    @property
    def highs(self) -> List[float]:
        return [c.high for c in self._candles]

    @property
    def lows(self) -> List[float]:
        return [c.low for c in self._candles]

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> 'CandleSeries':
        return cls(Candle.from_dict(r) for r in records)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> 'CandleSeries':
        """
        Build a series from a DataFrame with columns time, open, high, low,
        close and optionally complete / volume.

        Rows are taken in frame order; sort the frame first if needed.
        """
        missing = [c for c in REQUIRED_FIELDS if c not in df.columns]
        if missing:
            raise MalformedCandleError(f"Missing required columns: {missing}")

        records = df.to_dict('records')
        for record in records:
            for key, value in list(record.items()):
                if key != 'time' and isinstance(value, float) and math.isnan(value):
                    record[key] = None
        return cls.from_records(records)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [c.to_dict() for c in self._candles],
            columns=['time', 'open', 'high', 'low', 'close', 'complete', 'volume'],
        )


def ensure_series(candles: Union[CandleSeries, Iterable[Candle]]) -> CandleSeries:
    """Wrap a plain iterable of candles in a validated CandleSeries."""
    if isinstance(candles, CandleSeries):
        return candles
    return CandleSeries(candles)
