"""Candle record and time helpers shared by every engine component."""

from __future__ import annotations

import math
import time as _time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from numbers import Real
from typing import Any, Optional

import pytz

from config.settings import SETTINGS


@dataclass(slots=True)
class Candle:
    """OHLC candle keyed by the start of its bucket (epoch ms)."""

    bucket_start: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None
    closed: bool = False

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.bucket_start / 1000, tz=pytz.utc)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    def apply_price(self, price: float) -> None:
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price


def bucket_start(timestamp_ms: int, period_ms: int) -> int:
    """Floor an epoch-ms timestamp to the start of its period."""

    return timestamp_ms - (timestamp_ms % period_ms)


def is_valid_price(value: Any) -> bool:
    """True for finite real numbers (bools excluded)."""

    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(float(value))


def now_ms() -> int:
    return int(_time.time() * 1000)


def reference_tz(name: Optional[str] = None) -> pytz.BaseTzInfo:
    return pytz.timezone(name or SETTINGS.sessions.timezone)


def to_reference_time(timestamp_ms: int, tz_name: Optional[str] = None) -> datetime:
    """Convert epoch ms into an aware datetime in the reference timezone.

    The conversion goes through UTC so daylight-saving offsets come from the
    IANA database rather than a fixed shift.
    """

    utc_dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=pytz.utc)
    return utc_dt.astimezone(reference_tz(tz_name))


def minutes_since_midnight(value: datetime) -> int:
    return value.hour * 60 + value.minute


def wall_time_to_ms(day: date, hour: int, minute: int = 0, tz_name: Optional[str] = None) -> int:
    """Epoch ms of a wall-clock time on a given day in the reference timezone."""

    tz = reference_tz(tz_name)
    naive = datetime(day.year, day.month, day.day, hour, minute)
    return int(tz.localize(naive).timestamp() * 1000)


def ms_to_iso(timestamp_ms: Optional[int]) -> Optional[str]:
    if timestamp_ms is None:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=pytz.utc).isoformat()


def previous_day(day: date) -> date:
    return day - timedelta(days=1)


__all__ = [
    "Candle",
    "bucket_start",
    "is_valid_price",
    "minutes_since_midnight",
    "ms_to_iso",
    "now_ms",
    "previous_day",
    "reference_tz",
    "to_reference_time",
    "wall_time_to_ms",
]
