"""Timestamp and candle builders shared by the test modules."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Tuple

from config.settings import MINUTE_MS
from core.utils import Candle, wall_time_to_ms


TRADE_DAY = date(2024, 3, 5)


def ny_ms(day: date, hour: int, minute: int = 0, second: int = 0) -> int:
    """Epoch ms of a New York wall-clock time."""

    return wall_time_to_ms(day, hour, minute, "America/New_York") + second * 1000


def make_candle(
    ts: int,
    o: float,
    h: float,
    l: float,
    c: float,
    *,
    closed: bool = True,
    volume: float | None = None,
) -> Candle:
    return Candle(bucket_start=ts, open=o, high=h, low=l, close=c, volume=volume, closed=closed)


def minute_series(start: int, bars: Iterable[Tuple[float, float, float, float]]) -> List[Candle]:
    """Consecutive closed one-minute candles starting at ``start``."""

    return [make_candle(start + i * MINUTE_MS, *ohlc) for i, ohlc in enumerate(bars)]
