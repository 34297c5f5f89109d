"""Session-window liquidity levels (Asia / London / New York highs and lows).

All bucketing happens in the reference timezone (America/New_York by default)
through a real IANA conversion, so windows stay put across daylight-saving
changes. A window that wraps past midnight is anchored to the calendar day it
started on, which keeps the evening and early-morning halves of one Asia
session together.

The trading day rolls over at the start of the earliest midnight-crossing
window (20:00 with the default windows). From that moment the Asia session that
has just started, plus the following date's London and New York windows, are
the "current" levels.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from config.settings import SETTINGS, SessionSettings, SessionWindow
from core.utils import Candle, minutes_since_midnight, to_reference_time


SessionKey = Tuple[str, date]


@dataclass(slots=True)
class SessionRange:
    """High/low extremes of one session instance.

    ``high`` and ``low`` are both None until a candle lands in the window.
    """

    name: str
    anchor_day: Optional[date] = None
    high: Optional[float] = None
    low: Optional[float] = None
    candle_count: int = 0
    first_bucket: Optional[int] = None
    last_bucket: Optional[int] = None

    @property
    def complete(self) -> bool:
        return self.high is not None and self.low is not None

    def include(self, candle: Candle) -> None:
        self.high = candle.high if self.high is None else max(self.high, candle.high)
        self.low = candle.low if self.low is None else min(self.low, candle.low)
        self.candle_count += 1
        if self.first_bucket is None:
            self.first_bucket = candle.bucket_start
        self.last_bucket = candle.bucket_start

    def as_dict(self) -> Dict[str, Any]:
        return {
            "high": self.high,
            "low": self.low,
            "complete": self.complete,
            "anchor_day": self.anchor_day.isoformat() if self.anchor_day else None,
            "candles": self.candle_count,
        }


@dataclass(slots=True)
class SessionLevels:
    """Current-trading-day levels for every configured session."""

    trading_day: Optional[date] = None
    ranges: Dict[str, SessionRange] = field(default_factory=dict)

    def get(self, name: str) -> SessionRange:
        return self.ranges.get(name) or SessionRange(name=name)

    @property
    def asia(self) -> SessionRange:
        return self.get("asia")

    @property
    def london(self) -> SessionRange:
        return self.get("london")

    @property
    def ny(self) -> SessionRange:
        return self.get("ny")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "trading_day": self.trading_day.isoformat() if self.trading_day else None,
            **{name: rng.as_dict() for name, rng in self.ranges.items()},
        }


@lru_cache(maxsize=16384)
def _local_parts(timestamp_ms: int, tz_name: str) -> Tuple[date, int]:
    local = to_reference_time(timestamp_ms, tz_name)
    return local.date(), minutes_since_midnight(local)


def rollover_minutes(windows: Iterable[SessionWindow]) -> Optional[int]:
    """Minute of day at which a new trading day starts, if any window wraps."""

    starts = [w.start_minutes for w in windows if w.crosses_midnight]
    return min(starts) if starts else None


def session_anchor(day: date, minutes: int, window: SessionWindow) -> Optional[date]:
    """Calendar day the window instance containing this moment started on."""

    if not window.contains(minutes):
        return None
    if window.crosses_midnight and minutes < window.end_minutes:
        return day - timedelta(days=1)
    return day


def trading_day_for(day: date, minutes: int, windows: Sequence[SessionWindow]) -> date:
    rollover = rollover_minutes(windows)
    if rollover is not None and minutes >= rollover:
        return day + timedelta(days=1)
    return day


def anchor_for_trading_day(window: SessionWindow, trading_day: date, windows: Sequence[SessionWindow]) -> date:
    """Start day of the instance of ``window`` that belongs to ``trading_day``."""

    rollover = rollover_minutes(windows)
    if window.crosses_midnight or (rollover is not None and window.start_minutes >= rollover):
        return trading_day - timedelta(days=1)
    return trading_day


def group_session_ranges(
    candles: Sequence[Candle],
    settings: Optional[SessionSettings] = None,
) -> Dict[SessionKey, SessionRange]:
    """Reduce candles into every session instance present, keyed by (name, anchor day)."""

    settings = settings or SETTINGS.sessions
    grouped: Dict[SessionKey, SessionRange] = {}
    for candle in candles:
        day, minutes = _local_parts(int(candle.bucket_start), settings.timezone)
        for window in settings.windows:
            anchor = session_anchor(day, minutes, window)
            if anchor is None:
                continue
            key = (window.name, anchor)
            rng = grouped.get(key)
            if rng is None:
                rng = grouped[key] = SessionRange(name=window.name, anchor_day=anchor)
            rng.include(candle)
    return grouped


def build_session_levels(
    candles: Sequence[Candle],
    settings: Optional[SessionSettings] = None,
    *,
    now: Optional[int] = None,
) -> SessionLevels:
    """Recompute the current trading day's session levels from scratch.

    ``now`` anchors the trading day; without it the newest candle does. Windows
    with no candles yet come back with null high/low.
    """

    settings = settings or SETTINGS.sessions
    if now is None:
        if not candles:
            return SessionLevels(ranges={w.name: SessionRange(name=w.name) for w in settings.windows})
        now = int(candles[-1].bucket_start)

    day, minutes = _local_parts(int(now), settings.timezone)
    trading_day = trading_day_for(day, minutes, settings.windows)
    grouped = group_session_ranges(candles, settings)

    ranges: Dict[str, SessionRange] = {}
    for window in settings.windows:
        anchor = anchor_for_trading_day(window, trading_day, settings.windows)
        ranges[window.name] = grouped.get((window.name, anchor)) or SessionRange(
            name=window.name, anchor_day=anchor
        )
    return SessionLevels(trading_day=trading_day, ranges=ranges)


def active_session(timestamp_ms: int, settings: Optional[SessionSettings] = None) -> Optional[str]:
    """Name of the first configured window containing the timestamp."""

    settings = settings or SETTINGS.sessions
    _, minutes = _local_parts(int(timestamp_ms), settings.timezone)
    for window in settings.windows:
        if window.contains(minutes):
            return window.name
    return None


def in_window(timestamp_ms: int, window: SessionWindow, tz_name: Optional[str] = None) -> bool:
    _, minutes = _local_parts(int(timestamp_ms), tz_name or SETTINGS.sessions.timezone)
    return window.contains(minutes)


__all__ = [
    "SessionLevels",
    "SessionRange",
    "active_session",
    "anchor_for_trading_day",
    "build_session_levels",
    "group_session_ranges",
    "in_window",
    "rollover_minutes",
    "session_anchor",
    "trading_day_for",
]
