"""Liquidity sweep detection against session highs and lows.

Two detectors live here:

* ``detect_sweep`` is pattern based. It scans the most recent closed one-minute
  candles that start after the session's last bucket for a wick through the
  level that is reclaimed, either inside the same candle or by the close of the
  next one. The entry state machine only ever uses this variant.
* ``detect_price_sweep`` is instantaneous (price strictly beyond the level).
  It feeds the ``live_sweeps`` block of the snapshot and nothing else.

A missing level never counts as swept.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

from config.settings import SETTINGS
from core.sessions import SessionLevels, SessionRange
from core.utils import Candle, is_valid_price


@dataclass(frozen=True)
class SweepResult:
    swept_high: bool = False
    swept_low: bool = False

    def as_dict(self) -> Dict[str, bool]:
        return {"swept_high": self.swept_high, "swept_low": self.swept_low}


NO_SWEEP = SweepResult()


@dataclass(frozen=True)
class SweepFlags:
    """Six derived flags, one per session side."""

    asia_high: bool = False
    asia_low: bool = False
    london_high: bool = False
    london_low: bool = False
    ny_high: bool = False
    ny_low: bool = False

    @classmethod
    def from_results(cls, results: Dict[str, SweepResult]) -> "SweepFlags":
        def pick(name: str) -> SweepResult:
            return results.get(name, NO_SWEEP)

        return cls(
            asia_high=pick("asia").swept_high,
            asia_low=pick("asia").swept_low,
            london_high=pick("london").swept_high,
            london_low=pick("london").swept_low,
            ny_high=pick("ny").swept_high,
            ny_low=pick("ny").swept_low,
        )

    def high_swept(self, session: str) -> bool:
        return bool(getattr(self, f"{session}_high", False))

    def low_swept(self, session: str) -> bool:
        return bool(getattr(self, f"{session}_low", False))

    def any_high(self, sessions: Iterable[str]) -> bool:
        return any(self.high_swept(name) for name in sessions)

    def any_low(self, sessions: Iterable[str]) -> bool:
        return any(self.low_swept(name) for name in sessions)

    def as_dict(self) -> Dict[str, bool]:
        return {
            "asia_high": self.asia_high,
            "asia_low": self.asia_low,
            "london_high": self.london_high,
            "london_low": self.london_low,
            "ny_high": self.ny_high,
            "ny_low": self.ny_low,
        }


def _recent_closed(candles: Sequence[Candle], lookback: int, since: Optional[int] = None) -> Sequence[Candle]:
    closed = [c for c in candles if c.closed and (since is None or c.bucket_start > since)]
    return closed[-lookback:] if lookback > 0 else closed


def detect_high_sweep(
    level: Optional[float],
    candles: Sequence[Candle],
    lookback: Optional[int] = None,
    since: Optional[int] = None,
) -> bool:
    """Wick above ``level`` from below, closed back under it."""

    if not is_valid_price(level):
        return False
    window = _recent_closed(candles, lookback if lookback is not None else SETTINGS.sweep.lookback, since)
    for idx, a in enumerate(window):
        if not (a.high > level and a.open < level):
            continue
        if a.close < level:
            return True
        if idx + 1 < len(window) and window[idx + 1].close < level:
            return True
    return False


def detect_low_sweep(
    level: Optional[float],
    candles: Sequence[Candle],
    lookback: Optional[int] = None,
    since: Optional[int] = None,
) -> bool:
    """Wick below ``level`` from above, closed back over it."""

    if not is_valid_price(level):
        return False
    window = _recent_closed(candles, lookback if lookback is not None else SETTINGS.sweep.lookback, since)
    for idx, a in enumerate(window):
        if not (a.low < level and a.open > level):
            continue
        if a.close > level:
            return True
        if idx + 1 < len(window) and window[idx + 1].close > level:
            return True
    return False


def detect_sweep(level: SessionRange, candles: Sequence[Candle], lookback: Optional[int] = None) -> SweepResult:
    """Pattern sweeps of a session range by candles after its last bucket."""

    if not level.complete:
        return NO_SWEEP
    return SweepResult(
        swept_high=detect_high_sweep(level.high, candles, lookback, level.last_bucket),
        swept_low=detect_low_sweep(level.low, candles, lookback, level.last_bucket),
    )


def detect_price_sweep(price: Optional[float], level: SessionRange) -> SweepResult:
    if not is_valid_price(price) or not level.complete:
        return NO_SWEEP
    return SweepResult(swept_high=price > level.high, swept_low=price < level.low)


def compute_sweep_flags(
    levels: SessionLevels,
    candles: Sequence[Candle],
    lookback: Optional[int] = None,
) -> SweepFlags:
    results = {name: detect_sweep(rng, candles, lookback) for name, rng in levels.ranges.items()}
    return SweepFlags.from_results(results)


def compute_live_sweeps(levels: SessionLevels, price: Optional[float]) -> Dict[str, Any]:
    return {name: detect_price_sweep(price, rng).as_dict() for name, rng in levels.ranges.items()}


__all__ = [
    "NO_SWEEP",
    "SweepFlags",
    "SweepResult",
    "compute_live_sweeps",
    "compute_sweep_flags",
    "detect_high_sweep",
    "detect_low_sweep",
    "detect_price_sweep",
    "detect_sweep",
]
