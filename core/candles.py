"""Streaming multi-timeframe candle construction from price ticks."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from config.settings import CandleSettings, SETTINGS
from core.logger import get_logger
from core.utils import Candle, bucket_start, is_valid_price, now_ms


system_logger = get_logger("system")
feed_logger = get_logger("feed")


class CandleAggregator:
    """Keeps one ordered candle buffer per timeframe.

    Every buffer holds strictly increasing, period-aligned bucket starts and at
    most one open candle, which is always the last one. Closed candles are never
    touched again by ticks.
    """

    def __init__(self, settings: Optional[CandleSettings] = None) -> None:
        self.settings = settings or SETTINGS.candles
        self._buffers: Dict[str, List[Candle]] = {tf: [] for tf in self.settings.timeframes}
        self.last_updated: Dict[str, Optional[int]] = {tf: None for tf in self.settings.timeframes}
        self.last_tick_ts: Optional[int] = None

    @property
    def timeframes(self) -> Sequence[str]:
        return tuple(self.settings.timeframes)

    def period_ms(self, timeframe: str) -> int:
        try:
            return self.settings.timeframes[timeframe]
        except KeyError as exc:
            raise KeyError(f"Unknown timeframe: {timeframe}") from exc

    def candles(self, timeframe: str) -> List[Candle]:
        """Return a shallow copy of the buffer, oldest first."""

        self.period_ms(timeframe)
        return list(self._buffers[timeframe])

    def closed_candles(self, timeframe: str) -> List[Candle]:
        return [c for c in self._buffers[timeframe] if c.closed]

    def latest(self, timeframe: str) -> Optional[Candle]:
        buffer = self._buffers[timeframe]
        return buffer[-1] if buffer else None

    def update_from_tick(self, price: float, timestamp: int) -> bool:
        """Apply one price tick to every timeframe.

        Returns False when the tick was rejected: bad price or timestamp, older
        than the last accepted tick or seeded bar, or behind the last bucket of
        any timeframe. A rejected tick leaves every candle untouched.
        """

        if not is_valid_price(price) or not is_valid_price(timestamp):
            feed_logger.warning("Rejected tick price=%r ts=%r", price, timestamp)
            return False
        price = float(price)
        timestamp = int(timestamp)
        if self.last_tick_ts is not None and timestamp < self.last_tick_ts:
            feed_logger.warning("Rejected stale tick ts=%d last=%d", timestamp, self.last_tick_ts)
            return False
        for timeframe, period in self.settings.timeframes.items():
            last = self.latest(timeframe)
            if last is not None and bucket_start(timestamp, period) < last.bucket_start:
                feed_logger.warning("Rejected out-of-order tick ts=%d %s last=%d", timestamp, timeframe, last.bucket_start)
                return False
        for timeframe, period in self.settings.timeframes.items():
            self._apply_tick(timeframe, period, price, timestamp)
            self.last_updated[timeframe] = timestamp
        self.last_tick_ts = timestamp
        return True

    def _apply_tick(self, timeframe: str, period: int, price: float, timestamp: int) -> None:
        buffer = self._buffers[timeframe]
        bucket = bucket_start(timestamp, period)
        last = buffer[-1] if buffer else None

        if last is not None and bucket == last.bucket_start:
            # same bucket always updates, even if seeding marked it closed
            last.closed = False
            last.apply_price(price)
            return
        if last is not None:
            last.closed = True
        buffer.append(Candle(bucket, price, price, price, price, closed=False))
        self._trim(timeframe)

    def seed_history(
        self,
        timeframe: str,
        bars: Iterable[Candle],
        *,
        now: Optional[int] = None,
    ) -> int:
        """Bulk-load historical bars for one timeframe.

        Bars are aligned to the period, sorted, deduplicated by bucket (last
        wins) and capped to the retention limit. Live candles newer than the
        history are kept. The newest bar stays open only if it is the current
        bucket. Returns the resulting buffer length.
        """

        period = self.period_ms(timeframe)
        current_bucket = bucket_start(now if now is not None else now_ms(), period)

        by_bucket: Dict[int, Candle] = {}
        for bar in bars:
            if not all(is_valid_price(v) for v in (bar.open, bar.high, bar.low, bar.close)):
                continue
            aligned = bucket_start(int(bar.bucket_start), period)
            by_bucket[aligned] = replace(bar, bucket_start=aligned, closed=True)

        if not by_bucket:
            return len(self._buffers[timeframe])

        newest_seeded = max(by_bucket)
        for live in self._buffers[timeframe]:
            if live.bucket_start > newest_seeded:
                by_bucket[live.bucket_start] = live
            elif live.bucket_start == newest_seeded and not live.closed:
                # keep what ticks already saw inside the open bucket
                seeded = by_bucket[newest_seeded]
                seeded.high = max(seeded.high, live.high)
                seeded.low = min(seeded.low, live.low)
                seeded.close = live.close
            elif live.bucket_start not in by_bucket:
                by_bucket[live.bucket_start] = replace(live, closed=True)

        merged = [by_bucket[key] for key in sorted(by_bucket)]
        for candle in merged[:-1]:
            candle.closed = True
        merged[-1].closed = merged[-1].bucket_start < current_bucket

        self._buffers[timeframe] = merged
        self._trim(timeframe)
        if self.last_tick_ts is None or newest_seeded > self.last_tick_ts:
            self.last_tick_ts = newest_seeded
        self.last_updated[timeframe] = now if now is not None else now_ms()
        system_logger.info("Seeded %s history | bars=%d", timeframe, len(self._buffers[timeframe]))
        return len(self._buffers[timeframe])

    def seed_from_one_minute(self, bars: Sequence[Candle], *, now: Optional[int] = None) -> None:
        """Seed every tracked timeframe from one batch of one-minute bars."""

        for timeframe, period in self.settings.timeframes.items():
            if timeframe == "1m":
                self.seed_history(timeframe, bars, now=now)
            else:
                self.seed_history(timeframe, resample_candles(bars, period), now=now)

    def _trim(self, timeframe: str) -> None:
        limit = self.settings.retention.get(timeframe)
        buffer = self._buffers[timeframe]
        if limit and len(buffer) > limit:
            del buffer[: len(buffer) - limit]

    def as_dict(self, timeframe: str) -> List[Dict[str, object]]:
        return [
            {
                "t": c.bucket_start,
                "o": c.open,
                "h": c.high,
                "l": c.low,
                "c": c.close,
                "v": c.volume,
                "closed": c.closed,
            }
            for c in self._buffers[timeframe]
        ]


def resample_candles(candles: Sequence[Candle], period_ms: int) -> List[Candle]:
    """Aggregate finer candles into ``period_ms`` buckets (all marked closed)."""

    if not candles:
        return []
    frame = pd.DataFrame(
        {
            "t": [c.bucket_start for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    ).sort_values("t", kind="stable")
    frame["bucket"] = frame["t"] - (frame["t"] % period_ms)
    grouped = frame.groupby("bucket", sort=True).agg(
        open=("open", "first"),
        high=("high", "max"),
        low=("low", "min"),
        close=("close", "last"),
        volume=("volume", lambda s: float(s.sum()) if s.notna().any() else None),
    )
    return [
        Candle(
            bucket_start=int(row.Index),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=None if row.volume is None or pd.isna(row.volume) else float(row.volume),
            closed=True,
        )
        for row in grouped.itertuples()
    ]


def candles_from_mapping(rows: Iterable[Mapping[str, float]]) -> List[Candle]:
    """Build candles from ``{t, o, h, l, c[, v]}`` mappings (already normalized)."""

    return [
        Candle(
            bucket_start=int(row["t"]),
            open=float(row["o"]),
            high=float(row["h"]),
            low=float(row["l"]),
            close=float(row["c"]),
            volume=float(row["v"]) if row.get("v") is not None else None,
            closed=True,
        )
        for row in rows
    ]


__all__ = ["CandleAggregator", "candles_from_mapping", "resample_candles"]
