"""EMA trend bias and the rolling all-time-high flag."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np
import pandas as pd

from config.settings import SETTINGS, TrendSettings
from core.order_types import Bias
from core.utils import Candle, is_valid_price


@dataclass(frozen=True)
class TrendState:
    """Indicator snapshot for the primary timeframe.

    ``at_all_time_high`` compares against the highest high still retained in
    the candle buffer, so it is a rolling-window approximation rather than an
    unbounded historical maximum.
    """

    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    bias: Bias = Bias.NEUTRAL
    at_all_time_high: bool = False
    rolling_high: Optional[float] = None
    last_close: Optional[float] = None

    @property
    def defined(self) -> bool:
        return self.bias is not Bias.NEUTRAL

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ema_fast": self.ema_fast,
            "ema_slow": self.ema_slow,
            "bias": self.bias.value,
            "at_all_time_high": self.at_all_time_high,
            "rolling_high": self.rolling_high,
            "last_close": self.last_close,
        }


def ema(closes: Sequence[float], period: int) -> Optional[float]:
    """Exponential moving average seeded with the first close.

    Uses k = 2 / (period + 1). Returns None until ``period`` closes exist.
    """

    if period <= 0 or len(closes) < period:
        return None
    series = pd.Series(closes, dtype="float64")
    return float(series.ewm(span=period, adjust=False).mean().iloc[-1])


def compute_bias(ema_fast: Optional[float], ema_slow: Optional[float]) -> Bias:
    if ema_fast is None or ema_slow is None:
        return Bias.NEUTRAL
    if ema_fast > ema_slow:
        return Bias.BULL
    if ema_fast < ema_slow:
        return Bias.BEAR
    return Bias.NEUTRAL


def near_all_time_high(candles: Sequence[Candle], tolerance_pct: float) -> tuple[bool, Optional[float]]:
    if not candles:
        return False, None
    highs = np.array([c.high for c in candles], dtype=float)
    rolling_high = float(np.nanmax(highs))
    last_close = candles[-1].close
    if not is_valid_price(last_close) or rolling_high <= 0:
        return False, rolling_high
    return last_close >= rolling_high * (1 - tolerance_pct), rolling_high


def compute_trend(candles: Sequence[Candle], settings: Optional[TrendSettings] = None) -> TrendState:
    """Derive bias and ATH context from primary-timeframe candles (oldest first)."""

    settings = settings or SETTINGS.trend
    closes = [c.close for c in candles if is_valid_price(c.close)]
    fast = ema(closes, settings.fast_period)
    slow = ema(closes, settings.slow_period)
    at_high, rolling_high = near_all_time_high(candles, settings.ath_tolerance_pct)
    return TrendState(
        ema_fast=fast,
        ema_slow=slow,
        bias=compute_bias(fast, slow),
        at_all_time_high=at_high,
        rolling_high=rolling_high,
        last_close=closes[-1] if closes else None,
    )


__all__ = ["TrendState", "compute_bias", "compute_trend", "ema", "near_all_time_high"]
