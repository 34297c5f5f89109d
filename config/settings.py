"""Centralized configuration shared by the live engine and its tests."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class SessionWindow:
    """A named time-of-day window in the reference timezone.

    Windows whose end is not after their start (e.g. Asia 20:00 -> 02:00) wrap
    past midnight.
    """

    name: str
    start: time
    end: time

    @property
    def start_minutes(self) -> int:
        return self.start.hour * 60 + self.start.minute

    @property
    def end_minutes(self) -> int:
        return self.end.hour * 60 + self.end.minute

    @property
    def crosses_midnight(self) -> bool:
        return self.end_minutes <= self.start_minutes

    def contains(self, minutes: int) -> bool:
        """Half-open membership test on minutes since midnight."""

        if self.crosses_midnight:
            return minutes >= self.start_minutes or minutes < self.end_minutes
        return self.start_minutes <= minutes < self.end_minutes


@dataclass(frozen=True)
class SessionSettings:
    """Liquidity session windows and the window entries are allowed in."""

    timezone: str
    windows: Tuple[SessionWindow, ...]
    trading_window: SessionWindow

    def window(self, name: str) -> Optional[SessionWindow]:
        for window in self.windows:
            if window.name == name:
                return window
        return None


@dataclass(frozen=True)
class CandleSettings:
    """Tracked timeframes (period in ms) and how many candles each retains."""

    timeframes: Dict[str, int]
    retention: Dict[str, int]


@dataclass(frozen=True)
class TrendSettings:
    """EMA trend filter parameters."""

    primary_timeframe: str
    fast_period: int
    slow_period: int
    ath_tolerance_pct: float


@dataclass(frozen=True)
class SweepSettings:
    """Window of one-minute candles scanned for sweep patterns."""

    lookback: int


@dataclass(frozen=True)
class EntrySettings:
    """Entry state machine tunables."""

    cooldown_seconds: float
    arm_timeout_seconds: float
    sweep_sessions: Tuple[str, ...]
    symbol: str
    contracts: int
    strategy: str = "session_sweep"


@dataclass(frozen=True)
class ExitSettings:
    """Exit thresholds, in index points and minutes."""

    take_profit_points: float
    stop_loss_points: float
    max_hold_minutes: float
    exit_outside_session: bool = True
    auto_close: bool = True
    scale_out_points: Optional[float] = None


@dataclass(frozen=True)
class FeedSettings:
    """Market-data collaborator endpoints and polling cadence."""

    price_url: str
    bars_url: str
    futures_bars_url: str
    contracts_url: str
    api_key: Optional[str]
    ticker: str
    futures_product: str
    timeout_seconds: float
    price_poll_seconds: float
    history_refresh_seconds: float
    history_lookback_hours: float
    evaluation_interval_seconds: float
    source: str = "futures"


@dataclass(frozen=True)
class Settings:
    """Bundle of all configuration groups."""

    sessions: SessionSettings
    candles: CandleSettings
    trend: TrendSettings
    sweep: SweepSettings
    entry: EntrySettings
    exit: ExitSettings
    feed: FeedSettings
    logs_dir: Path = field(default=Path("logs"))


BASE_DIR = Path(__file__).resolve().parents[1]
LOGS_DIR = Path(os.environ.get("SPX_ENGINE_LOG_DIR", BASE_DIR / "logs"))
LOGS_DIR.mkdir(parents=True, exist_ok=True)

MINUTE_MS = 60_000

TIMEFRAMES: Dict[str, int] = {
    "1m": MINUTE_MS,
    "3m": 3 * MINUTE_MS,
    "5m": 5 * MINUTE_MS,
    "15m": 15 * MINUTE_MS,
    "30m": 30 * MINUTE_MS,
    "4h": 240 * MINUTE_MS,
}

# 1m must cover well over a day so Asia and London are always present.
RETENTION: Dict[str, int] = {
    "1m": 3000,
    "3m": 1200,
    "5m": 1200,
    "15m": 800,
    "30m": 800,
    "4h": 500,
}

ASIA = SessionWindow(name="asia", start=time(20, 0), end=time(2, 0))
LONDON = SessionWindow(name="london", start=time(2, 0), end=time(5, 0))
NEW_YORK = SessionWindow(name="ny", start=time(9, 30), end=time(11, 30))

SETTINGS = Settings(
    sessions=SessionSettings(
        timezone="America/New_York",
        windows=(ASIA, LONDON, NEW_YORK),
        trading_window=NEW_YORK,
    ),
    candles=CandleSettings(timeframes=TIMEFRAMES, retention=RETENTION),
    trend=TrendSettings(
        primary_timeframe="5m",
        fast_period=20,
        slow_period=200,
        ath_tolerance_pct=0.001,
    ),
    sweep=SweepSettings(lookback=50),
    entry=EntrySettings(
        cooldown_seconds=30.0,
        arm_timeout_seconds=300.0,
        sweep_sessions=("asia", "london"),
        symbol="SPX",
        contracts=1,
    ),
    exit=ExitSettings(
        take_profit_points=5.0,
        stop_loss_points=-3.0,
        max_hold_minutes=30.0,
    ),
    feed=FeedSettings(
        price_url="https://api.polygon.io/v3/snapshot/indices",
        bars_url="https://api.polygon.io/v2/aggs/ticker/{ticker}/range/1/minute/{start}/{end}",
        futures_bars_url="https://api.massive.com/futures/vX/aggs/{ticker}",
        contracts_url="https://api.massive.com/futures/vX/contracts",
        api_key=os.environ.get("MARKET_DATA_API_KEY"),
        ticker="I:SPX",
        futures_product="ES",
        timeout_seconds=5.0,
        price_poll_seconds=2.0,
        history_refresh_seconds=300.0,
        history_lookback_hours=48.0,
        evaluation_interval_seconds=1.0,
        source="futures",
    ),
    logs_dir=LOGS_DIR,
)


__all__ = [
    "CandleSettings",
    "EntrySettings",
    "ExitSettings",
    "FeedSettings",
    "MINUTE_MS",
    "RETENTION",
    "SessionSettings",
    "SessionWindow",
    "Settings",
    "SweepSettings",
    "SETTINGS",
    "TIMEFRAMES",
    "TrendSettings",
]
