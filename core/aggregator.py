"""Evaluation-cycle orchestrator.

``SignalAggregator`` owns the typed engine state (candles, last price, pending
entry, position book) and runs the pipeline in a fixed order on every tick:

    candles -> session levels -> sweeps -> trend -> exit -> entry -> snapshot

Every input is computed before anything is mutated, and the resulting
position and pending-entry changes are committed together under one lock. A
tick that raises is logged and the previous snapshot is kept.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

from config.settings import SETTINGS, Settings
from core.candles import CandleAggregator
from core.execution import ExecutionEngine, PositionListener
from core.exits import evaluate_exit
from core.logger import get_logger
from core.order_types import (
    Bias,
    EntryDecision,
    ExitDecision,
    ExitReason,
    JournalEntry,
    LiveTrade,
    PendingEntry,
    TradeDirection,
)
from core.sessions import SessionLevels, active_session, build_session_levels, in_window
from core.sweeps import SweepFlags, compute_live_sweeps, compute_sweep_flags
from core.trend import TrendState, compute_trend
from core.utils import Candle, is_valid_price, ms_to_iso, now_ms
from strategies import BaseStrategy, EntryInputs, StrategyContext, StrategyRegistry


system_logger = get_logger("system")
error_logger = get_logger("errors")

STALE_PRICE_MS = 15_000


@dataclass(frozen=True)
class EngineSnapshot:
    """Everything one evaluation cycle publishes to consumers."""

    updated_at: int
    source: str
    last_price: Optional[float]
    price_ts: Optional[int]
    trend: TrendState
    session: str
    trading_open: bool
    entry: EntryDecision
    exit: Optional[ExitDecision]
    session_levels: SessionLevels
    sweeps: SweepFlags
    live_sweeps: Dict[str, Any] = field(default_factory=dict)
    position: Optional[LiveTrade] = None
    pending: Optional[PendingEntry] = None
    closed_trade: Optional[JournalEntry] = None
    notes: List[str] = field(default_factory=list)

    @property
    def bias(self) -> Bias:
        return self.trend.bias

    def as_dict(self) -> Dict[str, Any]:
        return {
            "updated_at": ms_to_iso(self.updated_at),
            "source": self.source,
            "last_price": self.last_price,
            "price_ts": ms_to_iso(self.price_ts),
            "bias": self.trend.bias.value,
            "trend": self.trend.as_dict(),
            "session": self.session,
            "trading_open": self.trading_open,
            "entry": self.entry.as_dict(),
            "exit": self.exit.as_dict() if self.exit else None,
            "session_levels": self.session_levels.as_dict(),
            "sweeps": self.sweeps.as_dict(),
            "live_sweeps": self.live_sweeps,
            "position": self.position.as_dict() if self.position else None,
            "pending": self.pending.as_dict() if self.pending else None,
            "closed_trade": self.closed_trade.as_dict() if self.closed_trade else None,
            "notes": list(self.notes),
        }


class SignalAggregator:
    """Runs the signal pipeline and is the single writer of engine state."""

    def __init__(
        self,
        settings: Settings = SETTINGS,
        *,
        candles: Optional[CandleAggregator] = None,
        execution: Optional[ExecutionEngine] = None,
        strategy: Optional[BaseStrategy] = None,
    ) -> None:
        self.settings = settings
        self.candles = candles or CandleAggregator(settings.candles)
        self.execution = execution or ExecutionEngine(
            symbol=settings.entry.symbol,
            default_size=settings.entry.contracts,
        )
        self.strategy = strategy or StrategyRegistry.create(
            settings.entry.strategy,
            StrategyContext(entry=settings.entry, sessions=settings.sessions),
        )
        self.last_price: Optional[float] = None
        self.price_ts: Optional[int] = None
        self.pending: Optional[PendingEntry] = None
        self._snapshot: Optional[EngineSnapshot] = None
        self._state_lock = threading.RLock()
        self._tick_lock = threading.Lock()

    @property
    def snapshot(self) -> Optional[EngineSnapshot]:
        return self._snapshot

    @property
    def position(self) -> Optional[LiveTrade]:
        return self.execution.open_position

    def subscribe(self, listener: PositionListener) -> None:
        self.execution.subscribe(listener)

    # ------------------------------------------------------------------ inputs
    def on_price(self, price: Any, timestamp: Optional[int] = None) -> bool:
        """Feed one polled price. Bad or out-of-order ticks leave state untouched."""

        timestamp = now_ms() if timestamp is None else timestamp
        with self._state_lock:
            if not self.candles.update_from_tick(price, timestamp):
                return False
            self.last_price = float(price)
            self.price_ts = int(timestamp)
            return True

    def seed_history(self, bars: Sequence[Candle], *, now: Optional[int] = None) -> None:
        """Seed every timeframe from one-minute history."""

        with self._state_lock:
            self.candles.seed_from_one_minute(bars, now=now)
            if self.last_price is None and bars:
                latest = max(bars, key=lambda c: c.bucket_start)
                self.last_price = latest.close

    def seed_timeframe(self, timeframe: str, bars: Sequence[Candle], *, now: Optional[int] = None) -> int:
        with self._state_lock:
            return self.candles.seed_history(timeframe, bars, now=now)

    # ---------------------------------------------------------------- the tick
    def tick(self, now: Optional[int] = None, source: str = "timer") -> Optional[EngineSnapshot]:
        """Run one evaluation cycle; overlapping calls are skipped."""

        if not self._tick_lock.acquire(blocking=False):
            system_logger.warning("Tick skipped | previous evaluation still running")
            return self._snapshot
        try:
            with self._state_lock:
                self._snapshot = self._evaluate(now_ms() if now is None else int(now), source)
        except Exception:
            error_logger.exception("Evaluation tick failed | keeping previous snapshot")
        finally:
            self._tick_lock.release()
        return self._snapshot

    def _evaluate(self, now: int, source: str) -> EngineSnapshot:
        settings = self.settings
        notes: List[str] = []
        price = self.last_price if is_valid_price(self.last_price) else None

        one_minute = self.candles.candles("1m")
        primary = self.candles.candles(settings.trend.primary_timeframe)
        if price is None:
            notes.append("no price yet")
        elif self.price_ts is not None and now - self.price_ts > STALE_PRICE_MS:
            notes.append(f"price stale {(now - self.price_ts) / 1000:.0f}s")
        if not one_minute:
            notes.append("1m buffer empty")

        levels = build_session_levels(one_minute, settings.sessions, now=now)
        sweeps = compute_sweep_flags(levels, one_minute, settings.sweep.lookback)
        live_sweeps = compute_live_sweeps(levels, price)
        trend = compute_trend(primary, settings.trend)
        if trend.ema_slow is None:
            missing = settings.trend.slow_period - len(primary)
            notes.append(f"ema{settings.trend.slow_period} needs {max(missing, 0)} more {settings.trend.primary_timeframe} closes")

        position = self.execution.open_position
        exit_decision: Optional[ExitDecision] = None
        closing = False
        if position is not None:
            exit_decision = evaluate_exit(position, price, trend.bias, now, settings.exit, settings.sessions)
            if exit_decision.should_exit:
                if not settings.exit.auto_close:
                    notes.append(f"exit advised: {exit_decision.reason}")
                elif price is None:
                    notes.append(f"exit deferred, no price: {exit_decision.reason}")
                else:
                    closing = True
            elif exit_decision.code is ExitReason.SCALE_OUT:
                notes.append(exit_decision.reason)

        inputs = EntryInputs(
            now=now,
            price=price,
            trend=trend,
            sweeps=sweeps,
            one_minute=one_minute,
            position=None if closing else position,
            pending=self.pending,
            last_exit_at=now if closing else self.execution.last_exit_at,
        )
        evaluation = self.strategy.evaluate(inputs)
        notes.extend(evaluation.notes)

        # commit
        closed_entry: Optional[JournalEntry] = None
        if closing and exit_decision is not None:
            closed_entry = self.execution.close_trade(price, now, exit_decision.code.value)
        decision = evaluation.decision
        if decision.should_enter and decision.direction is not None and not self.execution.has_position:
            self.execution.open_trade(decision.direction, price, now, notes=decision.reason)
        self.pending = evaluation.pending

        current = self.execution.open_position
        return EngineSnapshot(
            updated_at=now,
            source=source,
            last_price=price,
            price_ts=self.price_ts,
            trend=trend,
            session=active_session(now, settings.sessions) or "off",
            trading_open=in_window(now, settings.sessions.trading_window, settings.sessions.timezone),
            entry=decision,
            exit=exit_decision,
            session_levels=levels,
            sweeps=sweeps,
            live_sweeps=live_sweeps,
            position=replace(current) if current is not None else None,
            pending=self.pending,
            closed_trade=closed_entry,
            notes=notes,
        )

    # ---------------------------------------------------------- manual actions
    def open_manual(
        self,
        direction: TradeDirection | str,
        price: Optional[float] = None,
        *,
        size: Optional[int] = None,
        notes: Optional[str] = None,
        now: Optional[int] = None,
    ) -> LiveTrade:
        with self._state_lock:
            fill = self.last_price if price is None else price
            trade = self.execution.open_trade(
                TradeDirection(direction),
                fill,
                now_ms() if now is None else now,
                size=size,
                notes=notes or "manual entry",
            )
            self.pending = None
            return trade

    def close_manual(
        self,
        price: Optional[float] = None,
        *,
        reason: str = "manual",
        now: Optional[int] = None,
    ) -> JournalEntry:
        with self._state_lock:
            fill = self.last_price if price is None else price
            return self.execution.close_trade(fill, now_ms() if now is None else now, reason)

    def reset_pending(self) -> None:
        with self._state_lock:
            if self.pending is not None:
                system_logger.info("Pending %s entry cleared by reset", self.pending.direction.value)
            self.pending = None

    def reset_trade(self) -> None:
        with self._state_lock:
            self.execution.reset()
            self.pending = None


__all__ = ["EngineSnapshot", "SignalAggregator", "STALE_PRICE_MS"]
