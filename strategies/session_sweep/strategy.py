"""Staged entry state machine: idle -> armed -> entered."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from config.settings import MINUTE_MS
from core.logger import get_logger
from core.order_types import (
    Bias,
    EntryDecision,
    EntryDirection,
    EntryState,
    PendingEntry,
)
from core.sessions import in_window
from core.sweeps import SweepFlags
from core.trend import TrendState
from core.utils import Candle, bucket_start, is_valid_price
from strategies import BaseStrategy, EntryEvaluation, EntryInputs, StrategyRegistry


signal_logger = get_logger("signals")

MISSING_PRICE = "missing price"
IN_TRADE = "already in a trade"
COOLDOWN = "cooldown"
SESSION_CLOSED = "session closed"
UNDEFINED_TREND = "undefined trend"
NO_SWEEP = "no sweep"
AWAITING_CONFIRMATION = "awaiting confirmation"
ARM_TIMEOUT = "arm timeout"
BIAS_CHANGED = "bias changed"


def setup_direction(trend: TrendState, sweeps: SweepFlags, sessions: Sequence[str]) -> Optional[EntryDirection]:
    """Direction a sweep supports under the current bias, if any.

    Away from the rolling high a bull bias wants a swept low (reclaim) and a
    bear bias a swept high. At the high the roles flip to breakout continuation.
    """

    high = sweeps.any_high(sessions)
    low = sweeps.any_low(sessions)
    ath = trend.at_all_time_high
    if trend.bias is Bias.BULL and ((low and not ath) or (ath and high)):
        return EntryDirection.LONG
    if trend.bias is Bias.BEAR and ((high and not ath) or (ath and low)):
        return EntryDirection.SHORT
    return None


def find_confirmation(candles: Sequence[Candle], direction: EntryDirection, armed_at: int) -> Optional[Candle]:
    """Latest closed one-minute candle if it confirms ``direction``.

    Only candles from the minute the setup armed in (or later) can confirm.
    """

    closed = [c for c in candles if c.closed]
    if len(closed) < 2:
        return None
    prev, cur = closed[-2], closed[-1]
    if cur.bucket_start < bucket_start(armed_at, MINUTE_MS):
        return None
    if direction is EntryDirection.LONG and cur.close > cur.open and cur.close > prev.high:
        return cur
    if direction is EntryDirection.SHORT and cur.close < cur.open and cur.close < prev.low:
        return cur
    return None


class SessionSweepStrategy(BaseStrategy):
    """Arms on a bias-aligned session sweep and enters on a confirmation candle."""

    name = "session_sweep"

    def evaluate(self, inputs: EntryInputs) -> EntryEvaluation:
        if inputs.position is not None and inputs.position.is_open:
            decision = EntryDecision(state=EntryState.ENTERED, reason=IN_TRADE, blocked_by=[IN_TRADE])
            return EntryEvaluation(decision=decision, pending=None)

        if inputs.pending is not None:
            return self._evaluate_armed(inputs, inputs.pending)
        return self._evaluate_idle(inputs)

    def _trading_open(self, now: int) -> bool:
        sessions = self.context.sessions
        return in_window(now, sessions.trading_window, sessions.timezone)

    def _in_cooldown(self, inputs: EntryInputs) -> Tuple[bool, float]:
        if inputs.last_exit_at is None:
            return False, 0.0
        remaining = self.context.entry.cooldown_seconds * 1000 - (inputs.now - inputs.last_exit_at)
        return remaining > 0, max(0.0, remaining / 1000)

    def _evaluate_idle(self, inputs: EntryInputs) -> EntryEvaluation:
        blocked: List[str] = []
        notes: List[str] = []

        if not is_valid_price(inputs.price):
            blocked.append(MISSING_PRICE)
        cooling, remaining = self._in_cooldown(inputs)
        if cooling:
            blocked.append(COOLDOWN)
            notes.append(f"cooldown {remaining:.0f}s remaining")
        if not self._trading_open(inputs.now):
            blocked.append(SESSION_CLOSED)

        direction: Optional[EntryDirection] = None
        if not inputs.trend.defined:
            blocked.append(UNDEFINED_TREND)
        else:
            direction = setup_direction(inputs.trend, inputs.sweeps, self.context.entry.sweep_sessions)
            if direction is None:
                blocked.append(NO_SWEEP)

        if blocked or direction is None:
            decision = EntryDecision(state=EntryState.IDLE, reason="no setup: " + ", ".join(blocked), blocked_by=blocked)
            return EntryEvaluation(decision=decision, pending=None, notes=notes)

        context = "at rolling high" if inputs.trend.at_all_time_high else "below rolling high"
        reason = f"{inputs.trend.bias.value} bias, session sweep, {context}"
        pending = PendingEntry(direction=direction, armed_at=inputs.now, reason=reason)
        signal_logger.info("ARMED | %s | %s", direction.value, reason)
        decision = EntryDecision(
            state=EntryState.ARMED,
            reason=f"armed {direction.value}: {reason}",
            blocked_by=[AWAITING_CONFIRMATION],
        )
        return EntryEvaluation(decision=decision, pending=pending, notes=notes)

    def _invalidation(self, inputs: EntryInputs, pending: PendingEntry) -> Optional[str]:
        if inputs.now - pending.armed_at >= self.context.entry.arm_timeout_seconds * 1000:
            return ARM_TIMEOUT
        if not self._trading_open(inputs.now):
            return SESSION_CLOSED
        wanted = Bias.BULL if pending.direction is EntryDirection.LONG else Bias.BEAR
        if inputs.trend.bias is not wanted:
            return BIAS_CHANGED
        return None

    def _evaluate_armed(self, inputs: EntryInputs, pending: PendingEntry) -> EntryEvaluation:
        invalid = self._invalidation(inputs, pending)
        if invalid is not None:
            signal_logger.info("DISARMED | %s | %s", pending.direction.value, invalid)
            decision = EntryDecision(
                state=EntryState.IDLE,
                reason=f"pending {pending.direction.value} invalidated: {invalid}",
                blocked_by=[invalid],
            )
            return EntryEvaluation(decision=decision, pending=None)

        if not is_valid_price(inputs.price):
            decision = EntryDecision(state=EntryState.ARMED, reason=MISSING_PRICE, blocked_by=[MISSING_PRICE])
            return EntryEvaluation(decision=decision, pending=pending)

        candle = find_confirmation(inputs.one_minute, pending.direction, pending.armed_at)
        if candle is None:
            decision = EntryDecision(
                state=EntryState.ARMED,
                reason=f"armed {pending.direction.value}: {AWAITING_CONFIRMATION}",
                blocked_by=[AWAITING_CONFIRMATION],
            )
            return EntryEvaluation(decision=decision, pending=pending)

        trade_direction = pending.direction.trade_direction
        decision = EntryDecision(
            state=EntryState.ENTERED,
            should_enter=True,
            direction=trade_direction,
            reason=f"confirmed {pending.direction.value} -> {trade_direction.value}: {pending.reason}",
        )
        return EntryEvaluation(decision=decision, pending=None)


StrategyRegistry.register(SessionSweepStrategy)
