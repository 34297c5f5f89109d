"""Tests for the idle -> armed -> entered entry state machine."""

from __future__ import annotations

from dataclasses import replace

import pytest

from config.settings import MINUTE_MS, SETTINGS
from core.order_types import (
    Bias,
    EntryDirection,
    EntryState,
    LiveTrade,
    PendingEntry,
    TradeDirection,
)
from core.sweeps import SweepFlags
from core.trend import TrendState
from strategies import EntryInputs, StrategyContext, StrategyError, StrategyRegistry
from strategies.session_sweep.strategy import SessionSweepStrategy, setup_direction
from tests.helpers import TRADE_DAY, make_candle, ny_ms


NOW = ny_ms(TRADE_DAY, 10, 0, 30)
BULL = TrendState(ema_fast=5010.0, ema_slow=5000.0, bias=Bias.BULL)
BEAR = TrendState(ema_fast=4990.0, ema_slow=5000.0, bias=Bias.BEAR)
NEUTRAL = TrendState()


@pytest.fixture
def strategy() -> SessionSweepStrategy:
    context = StrategyContext(entry=SETTINGS.entry, sessions=SETTINGS.sessions)
    return StrategyRegistry.create("session_sweep", context)


def _inputs(**overrides) -> EntryInputs:
    params = dict(
        now=NOW,
        price=5001.0,
        trend=BULL,
        sweeps=SweepFlags(asia_low=True),
        one_minute=[],
        position=None,
        pending=None,
        last_exit_at=None,
    )
    params.update(overrides)
    return EntryInputs(**params)


def _long_confirmation(start: int):
    return [
        make_candle(start, 5000, 5002, 4998, 5001),
        make_candle(start + MINUTE_MS, 5001, 5004, 5000, 5003.5),
    ]


def _short_confirmation(start: int):
    return [
        make_candle(start, 5000, 5002, 4998, 4999),
        make_candle(start + MINUTE_MS, 4999, 5000, 4996, 4997),
    ]


class TestArming:
    def test_bull_bias_with_low_sweep_arms_long(self, strategy):
        result = strategy.evaluate(_inputs())

        assert result.decision.state is EntryState.ARMED
        assert result.decision.should_enter is False
        assert result.pending is not None
        assert result.pending.direction is EntryDirection.LONG
        assert result.pending.armed_at == NOW

    def test_bear_bias_with_high_sweep_arms_short(self, strategy):
        result = strategy.evaluate(_inputs(trend=BEAR, sweeps=SweepFlags(london_high=True)))
        assert result.pending.direction is EntryDirection.SHORT

    def test_breakout_continuation_at_rolling_high(self, strategy):
        at_high = replace(BULL, at_all_time_high=True)

        armed = strategy.evaluate(_inputs(trend=at_high, sweeps=SweepFlags(asia_high=True)))
        blocked = strategy.evaluate(_inputs(trend=at_high, sweeps=SweepFlags(asia_low=True)))

        assert armed.pending.direction is EntryDirection.LONG
        assert blocked.pending is None
        assert "no sweep" in blocked.decision.blocked_by

    def test_only_configured_sessions_count(self, strategy):
        result = strategy.evaluate(_inputs(sweeps=SweepFlags(ny_low=True)))
        assert result.decision.state is EntryState.IDLE
        assert result.decision.blocked_by == ["no sweep"]

    @pytest.mark.parametrize(
        "overrides,blocker",
        [
            ({"price": None}, "missing price"),
            ({"price": float("nan")}, "missing price"),
            ({"now": ny_ms(TRADE_DAY, 8, 0)}, "session closed"),
            ({"now": ny_ms(TRADE_DAY, 11, 30)}, "session closed"),
            ({"trend": NEUTRAL}, "undefined trend"),
            ({"sweeps": SweepFlags()}, "no sweep"),
            ({"trend": BEAR}, "no sweep"),
        ],
    )
    def test_why_not_trace(self, strategy, overrides, blocker):
        result = strategy.evaluate(_inputs(**overrides))

        assert result.decision.state is EntryState.IDLE
        assert result.pending is None
        assert blocker in result.decision.blocked_by

    def test_trace_lists_every_blocker(self, strategy):
        result = strategy.evaluate(_inputs(price=None, now=ny_ms(TRADE_DAY, 13, 0), trend=NEUTRAL))
        assert result.decision.blocked_by == ["missing price", "session closed", "undefined trend"]

    def test_open_position_reports_entered(self, strategy):
        trade = LiveTrade(id="t1", symbol="SPX", direction=TradeDirection.CALL, entry_price=5000.0, size=1, opened_at=NOW)
        pending = PendingEntry(direction=EntryDirection.LONG, armed_at=NOW)

        result = strategy.evaluate(_inputs(position=trade, pending=pending))

        assert result.decision.state is EntryState.ENTERED
        assert result.decision.should_enter is False
        assert result.decision.blocked_by == ["already in a trade"]
        assert result.pending is None


class TestCooldown:
    def test_recent_exit_suppresses_arming(self, strategy):
        result = strategy.evaluate(_inputs(last_exit_at=NOW - 10_000))

        assert result.decision.state is EntryState.IDLE
        assert result.pending is None
        assert "cooldown" in result.decision.blocked_by

    def test_arms_once_cooldown_elapsed(self, strategy):
        result = strategy.evaluate(_inputs(last_exit_at=NOW - 31_000))
        assert result.decision.state is EntryState.ARMED


class TestConfirmation:
    def test_long_confirmation_enters_call(self, strategy):
        armed = strategy.evaluate(_inputs()).pending
        candles = _long_confirmation(ny_ms(TRADE_DAY, 9, 59))
        candles.append(make_candle(ny_ms(TRADE_DAY, 10, 1), 5003.5, 5004, 5003, 5003.8, closed=False))

        result = strategy.evaluate(_inputs(now=ny_ms(TRADE_DAY, 10, 1, 5), pending=armed, one_minute=candles))

        assert result.decision.state is EntryState.ENTERED
        assert result.decision.should_enter is True
        assert result.decision.direction is TradeDirection.CALL
        assert result.pending is None

    def test_short_confirmation_enters_put(self, strategy):
        pending = PendingEntry(direction=EntryDirection.SHORT, armed_at=NOW)
        candles = _short_confirmation(ny_ms(TRADE_DAY, 9, 59))

        result = strategy.evaluate(
            _inputs(trend=BEAR, now=ny_ms(TRADE_DAY, 10, 1, 2), pending=pending, one_minute=candles)
        )

        assert result.decision.should_enter is True
        assert result.decision.direction is TradeDirection.PUT

    def test_candle_before_arming_cannot_confirm(self, strategy):
        pending = PendingEntry(direction=EntryDirection.LONG, armed_at=ny_ms(TRADE_DAY, 10, 5))
        candles = _long_confirmation(ny_ms(TRADE_DAY, 10, 0))

        result = strategy.evaluate(_inputs(now=ny_ms(TRADE_DAY, 10, 6), pending=pending, one_minute=candles))

        assert result.decision.state is EntryState.ARMED
        assert result.pending is pending
        assert result.decision.blocked_by == ["awaiting confirmation"]

    def test_weak_candle_keeps_waiting(self, strategy):
        pending = PendingEntry(direction=EntryDirection.LONG, armed_at=NOW)
        candles = [
            make_candle(ny_ms(TRADE_DAY, 9, 59), 5000, 5005, 4998, 5001),
            make_candle(ny_ms(TRADE_DAY, 10, 0), 5001, 5004.5, 5000, 5004),
        ]

        result = strategy.evaluate(_inputs(now=ny_ms(TRADE_DAY, 10, 1), pending=pending, one_minute=candles))

        assert result.decision.state is EntryState.ARMED
        assert result.decision.should_enter is False

    def test_missing_price_keeps_pending(self, strategy):
        pending = PendingEntry(direction=EntryDirection.LONG, armed_at=NOW)
        result = strategy.evaluate(_inputs(price=None, pending=pending, one_minute=_long_confirmation(NOW)))

        assert result.decision.state is EntryState.ARMED
        assert result.pending is pending
        assert result.decision.blocked_by == ["missing price"]


class TestInvalidation:
    def test_arm_timeout(self, strategy):
        pending = PendingEntry(direction=EntryDirection.LONG, armed_at=NOW - 300_000)
        result = strategy.evaluate(_inputs(pending=pending))

        assert result.decision.state is EntryState.IDLE
        assert result.pending is None
        assert result.decision.blocked_by == ["arm timeout"]

    def test_bias_change(self, strategy):
        pending = PendingEntry(direction=EntryDirection.LONG, armed_at=NOW)
        result = strategy.evaluate(_inputs(pending=pending, trend=BEAR))
        assert result.decision.blocked_by == ["bias changed"]
        assert result.pending is None

    def test_session_close(self, strategy):
        pending = PendingEntry(direction=EntryDirection.SHORT, armed_at=ny_ms(TRADE_DAY, 11, 28))
        result = strategy.evaluate(_inputs(pending=pending, trend=BEAR, now=ny_ms(TRADE_DAY, 11, 31)))
        assert result.decision.blocked_by == ["session closed"]
        assert result.pending is None


def test_setup_direction_requires_bias():
    assert setup_direction(NEUTRAL, SweepFlags(asia_low=True, asia_high=True), ("asia",)) is None


def test_unknown_strategy():
    context = StrategyContext(entry=SETTINGS.entry, sessions=SETTINGS.sessions)
    with pytest.raises(StrategyError):
        StrategyRegistry.create("does_not_exist", context)
