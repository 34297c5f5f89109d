"""Tests for the single-position book and the trade journal."""

from __future__ import annotations

from dataclasses import FrozenInstanceError

import pandas as pd
import pytest

from core.execution import ExecutionEngine, PositionError
from core.journal import TradeJournal, classify_result
from core.order_types import EntryDirection, TradeDirection, TradeResult
from tests.helpers import TRADE_DAY, ny_ms


OPEN_TS = ny_ms(TRADE_DAY, 10, 0)
CLOSE_TS = ny_ms(TRADE_DAY, 10, 12)


@pytest.fixture
def engine() -> ExecutionEngine:
    return ExecutionEngine(symbol="SPX", default_size=2)


class TestExecutionEngine:
    def test_open_then_close_journals_once(self, engine):
        events = []
        engine.subscribe(events.append)

        trade = engine.open_trade(TradeDirection.CALL, 5000.0, OPEN_TS, notes="setup")
        entry = engine.close_trade(5004.0, CLOSE_TS, "take-profit")

        assert trade.size == 2
        assert engine.open_position is None
        assert engine.last_exit_at == CLOSE_TS
        assert entry.pnl_points == pytest.approx(4.0)
        assert entry.result is TradeResult.WIN
        assert entry.direction is EntryDirection.LONG
        assert entry.contracts == 2
        assert entry.notes == "setup"
        assert len(engine.journal) == 1
        assert [e.kind for e in events] == ["open", "close"]
        assert events[1].journal_entry is entry

    def test_single_position_enforced(self, engine):
        engine.open_trade(TradeDirection.PUT, 5000.0, OPEN_TS)
        with pytest.raises(PositionError):
            engine.open_trade(TradeDirection.CALL, 5001.0, OPEN_TS + 1_000)

    def test_close_when_flat_raises(self, engine):
        with pytest.raises(PositionError):
            engine.close_trade(5000.0, CLOSE_TS, "manual")

    @pytest.mark.parametrize("price", [None, float("nan")])
    def test_invalid_prices_rejected(self, engine, price):
        with pytest.raises(PositionError):
            engine.open_trade(TradeDirection.CALL, price, OPEN_TS)

    def test_put_loss(self, engine):
        engine.open_trade("PUT", 5000.0, OPEN_TS)
        entry = engine.close_trade(5003.0, CLOSE_TS, "stop-loss")
        assert entry.pnl_points == pytest.approx(-3.0)
        assert entry.result is TradeResult.LOSS
        assert entry.direction is EntryDirection.SHORT

    def test_failing_listener_does_not_block_close(self, engine):
        def boom(event):
            raise RuntimeError("listener down")

        engine.subscribe(boom)
        engine.open_trade(TradeDirection.CALL, 5000.0, OPEN_TS)
        entry = engine.close_trade(5000.0, CLOSE_TS, "manual")

        assert entry.result is TradeResult.BREAKEVEN
        assert engine.open_position is None

    def test_reset_discards_without_journal(self, engine):
        engine.open_trade(TradeDirection.CALL, 5000.0, OPEN_TS)
        dropped = engine.reset()
        assert dropped is not None
        assert engine.open_position is None
        assert len(engine.journal) == 0
        assert engine.last_exit_at is None


class TestTradeJournal:
    @pytest.fixture
    def filled(self, engine):
        for direction, entry, exit_ in [("CALL", 5000.0, 5006.0), ("PUT", 5010.0, 5013.0), ("CALL", 5020.0, 5020.0)]:
            engine.open_trade(direction, entry, OPEN_TS)
            engine.close_trade(exit_, CLOSE_TS, "manual")
        return engine.journal

    def test_newest_first(self, filled):
        prices = [e.entry_price for e in filled.entries]
        assert prices == [5020.0, 5010.0, 5000.0]

    def test_summary(self, filled):
        summary = filled.summary()
        assert summary.total == 3
        assert (summary.wins, summary.losses, summary.breakevens) == (1, 1, 1)
        assert summary.win_rate_pct == pytest.approx(100 / 3)
        assert summary.avg_pnl_points == pytest.approx(1.0)

    def test_empty_summary(self):
        summary = TradeJournal().summary()
        assert summary.total == 0
        assert summary.win_rate_pct == 0.0
        assert summary.avg_pnl_points == 0.0

    def test_update_notes_is_the_only_mutation(self, filled):
        target = filled.entries[1]
        updated = filled.update_notes(target.id, "faded the open")

        assert updated.notes == "faded the open"
        assert filled.get(target.id).notes == "faded the open"
        assert updated.pnl_points == target.pnl_points
        with pytest.raises(FrozenInstanceError):
            updated.pnl_points = 99.0  # type: ignore[misc]
        with pytest.raises(KeyError):
            filled.update_notes("missing", "x")

    def test_open_trade_cannot_be_recorded(self, engine):
        trade = engine.open_trade(TradeDirection.CALL, 5000.0, OPEN_TS)
        with pytest.raises(ValueError):
            engine.journal.record(trade)

    def test_export_csv(self, filled, tmp_path):
        path = filled.export_csv(tmp_path / "out" / "journal.csv")

        frame = pd.read_csv(path)
        assert len(frame) == 3
        assert list(frame["result"]) == ["breakeven", "loss", "win"]
        assert "pnl_points" in frame.columns


@pytest.mark.parametrize("pnl,expected", [(0.25, TradeResult.WIN), (-0.25, TradeResult.LOSS), (0.0, TradeResult.BREAKEVEN)])
def test_classify_result(pnl, expected):
    assert classify_result(pnl) is expected
