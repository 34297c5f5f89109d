"""Single-position trade lifecycle (advisory only, no order routing)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from config.settings import SETTINGS
from core.journal import TradeJournal
from core.logger import get_logger
from core.order_types import JournalEntry, LiveTrade, PositionEvent, TradeDirection
from core.utils import is_valid_price


trade_logger = get_logger("trades")
system_logger = get_logger("system")
error_logger = get_logger("errors")

PositionListener = Callable[[PositionEvent], None]


class PositionError(Exception):
    """Raised when an open/close transition is not allowed."""


@dataclass
class ExecutionEngine:
    """Owns the one open position and is its only writer.

    Opening while a position exists, or closing when none does, raises
    ``PositionError``. Every close is journaled exactly once and starts the
    re-entry cooldown via ``last_exit_at``.
    """

    symbol: str = field(default=SETTINGS.entry.symbol)
    default_size: int = field(default=SETTINGS.entry.contracts)
    journal: TradeJournal = field(default_factory=TradeJournal)
    open_position: Optional[LiveTrade] = field(default=None, init=False)
    last_exit_at: Optional[int] = field(default=None, init=False)
    _listeners: List[PositionListener] = field(default_factory=list, init=False, repr=False)

    @property
    def has_position(self) -> bool:
        return self.open_position is not None

    def subscribe(self, listener: PositionListener) -> None:
        self._listeners.append(listener)

    def open_trade(
        self,
        direction: TradeDirection,
        price: float,
        timestamp: int,
        *,
        size: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> LiveTrade:
        if self.open_position is not None:
            raise PositionError(f"Position {self.open_position.id} already open")
        if not is_valid_price(price):
            raise PositionError(f"Invalid entry price: {price!r}")

        trade = LiveTrade(
            id=uuid.uuid4().hex[:12],
            symbol=self.symbol,
            direction=TradeDirection(direction),
            entry_price=float(price),
            size=int(size if size is not None else self.default_size),
            opened_at=int(timestamp),
            notes=notes,
        )
        self.open_position = trade
        trade_logger.info(
            "OPEN | %s | %s size=%d entry=%.2f",
            trade.id,
            trade.direction.value,
            trade.size,
            trade.entry_price,
        )
        self._emit(PositionEvent(kind="open", trade=trade, timestamp=trade.opened_at))
        return trade

    def close_trade(self, price: float, timestamp: int, reason: str) -> JournalEntry:
        if self.open_position is None:
            raise PositionError("No open position to close")
        if not is_valid_price(price):
            raise PositionError(f"Invalid exit price: {price!r}")

        trade = self.open_position
        trade.exit_price = float(price)
        trade.closed_at = int(timestamp)
        trade.exit_reason = reason
        entry = self.journal.record(trade)

        self.open_position = None
        self.last_exit_at = trade.closed_at
        trade_logger.info(
            "CLOSE | %s | %s exit=%.2f pnl=%.2f reason=%s",
            trade.id,
            trade.direction.value,
            trade.exit_price,
            entry.pnl_points,
            reason,
        )
        self._emit(PositionEvent(kind="close", trade=trade, timestamp=trade.closed_at, journal_entry=entry))
        return entry

    def reset(self) -> Optional[LiveTrade]:
        """Drop the open position without journaling it."""

        trade = self.open_position
        self.open_position = None
        if trade is not None:
            system_logger.warning("Position %s discarded without close", trade.id)
        return trade

    def _emit(self, event: PositionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                error_logger.exception("Position listener failed for %s event", event.kind)


__all__ = ["ExecutionEngine", "PositionError", "PositionListener"]
