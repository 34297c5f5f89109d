"""Shared enums and records passed between the engine components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from core.utils import ms_to_iso


class Bias(str, Enum):
    """Directional trend classification."""

    BULL = "bull"
    BEAR = "bear"
    NEUTRAL = "neutral"


class EntryDirection(str, Enum):
    """Direction of an armed setup."""

    LONG = "long"
    SHORT = "short"

    @property
    def trade_direction(self) -> "TradeDirection":
        return TradeDirection.CALL if self is EntryDirection.LONG else TradeDirection.PUT


class TradeDirection(str, Enum):
    """Option side of a live trade."""

    CALL = "CALL"
    PUT = "PUT"

    @property
    def is_long(self) -> bool:
        return self is TradeDirection.CALL

    @property
    def entry_direction(self) -> EntryDirection:
        return EntryDirection.LONG if self.is_long else EntryDirection.SHORT


class EntryState(str, Enum):
    """Stages of the entry state machine."""

    IDLE = "idle"
    ARMED = "armed"
    ENTERED = "entered"


class ExitReason(str, Enum):
    """Why an exit decision was (or was not) taken."""

    SESSION_END = "session-end"
    TAKE_PROFIT = "take-profit"
    STOP_LOSS = "stop-loss"
    TREND_FLIP = "trend-flip"
    MAX_DURATION = "max-duration"
    MANUAL = "manual"
    SCALE_OUT = "scale-out"
    HOLD = "hold"
    NO_PRICE = "no-price"


class TradeResult(str, Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


@dataclass(slots=True)
class PendingEntry:
    """A qualifying setup waiting for its confirmation candle."""

    direction: EntryDirection
    armed_at: int
    reason: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "armed_at": ms_to_iso(self.armed_at),
            "reason": self.reason,
        }


@dataclass(slots=True)
class LiveTrade:
    """The single open (or just-closed) position."""

    id: str
    symbol: str
    direction: TradeDirection
    entry_price: float
    size: int
    opened_at: int
    closed_at: Optional[int] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def pnl_points(self, price: float) -> float:
        """Directional P&L in index points per contract."""

        if self.direction.is_long:
            return price - self.entry_price
        return self.entry_price - price

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "size": self.size,
            "opened_at": ms_to_iso(self.opened_at),
            "closed_at": ms_to_iso(self.closed_at),
            "exit_price": self.exit_price,
            "exit_reason": self.exit_reason,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class JournalEntry:
    """Immutable record of a closed trade (only notes may be replaced)."""

    id: str
    symbol: str
    direction: EntryDirection
    entry_price: float
    exit_price: float
    contracts: int
    opened_at: int
    closed_at: int
    notes: str
    pnl_points: float
    result: TradeResult
    exit_reason: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "contracts": self.contracts,
            "opened_at": ms_to_iso(self.opened_at),
            "closed_at": ms_to_iso(self.closed_at),
            "notes": self.notes,
            "pnl_points": self.pnl_points,
            "result": self.result.value,
            "exit_reason": self.exit_reason,
        }


@dataclass
class EntryDecision:
    """Outcome of one entry evaluation, with the "why not" trace."""

    state: EntryState
    should_enter: bool = False
    direction: Optional[TradeDirection] = None
    reason: str = ""
    blocked_by: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "should_enter": self.should_enter,
            "direction": self.direction.value if self.direction else None,
            "reason": self.reason,
            "blocked_by": list(self.blocked_by),
        }


@dataclass
class ExitDecision:
    """Outcome of one exit evaluation against the open position."""

    should_exit: bool
    reason: str
    code: ExitReason
    pnl_points: Optional[float] = None
    minutes_held: Optional[float] = None
    r_multiple: Optional[float] = None
    suggested_exit_price: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "should_exit": self.should_exit,
            "reason": self.reason,
            "code": self.code.value,
            "pnl_points": self.pnl_points,
            "minutes_held": self.minutes_held,
            "r_multiple": self.r_multiple,
            "suggested_exit_price": self.suggested_exit_price,
        }


@dataclass(frozen=True)
class PositionEvent:
    """Lifecycle notification for journaling collaborators."""

    kind: str  # "open" or "close"
    trade: LiveTrade
    timestamp: int
    journal_entry: Optional[JournalEntry] = None


__all__ = [
    "Bias",
    "EntryDecision",
    "EntryDirection",
    "EntryState",
    "ExitDecision",
    "ExitReason",
    "JournalEntry",
    "LiveTrade",
    "PendingEntry",
    "PositionEvent",
    "TradeDirection",
    "TradeResult",
]
