"""In-memory journal of closed trades and its summary statistics."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from core.logger import get_logger
from core.order_types import JournalEntry, LiveTrade, TradeResult


trade_logger = get_logger("trades")


@dataclass
class JournalSummary:
    """Aggregate view over every journaled trade."""

    total: int
    wins: int
    losses: int
    breakevens: int
    win_rate_pct: float
    avg_pnl_points: float
    total_pnl_points: float

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "wins": self.wins,
            "losses": self.losses,
            "breakevens": self.breakevens,
            "win_rate_pct": self.win_rate_pct,
            "avg_pnl_points": self.avg_pnl_points,
            "total_pnl_points": self.total_pnl_points,
        }


def classify_result(pnl_points: float) -> TradeResult:
    if pnl_points > 0:
        return TradeResult.WIN
    if pnl_points < 0:
        return TradeResult.LOSS
    return TradeResult.BREAKEVEN


class TradeJournal:
    """Append-only trade history, newest entry first.

    Entries are immutable; ``update_notes`` swaps in a copy with new notes.
    """

    def __init__(self) -> None:
        self._entries: List[JournalEntry] = []
        self._index: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[JournalEntry]:
        return list(self._entries)

    def get(self, entry_id: str) -> Optional[JournalEntry]:
        idx = self._index.get(entry_id)
        return self._entries[idx] if idx is not None else None

    def record(self, trade: LiveTrade) -> JournalEntry:
        """Journal a closed trade exactly once."""

        if trade.closed_at is None or trade.exit_price is None:
            raise ValueError(f"Trade {trade.id} is still open")
        if trade.id in self._index:
            raise ValueError(f"Trade {trade.id} already journaled")

        pnl = round(trade.pnl_points(trade.exit_price), 4)
        entry = JournalEntry(
            id=trade.id,
            symbol=trade.symbol,
            direction=trade.direction.entry_direction,
            entry_price=trade.entry_price,
            exit_price=trade.exit_price,
            contracts=trade.size,
            opened_at=trade.opened_at,
            closed_at=trade.closed_at,
            notes=trade.notes or "",
            pnl_points=pnl,
            result=classify_result(pnl),
            exit_reason=trade.exit_reason,
        )
        self._entries.insert(0, entry)
        self._reindex()
        trade_logger.info(
            "JOURNAL | %s | %s pnl=%.2f result=%s",
            entry.id,
            entry.direction.value.upper(),
            entry.pnl_points,
            entry.result.value,
        )
        return entry

    def update_notes(self, entry_id: str, notes: str) -> JournalEntry:
        idx = self._index.get(entry_id)
        if idx is None:
            raise KeyError(f"Unknown journal entry: {entry_id}")
        updated = replace(self._entries[idx], notes=notes)
        self._entries[idx] = updated
        return updated

    def _reindex(self) -> None:
        self._index = {entry.id: idx for idx, entry in enumerate(self._entries)}

    def summary(self) -> JournalSummary:
        pnl = np.array([e.pnl_points for e in self._entries], dtype=float)
        total = int(pnl.size)
        wins = sum(1 for e in self._entries if e.result is TradeResult.WIN)
        losses = sum(1 for e in self._entries if e.result is TradeResult.LOSS)
        breakevens = total - wins - losses
        return JournalSummary(
            total=total,
            wins=wins,
            losses=losses,
            breakevens=breakevens,
            win_rate_pct=(wins / total * 100) if total else 0.0,
            avg_pnl_points=float(np.mean(pnl)) if total else 0.0,
            total_pnl_points=float(np.sum(pnl)) if total else 0.0,
        )

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "id",
            "symbol",
            "direction",
            "entry_price",
            "exit_price",
            "contracts",
            "opened_at",
            "closed_at",
            "notes",
            "pnl_points",
            "result",
            "exit_reason",
        ]
        return pd.DataFrame([entry.as_dict() for entry in self._entries], columns=columns)

    def export_csv(self, path: str | Path) -> Path:
        """Write the journal as CSV (newest first) and return the path."""

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(target, index=False)
        return target


__all__ = ["JournalSummary", "TradeJournal", "classify_result"]
