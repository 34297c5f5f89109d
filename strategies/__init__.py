"""Entry strategy factory and base classes for the signal engine."""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Type

from config.settings import EntrySettings, SessionSettings
from core.order_types import EntryDecision, LiveTrade, PendingEntry
from core.sweeps import SweepFlags
from core.trend import TrendState
from core.utils import Candle


class StrategyError(Exception):
    """Raised when strategy creation fails."""


@dataclass
class StrategyContext:
    """Runtime context available to all strategies."""

    entry: EntrySettings
    sessions: SessionSettings


@dataclass
class EntryInputs:
    """Everything one entry evaluation reads. Strategies never mutate it."""

    now: int
    price: Optional[float]
    trend: TrendState
    sweeps: SweepFlags
    one_minute: Sequence[Candle] = field(default_factory=list)
    position: Optional[LiveTrade] = None
    pending: Optional[PendingEntry] = None
    last_exit_at: Optional[int] = None


@dataclass
class EntryEvaluation:
    """Decision plus the pending entry that should be stored afterwards."""

    decision: EntryDecision
    pending: Optional[PendingEntry] = None
    notes: List[str] = field(default_factory=list)


class BaseStrategy:
    """Base class all strategies must derive from."""

    name: str = "base"

    def __init__(self, context: StrategyContext) -> None:
        self.context = context

    def evaluate(self, inputs: EntryInputs) -> EntryEvaluation:
        """Advance the entry state machine by one cycle."""
        raise NotImplementedError


class StrategyRegistry:
    """Registry for mapping strategy names to implementations."""

    _registry: Dict[str, Type[BaseStrategy]] = {}

    @classmethod
    def register(cls, strategy_cls: Type[BaseStrategy]) -> None:
        cls._registry[strategy_cls.name] = strategy_cls

    @classmethod
    def create(cls, name: str, context: StrategyContext) -> BaseStrategy:
        if name not in cls._registry:
            try:
                importlib.import_module(f"strategies.{name}.strategy")
            except ModuleNotFoundError as exc:
                raise StrategyError(f"Unknown strategy: {name}") from exc
        if name not in cls._registry:
            raise StrategyError(f"Unknown strategy: {name}")
        return cls._registry[name](context)


__all__ = [
    "BaseStrategy",
    "EntryEvaluation",
    "EntryInputs",
    "StrategyContext",
    "StrategyError",
    "StrategyRegistry",
]
