"""Exit evaluation for the single open position."""

from __future__ import annotations

from typing import Optional

from config.settings import SETTINGS, ExitSettings, SessionSettings
from core.order_types import Bias, ExitDecision, ExitReason, LiveTrade
from core.sessions import in_window
from core.utils import is_valid_price


def _opposes(bias: Bias, position: LiveTrade) -> bool:
    if position.direction.is_long:
        return bias is Bias.BEAR
    return bias is Bias.BULL


def risk_multiple(pnl: Optional[float], stop_loss_points: float) -> Optional[float]:
    """P&L expressed in units of the stop distance; None without a stop."""

    if pnl is None or not stop_loss_points:
        return None
    return pnl / abs(stop_loss_points)


def evaluate_exit(
    position: LiveTrade,
    price: Optional[float],
    bias: Bias,
    now: int,
    settings: Optional[ExitSettings] = None,
    sessions: Optional[SessionSettings] = None,
) -> ExitDecision:
    """Return the first exit condition that applies, in priority order.

    Order: session end, take profit, stop loss, trend flip, max duration.
    Exactly one reason is reported per call. When nothing closes the trade a
    configured scale-out level can still turn the hold into a ``scale-out``
    advisory; it never closes the position.
    """

    settings = settings or SETTINGS.exit
    sessions = sessions or SETTINGS.sessions
    minutes_held = max(0.0, (now - position.opened_at) / 60_000)
    pnl = position.pnl_points(price) if is_valid_price(price) else None
    fill = float(price) if pnl is not None else None

    def decide(should_exit: bool, reason: str, code: ExitReason) -> ExitDecision:
        return ExitDecision(
            should_exit=should_exit,
            reason=reason,
            code=code,
            pnl_points=pnl,
            minutes_held=minutes_held,
            r_multiple=risk_multiple(pnl, settings.stop_loss_points),
            suggested_exit_price=fill if should_exit or code is ExitReason.SCALE_OUT else None,
        )

    if settings.exit_outside_session and not in_window(now, sessions.trading_window, sessions.timezone):
        return decide(True, f"session-end: outside {sessions.trading_window.name} window", ExitReason.SESSION_END)

    if pnl is None:
        return decide(False, "hold: no price", ExitReason.NO_PRICE)

    if pnl >= settings.take_profit_points:
        return decide(
            True,
            f"take-profit: {pnl:+.2f} pts >= {settings.take_profit_points:+.2f}",
            ExitReason.TAKE_PROFIT,
        )

    if pnl <= settings.stop_loss_points:
        return decide(
            True,
            f"stop-loss: {pnl:+.2f} pts <= {settings.stop_loss_points:+.2f}",
            ExitReason.STOP_LOSS,
        )

    if _opposes(bias, position):
        return decide(
            True,
            f"trend-flip: {bias.value} bias against {position.direction.value}",
            ExitReason.TREND_FLIP,
        )

    if minutes_held >= settings.max_hold_minutes:
        return decide(True, f"max-duration: held {minutes_held:.1f} min", ExitReason.MAX_DURATION)

    scale_out = settings.scale_out_points
    if scale_out is not None and scale_out > 0 and pnl >= scale_out:
        return decide(False, f"scale-out: {pnl:+.2f} pts >= {scale_out:+.2f}", ExitReason.SCALE_OUT)

    return decide(False, f"hold: {pnl:+.2f} pts", ExitReason.HOLD)


__all__ = ["evaluate_exit", "risk_multiple"]
