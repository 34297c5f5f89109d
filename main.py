"""
SPX Session Engine - live advisory loop
=======================================
Polls the market-data API, keeps multi-timeframe candles, session levels,
sweeps and EMA bias current, and logs entry/exit recommendations for a single
SPX options position.

Usage:
    python main.py                              # ES futures proxy, default thresholds
    python main.py --source index               # cash index only (no overnight levels)
    python main.py --take-profit 8 --stop-loss -4 --verbose
    python main.py --duration 600 --journal-csv logs/journal.csv
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace
from typing import List, Optional, Sequence

from config.settings import SETTINGS, Settings
from core.aggregator import EngineSnapshot, SignalAggregator
from core.datafeed import DataFeedError, MarketDataClient
from core.logger import configure_logging, enable_console, get_logger
from core.order_types import PositionEvent
from core.scheduler import PeriodicTask
from core.utils import now_ms, to_reference_time


system_logger = get_logger("system")
error_logger = get_logger("errors")
signal_logger = get_logger("signals")
feed_logger = get_logger("feed")
trade_logger = get_logger("trades")


# =============================================================================
# ARGUMENT PARSER
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SPX session-aware signal engine (advisory only)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--ticker", default=SETTINGS.feed.ticker, help="Index ticker to poll")
    parser.add_argument(
        "--source",
        choices=["index", "futures"],
        default=SETTINGS.feed.source,
        help="Price/history source: the active ES contract (default) or the cash index",
    )
    parser.add_argument(
        "--eval-interval",
        type=float,
        default=SETTINGS.feed.evaluation_interval_seconds,
        help="Seconds between evaluation ticks",
    )
    parser.add_argument(
        "--price-interval",
        type=float,
        default=SETTINGS.feed.price_poll_seconds,
        help="Seconds between price polls",
    )
    parser.add_argument(
        "--history-refresh",
        type=float,
        default=SETTINGS.feed.history_refresh_seconds,
        help="Seconds between history re-seeds",
    )
    parser.add_argument("--take-profit", type=float, default=SETTINGS.exit.take_profit_points, help="Take profit (points)")
    parser.add_argument("--stop-loss", type=float, default=SETTINGS.exit.stop_loss_points, help="Stop loss (negative points)")
    parser.add_argument("--max-hold", type=float, default=SETTINGS.exit.max_hold_minutes, help="Max hold (minutes)")
    parser.add_argument("--cooldown", type=float, default=SETTINGS.entry.cooldown_seconds, help="Re-entry cooldown (seconds)")
    parser.add_argument("--journal-csv", help="Export the trade journal to CSV on shutdown")
    parser.add_argument("--verbose", action="store_true", help="Mirror logs to the console")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds (default: run forever)")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings = SETTINGS) -> Settings:
    if args.stop_loss > 0:
        raise SystemExit("--stop-loss must be zero or negative")
    return replace(
        base,
        entry=replace(base.entry, cooldown_seconds=args.cooldown),
        exit=replace(
            base.exit,
            take_profit_points=args.take_profit,
            stop_loss_points=args.stop_loss,
            max_hold_minutes=args.max_hold,
        ),
        feed=replace(
            base.feed,
            ticker=args.ticker,
            evaluation_interval_seconds=args.eval_interval,
            price_poll_seconds=args.price_interval,
            history_refresh_seconds=args.history_refresh,
            source=args.source,
        ),
    )


# =============================================================================
# RUNNER
# =============================================================================

class EngineRunner:
    """Wires the feed client to the aggregator through three periodic tasks."""

    def __init__(
        self,
        settings: Settings,
        *,
        source: Optional[str] = None,
        client: Optional[MarketDataClient] = None,
        engine: Optional[SignalAggregator] = None,
    ) -> None:
        self.settings = settings
        self.source = source or settings.feed.source
        self.client = client or MarketDataClient(settings.feed)
        self.engine = engine or SignalAggregator(settings)
        self.engine.subscribe(self._on_position_event)
        self._price_ticker: Optional[str] = None
        self._last_summary: Optional[tuple] = None
        self.tasks: List[PeriodicTask] = []

    def _on_position_event(self, event: PositionEvent) -> None:
        trade = event.trade
        if event.kind == "open":
            signal_logger.info("ENTER %s @ %.2f | %s", trade.direction.value, trade.entry_price, trade.notes or "-")
        elif event.journal_entry is not None:
            entry = event.journal_entry
            signal_logger.info(
                "EXIT %s @ %.2f | pnl=%.2f %s | %s",
                trade.direction.value,
                entry.exit_price,
                entry.pnl_points,
                entry.result.value,
                entry.exit_reason or "-",
            )

    async def _price_ticker_for_source(self) -> str:
        if self.source != "futures":
            return self.settings.feed.ticker
        if self._price_ticker is None:
            day = to_reference_time(now_ms(), self.settings.sessions.timezone).date()
            self._price_ticker = await asyncio.to_thread(self.client.resolve_contract, day)
        return self._price_ticker

    async def refresh_history(self) -> None:
        now = now_ms()
        try:
            bars = await asyncio.to_thread(self.client.fetch_history, self.source, now)
        except DataFeedError as exc:
            error_logger.error("History refresh failed: %s", exc)
            return
        if not bars:
            feed_logger.warning("History refresh returned no bars")
            return
        self.engine.seed_history(bars, now=now)
        system_logger.info("History refreshed | %d one-minute bars", len(bars))

    async def poll_price(self) -> None:
        try:
            ticker = await self._price_ticker_for_source()
            if self.source == "futures":
                now = now_ms()
                bars = await asyncio.to_thread(self.client.fetch_futures_bars, ticker, now - 180_000, now)
                if not bars:
                    return
                price = bars[-1].close
            else:
                price = await asyncio.to_thread(self.client.fetch_price, ticker)
        except DataFeedError as exc:
            error_logger.error("Price poll failed: %s", exc)
            return
        if not self.engine.on_price(price, now_ms()):
            feed_logger.warning("Price %r rejected by candle aggregator", price)

    def evaluate(self) -> Optional[EngineSnapshot]:
        snapshot = self.engine.tick(source="timer")
        if snapshot is None:
            return None
        summary = (
            snapshot.bias.value,
            snapshot.entry.state.value,
            snapshot.entry.reason,
            snapshot.exit.code.value if snapshot.exit else None,
        )
        if summary != self._last_summary:
            self._last_summary = summary
            signal_logger.info(
                "SNAPSHOT | price=%s bias=%s session=%s entry=%s (%s) exit=%s",
                snapshot.last_price,
                snapshot.bias.value,
                snapshot.session,
                snapshot.entry.state.value,
                ", ".join(snapshot.entry.blocked_by) or snapshot.entry.reason,
                snapshot.exit.reason if snapshot.exit else "-",
            )
        return snapshot

    async def run(self, duration: Optional[float] = None) -> None:
        await self.refresh_history()
        feed = self.settings.feed
        self.tasks = [
            PeriodicTask("price", feed.price_poll_seconds, self.poll_price, timeout=feed.timeout_seconds * 2),
            PeriodicTask(
                "history",
                feed.history_refresh_seconds,
                self.refresh_history,
                timeout=feed.timeout_seconds * 4,
                run_immediately=False,
            ),
            PeriodicTask("evaluate", feed.evaluation_interval_seconds, self.evaluate),
        ]
        for task in self.tasks:
            task.start()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await self.stop()

    async def stop(self) -> None:
        for task in self.tasks:
            await task.stop()
        self.client.close()


def export_journal(engine: SignalAggregator, path: Optional[str]) -> None:
    if not path:
        return
    target = engine.execution.journal.export_csv(path)
    summary = engine.execution.journal.summary()
    trade_logger.info(
        "SUMMARY | trades=%d wins=%d losses=%d win_rate=%.1f%% avg=%.2f",
        summary.total,
        summary.wins,
        summary.losses,
        summary.win_rate_pct,
        summary.avg_pnl_points,
    )
    system_logger.info("Journal exported to %s", target)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    if args.verbose:
        enable_console()

    settings = settings_from_args(args)
    runner = EngineRunner(settings, source=args.source)
    system_logger.info(
        "Engine starting | source=%s ticker=%s tp=%.2f sl=%.2f max_hold=%.0fm",
        args.source,
        settings.feed.ticker,
        settings.exit.take_profit_points,
        settings.exit.stop_loss_points,
        settings.exit.max_hold_minutes,
    )
    if args.source == "index":
        system_logger.warning("Index source has no overnight prints | Asia/London levels will stay empty")
    try:
        asyncio.run(runner.run(duration=args.duration))
    except KeyboardInterrupt:
        system_logger.info("Received shutdown signal")
    except Exception:
        error_logger.exception("Fatal error in engine loop")
        raise
    finally:
        export_journal(runner.engine, args.journal_csv)


if __name__ == "__main__":  # pragma: no cover
    main()
