"""HTTP market-data client (latest price, one-minute bars, futures contracts).

Every call is bounded by ``FeedSettings.timeout_seconds`` and raises
``DataFeedError`` on transport, status or payload problems. Callers at the
polling boundary log the error and keep their last good state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import requests

from config.settings import SETTINGS, FeedSettings
from core.logger import get_logger
from core.utils import Candle, is_valid_price, to_reference_time


feed_logger = get_logger("feed")

TIME_KEYS = ("window_start", "t", "ts", "time", "start")
OPEN_KEYS = ("o", "open")
HIGH_KEYS = ("h", "high")
LOW_KEYS = ("l", "low")
CLOSE_KEYS = ("c", "close")
VOLUME_KEYS = ("v", "volume")
PRICE_KEYS = ("price", "last", "value", "p", "c", "close")
RANGE_START_KEYS = ("active_start", "start_date", "first_trade_date", "list_date")
RANGE_END_KEYS = ("active_end", "end_date", "last_trade_date", "expiration_date")
TICKER_KEYS = ("ticker", "symbol", "contract_ticker")


class DataFeedError(Exception):
    """Raised when the market-data collaborator fails or returns junk."""


@dataclass(frozen=True)
class ContractInfo:
    ticker: str
    kind: Optional[str]
    start: Optional[date]
    end: Optional[date]

    def covers(self, day: date) -> bool:
        return self.start is not None and self.end is not None and self.start <= day <= self.end


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if is_valid_price(number) else None


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Optional[float]:
    for key in keys:
        number = _to_number(raw.get(key))
        if number is not None:
            return number
    return None


def to_epoch_ms(value: float) -> int:
    """Normalize an epoch timestamp in s, ms, us or ns to ms by magnitude."""

    magnitude = abs(value)
    if magnitude >= 1e17:
        return int(value // 1_000_000)
    if magnitude >= 1e14:
        return int(value // 1_000)
    if magnitude >= 1e11:
        return int(value)
    return int(value * 1000)


def normalize_bar(raw: Any) -> Optional[Candle]:
    """Map one upstream bar onto a closed ``Candle``; None if fields are missing."""

    if not isinstance(raw, Mapping):
        return None
    ts = _first(raw, TIME_KEYS)
    o = _first(raw, OPEN_KEYS)
    h = _first(raw, HIGH_KEYS)
    l = _first(raw, LOW_KEYS)
    c = _first(raw, CLOSE_KEYS)
    if ts is None or o is None or h is None or l is None or c is None:
        return None
    return Candle(
        bucket_start=to_epoch_ms(ts),
        open=o,
        high=max(h, o, c),
        low=min(l, o, c),
        close=c,
        volume=_first(raw, VOLUME_KEYS),
        closed=True,
    )


def normalize_bars(rows: Iterable[Any]) -> List[Candle]:
    candles = [bar for bar in (normalize_bar(row) for row in rows) if bar is not None]
    candles.sort(key=lambda c: c.bucket_start)
    return candles


def parse_price(payload: Any) -> Optional[float]:
    """Extract a price from a bare number or a ``{price}``/``{last}``-style payload."""

    number = _to_number(payload) if not isinstance(payload, (Mapping, list)) else None
    if number is not None:
        return number
    if isinstance(payload, list):
        return parse_price(payload[0]) if payload else None
    if not isinstance(payload, Mapping):
        return None
    for key in PRICE_KEYS:
        value = payload.get(key)
        if isinstance(value, Mapping):
            nested = parse_price(value)
            if nested is not None:
                return nested
            continue
        number = _to_number(value)
        if number is not None:
            return number
    if "results" in payload:
        return parse_price(payload["results"])
    return None


def _parse_day(value: Any) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _first_present(raw: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def contract_info(raw: Mapping[str, Any]) -> Optional[ContractInfo]:
    ticker = _first_present(raw, TICKER_KEYS)
    if not isinstance(ticker, str):
        return None
    return ContractInfo(
        ticker=ticker.upper(),
        kind=raw.get("type"),
        start=_parse_day(_first_present(raw, RANGE_START_KEYS)),
        end=_parse_day(_first_present(raw, RANGE_END_KEYS)),
    )


def is_real_contract(ticker: str, product: str) -> bool:
    """Month-coded single contract such as ESH6; rejects synthetic ``...0`` roots."""

    pattern = rf"^{re.escape(product.upper())}[FGHJKMNQUVXZ]\d$"
    return bool(re.match(pattern, ticker.upper())) and not ticker.endswith("0")


def choose_contract(contracts: Iterable[Mapping[str, Any]], day: date, product: str = "ES") -> Optional[str]:
    """Pick the active real contract for ``day``.

    Only single contracts with a real month-coded ticker qualify. Ones whose
    active range covers the day win; otherwise any qualifying contract is used.
    Ties go to the latest range start.
    """

    candidates = [
        info
        for info in (contract_info(raw) for raw in contracts if isinstance(raw, Mapping))
        if info is not None and info.kind == "single" and is_real_contract(info.ticker, product)
    ]
    covering = [info for info in candidates if info.covers(day)]
    pool = covering or candidates
    if not pool:
        return None
    pool.sort(key=lambda info: info.start or date.min, reverse=True)
    return pool[0].ticker


class MarketDataClient:
    """Thin requests wrapper around the price, bars and contracts endpoints."""

    def __init__(self, settings: Optional[FeedSettings] = None, session: Optional[requests.Session] = None) -> None:
        self.settings = settings or SETTINGS.feed
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = dict(params or {})
        if self.settings.api_key:
            query["apiKey"] = self.settings.api_key
        try:
            response = self._session.get(url, params=query, timeout=self.settings.timeout_seconds)
        except requests.RequestException as exc:
            raise DataFeedError(f"Request to {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise DataFeedError(f"{url} returned {response.status_code}: {response.text[:200]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise DataFeedError(f"{url} returned non-JSON body") from exc
        if isinstance(data, Mapping) and (data.get("status") == "ERROR" or data.get("error")):
            raise DataFeedError(f"{url} reported error: {data.get('error') or data.get('message')}")
        return data

    @staticmethod
    def _results(data: Any) -> List[Any]:
        if isinstance(data, list):
            return data
        if isinstance(data, Mapping) and isinstance(data.get("results"), list):
            return data["results"]
        return []

    def fetch_price(self, ticker: Optional[str] = None) -> float:
        ticker = ticker or self.settings.ticker
        data = self._get(self.settings.price_url, {"ticker.any_of": ticker})
        price = parse_price(data)
        if price is None:
            raise DataFeedError(f"No price in payload for {ticker}")
        return price

    def fetch_bars(self, ticker: str, start_ms: int, end_ms: int) -> List[Candle]:
        url = self.settings.bars_url.format(ticker=ticker, start=int(start_ms), end=int(end_ms))
        data = self._get(url, {"adjusted": "true", "sort": "asc", "limit": 50000})
        bars = normalize_bars(self._results(data))
        feed_logger.info("Fetched %d bars for %s", len(bars), ticker)
        return bars

    def fetch_futures_bars(self, ticker: str, start_ms: int, end_ms: int) -> List[Candle]:
        url = self.settings.futures_bars_url.format(ticker=ticker)
        params = {
            "resolution": "1min",
            "window_start.gte": int(start_ms) * 1_000_000,
            "window_start.lt": int(end_ms) * 1_000_000,
            "limit": 50000,
        }
        bars = normalize_bars(self._results(self._get(url, params)))
        feed_logger.info("Fetched %d futures bars for %s", len(bars), ticker)
        return bars

    def list_contracts(self, product: Optional[str] = None) -> List[Mapping[str, Any]]:
        params = {
            "product_code": (product or self.settings.futures_product).upper(),
            "active": "all",
            "type": "all",
            "limit": 200,
            "sort": "product_code.asc",
        }
        return [row for row in self._results(self._get(self.settings.contracts_url, params)) if isinstance(row, Mapping)]

    def resolve_contract(self, day: date, product: Optional[str] = None) -> str:
        product = (product or self.settings.futures_product).upper()
        ticker = choose_contract(self.list_contracts(product), day, product)
        if ticker is None:
            raise DataFeedError(f"No active {product} contract for {day.isoformat()}")
        feed_logger.info("Resolved %s contract for %s -> %s", product, day.isoformat(), ticker)
        return ticker

    def fetch_history(self, source: str, now: int, lookback_hours: Optional[float] = None) -> List[Candle]:
        """One-minute history ending at ``now`` from the index or the futures proxy."""

        hours = lookback_hours if lookback_hours is not None else self.settings.history_lookback_hours
        start = now - int(hours * 3_600_000)
        if source == "futures":
            ticker = self.resolve_contract(to_reference_time(now).date())
            return self.fetch_futures_bars(ticker, start, now)
        return self.fetch_bars(self.settings.ticker, start, now)


__all__ = [
    "ContractInfo",
    "DataFeedError",
    "MarketDataClient",
    "choose_contract",
    "is_real_contract",
    "normalize_bar",
    "normalize_bars",
    "parse_price",
    "to_epoch_ms",
]
