"""Tests for pattern and instantaneous sweep detection."""

from __future__ import annotations

import pytest

from core.sessions import SessionLevels, SessionRange, build_session_levels
from core.sweeps import (
    NO_SWEEP,
    SweepFlags,
    compute_live_sweeps,
    compute_sweep_flags,
    detect_high_sweep,
    detect_low_sweep,
    detect_price_sweep,
    detect_sweep,
)
from tests.helpers import TRADE_DAY, make_candle, minute_series, ny_ms


START = ny_ms(TRADE_DAY, 9, 30)
LEVEL = 100.0


def _range(high, low, name="asia") -> SessionRange:
    return SessionRange(name=name, high=high, low=low, candle_count=1 if high is not None else 0)


class TestPatternSweep:
    def test_two_candle_high_sweep(self):
        candles = minute_series(START, [(99, 101, 98.5, 100.5), (100.5, 100.8, 99, 99.5)])
        assert detect_high_sweep(LEVEL, candles) is True

    def test_single_candle_high_rejection(self):
        candles = minute_series(START, [(99, 101, 98.5, 99.8)])
        assert detect_high_sweep(LEVEL, candles) is True

    def test_breakout_that_holds_is_not_a_sweep(self):
        candles = minute_series(START, [(99, 101, 98.5, 100.5), (100.5, 102, 100.2, 101.5)])
        assert detect_high_sweep(LEVEL, candles) is False

    def test_open_above_level_is_not_a_sweep(self):
        candles = minute_series(START, [(100.5, 101, 99, 99.5), (99.5, 99.8, 98, 99)])
        assert detect_high_sweep(LEVEL, candles) is False

    def test_two_candle_low_sweep(self):
        candles = minute_series(START, [(101, 101.5, 99, 99.6), (99.6, 101.2, 99.5, 100.8)])
        assert detect_low_sweep(LEVEL, candles) is True

    def test_in_progress_candle_ignored(self):
        candles = minute_series(START, [(99, 101, 98.5, 100.5), (100.5, 100.8, 99, 99.5)])
        candles[-1].closed = False
        assert detect_high_sweep(LEVEL, candles) is False

    def test_lookback_limits_scan(self):
        sweep = [(99, 101, 98.5, 99.8)]
        quiet = [(99, 99.5, 98.8, 99.2)] * 10
        candles = minute_series(START, sweep + quiet)
        assert detect_high_sweep(LEVEL, candles, lookback=10) is False
        assert detect_high_sweep(LEVEL, candles, lookback=11) is True

    @pytest.mark.parametrize(
        "bars",
        [
            [],
            [(99, 101, 98.5, 99.8)],
            [(101, 101.5, 99, 100.5)],
        ],
    )
    def test_null_level_never_sweeps(self, bars):
        candles = minute_series(START, bars)
        assert detect_high_sweep(None, candles) is False
        assert detect_low_sweep(None, candles) is False
        assert detect_sweep(_range(None, None), candles) == NO_SWEEP

    def test_detect_sweep_on_range(self):
        candles = minute_series(START, [(99, 101, 98.5, 99.8), (99.8, 99.9, 89, 91)])
        result = detect_sweep(_range(100.0, 90.0), candles)
        assert result.swept_high is True
        assert result.swept_low is True


class TestPriceSweep:
    def test_strictly_beyond_levels(self):
        level = _range(100.0, 90.0)
        assert detect_price_sweep(100.5, level).swept_high is True
        assert detect_price_sweep(100.0, level).swept_high is False
        assert detect_price_sweep(89.9, level).swept_low is True

    @pytest.mark.parametrize("price", [None, float("nan"), 150.0])
    def test_unknown_level_or_price(self, price):
        assert detect_price_sweep(price, _range(None, None)) == NO_SWEEP
        if price != 150.0:
            assert detect_price_sweep(price, _range(100.0, 90.0)) == NO_SWEEP


class TestSweepFlags:
    def test_flags_from_levels(self):
        levels = SessionLevels(
            ranges={
                "asia": _range(110.0, 100.0, "asia"),
                "london": _range(None, None, "london"),
                "ny": _range(120.0, 105.0, "ny"),
            }
        )
        candles = minute_series(START, [(101, 101.5, 99, 99.6), (99.6, 101.2, 99.5, 100.8)])

        flags = compute_sweep_flags(levels, candles)

        assert flags.asia_low is True
        assert flags.asia_high is False
        assert flags.london_low is False
        assert flags.ny_low is False
        assert flags.any_low(["asia", "london"]) is True
        assert flags.any_high(["asia", "london"]) is False

    def test_default_flags_are_false(self):
        assert not any(SweepFlags().as_dict().values())

    def test_live_sweeps_payload(self):
        levels = SessionLevels(ranges={"asia": _range(110.0, 100.0, "asia")})
        payload = compute_live_sweeps(levels, 111.0)
        assert payload == {"asia": {"swept_high": True, "swept_low": False}}


class TestSweepsAfterSessionClose:
    def test_candles_before_the_session_never_sweep_it(self):
        evening = ny_ms(TRADE_DAY, 20, 0)
        pre_session = [make_candle(ny_ms(TRADE_DAY, 19, 50), 5010, 5011, 4995, 5005)]
        asia = minute_series(evening, [(5003, 5006, 5000, 5004)] * 10)

        levels = build_session_levels(pre_session + asia, now=ny_ms(TRADE_DAY, 20, 10))
        flags = compute_sweep_flags(levels, pre_session + asia)

        assert levels.asia.low == 5000
        assert flags.asia_low is False
        assert flags.asia_high is False

    def test_only_candles_after_last_bucket_count(self):
        rng = SessionRange(name="london", high=110.0, low=100.0, candle_count=1, first_bucket=START, last_bucket=START)
        inside = minute_series(START, [(101, 101.5, 99, 100.5)])
        after = minute_series(START, [(101, 101.5, 100.2, 101), (101, 101.5, 99, 100.5)])

        assert detect_sweep(rng, inside).swept_low is False
        assert detect_sweep(rng, after).swept_low is True
