"""Shared fixtures for the engine tests."""

from __future__ import annotations

import os
import tempfile
from dataclasses import replace
from datetime import date

import pytest

os.environ.setdefault("SPX_ENGINE_LOG_DIR", tempfile.mkdtemp(prefix="spx-engine-logs-"))

from config.settings import SETTINGS  # noqa: E402
from tests.helpers import TRADE_DAY  # noqa: E402


@pytest.fixture
def trade_day() -> date:
    return TRADE_DAY


@pytest.fixture
def fast_trend_settings():
    """Settings whose trend filter works on a handful of one-minute closes."""

    return replace(
        SETTINGS,
        trend=replace(
            SETTINGS.trend,
            primary_timeframe="1m",
            fast_period=2,
            slow_period=3,
            ath_tolerance_pct=0.0001,
        ),
    )
