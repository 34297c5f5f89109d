"""Tests for the channel loggers."""

from __future__ import annotations

import logging

from core.logger import CHANNELS, enable_console, get_logger


def test_every_channel_writes_to_its_own_file():
    for name, level in CHANNELS.items():
        logger = get_logger(name)
        assert logger.level == level
        assert logger.propagate is False
        files = [h.baseFilename for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(files) == 1
        assert files[0].endswith(f"{name}.log")


def test_errors_channel_drops_info():
    assert not get_logger("errors").isEnabledFor(logging.INFO)
    assert get_logger("signals").isEnabledFor(logging.INFO)


def test_get_logger_is_cached():
    assert get_logger("feed") is get_logger("feed")
    extra = get_logger("backfill")
    assert extra is get_logger("backfill")
    assert extra.level == logging.INFO


def test_enable_console_is_idempotent():
    enable_console()
    enable_console()
    try:
        consoles = [h for h in get_logger("system").handlers if getattr(h, "_console", False)]
        assert len(consoles) == 1
    finally:
        for name in CHANNELS:
            logger = get_logger(name)
            for handler in [h for h in logger.handlers if getattr(h, "_console", False)]:
                logger.removeHandler(handler)
