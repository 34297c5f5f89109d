"""Centralized logging helpers for the signal engine.

Each engine concern writes to its own channel and file under the logs dir:

* ``system``: lifecycle, seeding, scheduling.
* ``feed``: market-data requests and rejected price ticks.
* ``signals``: entry arming/disarming and snapshot changes.
* ``trades``: position opens, closes and journal records.
* ``errors``: caught exceptions (ERROR and above only).
"""

from __future__ import annotations

import logging
from logging import Logger
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Dict

from config.settings import SETTINGS


_LOGGER_CACHE: Dict[str, Logger] = {}

CHANNELS: Dict[str, int] = {
    "system": logging.INFO,
    "feed": logging.INFO,
    "signals": logging.INFO,
    "trades": logging.INFO,
    "errors": logging.ERROR,
}

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _build_handler(path: Path, level: int) -> TimedRotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=7, utc=True, delay=True)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    return handler


def _attach(name: str, level: int) -> Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    # Avoid duplicate handlers when reloading
    logger.handlers.clear()
    logger.addHandler(_build_handler(SETTINGS.logs_dir / f"{name}.log", level))
    _LOGGER_CACHE[name] = logger
    return logger


def configure_logging() -> None:
    """Configure every engine channel once per process."""

    if _LOGGER_CACHE:
        return
    for name, level in CHANNELS.items():
        _attach(name, level)


def get_logger(name: str) -> Logger:
    """Return a configured channel logger; unknown names get an INFO file of their own."""

    if not _LOGGER_CACHE:
        configure_logging()
    if name in _LOGGER_CACHE:
        return _LOGGER_CACHE[name]
    return _attach(name, logging.INFO)


def enable_console(level: int = logging.INFO) -> None:
    """Mirror every configured channel to stderr."""

    if not _LOGGER_CACHE:
        configure_logging()
    for logger in _LOGGER_CACHE.values():
        if any(getattr(h, "_console", False) for h in logger.handlers):
            continue
        console = logging.StreamHandler()
        console.setLevel(max(level, logger.level))
        console.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
        console._console = True  # type: ignore[attr-defined]
        logger.addHandler(console)


__all__ = ["CHANNELS", "configure_logging", "enable_console", "get_logger"]
