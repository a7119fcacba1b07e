"""Logging setup driven by the ``log-level`` configuration value."""
from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import ConfigError

PACKAGE_LOGGER = "dkronagent"

# dkron's level names; fatal and panic both abort the agent.
LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


def parse_log_level(level: str) -> int:
    """Return the stdlib level for a dkron level name."""
    try:
        return LOG_LEVELS[level.strip().lower()]
    except KeyError:
        allowed = ", ".join(LOG_LEVELS)
        raise ConfigError(f"Unsupported log level '{level}'. Allowed: {allowed}.") from None


def configure_logging(level: str, *, console: Console | None = None) -> logging.Logger:
    """Attach a Rich handler to the package logger at *level*.

    Calling this again replaces the previously installed handler.
    """
    numeric = parse_log_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setLevel(numeric)
    logger.addHandler(handler)
    logger.setLevel(numeric)
    logger.propagate = False
    return logger


__all__ = ["LOG_LEVELS", "configure_logging", "parse_log_level"]
