"""Tests for log level handling."""
from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from rich.console import Console
from rich.logging import RichHandler

from dkronagent.config import ConfigError
from dkronagent.logging import PACKAGE_LOGGER, configure_logging, parse_log_level


@pytest.fixture(autouse=True)
def restore_package_logger() -> Iterator[None]:
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("debug", logging.DEBUG),
        ("info", logging.INFO),
        ("warn", logging.WARNING),
        ("ERROR", logging.ERROR),
        ("fatal", logging.CRITICAL),
        ("panic", logging.CRITICAL),
    ],
)
def test_parse_log_level(name: str, expected: int) -> None:
    """dkron level names map onto stdlib levels."""
    assert parse_log_level(name) == expected


def test_parse_log_level_rejects_unknown() -> None:
    """Unknown names raise ConfigError listing the allowed values."""
    with pytest.raises(ConfigError, match="Unsupported log level 'verbose'"):
        parse_log_level("verbose")


def test_configure_logging_installs_single_rich_handler() -> None:
    """Repeated calls replace the handler instead of stacking them."""
    console = Console(record=True, width=120)

    configure_logging("info", console=console)
    logger = configure_logging("debug", console=console)

    rich_handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
    assert len(rich_handlers) == 1
    assert logger.level == logging.DEBUG

    logging.getLogger(f"{PACKAGE_LOGGER}.config").debug("merged file values")
    assert "merged file values" in console.export_text()


def test_configure_logging_filters_below_level() -> None:
    """Messages below the configured level are dropped."""
    console = Console(record=True, width=120)
    configure_logging("warn", console=console)

    logging.getLogger(f"{PACKAGE_LOGGER}.network").info("quiet please")

    assert "quiet please" not in console.export_text()
