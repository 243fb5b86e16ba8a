"""Logging configuration for codeconnect.

One set of handlers (console, plus the log file when configured) is shared by
the codeconnect logger tree and aiohttp's own loggers, so request handler
failures and WebSocket protocol errors land next to pairing events instead of
in Python's last-resort stderr handler.
"""

import logging
from pathlib import Path

from codeconnect.config import Config

APP_LOGGER = "codeconnect"

# Unhandled handler exceptions and low-level protocol errors
AIOHTTP_LOGGERS = ("aiohttp.server", "aiohttp.web", "aiohttp.websocket")

# One line per HTTP request, only when access_log is on
ACCESS_LOGGER = "aiohttp.access"

# 2025-01-27 10:30:45 [INFO] codeconnect.pairing.pairing_manager: Code issued: K7Q2
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logger: logging.Logger | None = None
_handlers: list[logging.Handler] = []
_configured: list[logging.Logger] = []


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(config: Config) -> list[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _attach(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for handler in _handlers:
        logger.addHandler(handler)
    logger.propagate = False
    _configured.append(logger)


def setup_logging(config: Config) -> logging.Logger:
    """Set up logging based on configuration.

    Idempotent: the first call wins until reset_logging().

    Args:
        config: Configuration object with log settings.

    Returns:
        The codeconnect root logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    _handlers.extend(_build_handlers(config))
    level = _level(config.log_level)

    logger = logging.getLogger(APP_LOGGER)
    _attach(logger, level)

    # aiohttp reports handler crashes at ERROR; its debug chatter stays off
    aiohttp_level = max(logging.WARNING, min(level, logging.ERROR))
    for name in AIOHTTP_LOGGERS:
        _attach(logging.getLogger(name), aiohttp_level)

    if config.access_log:
        _attach(logging.getLogger(ACCESS_LOGGER), logging.INFO)

    _logger = logger
    return logger


def reset_logging() -> None:
    """Detach and close every handler setup_logging installed. Used for testing."""
    global _logger
    for logger in _configured:
        for handler in _handlers:
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    for handler in _handlers:
        handler.close()
    _configured.clear()
    _handlers.clear()
    _logger = None
