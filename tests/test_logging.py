"""Tests for logging module."""

import logging
import re

import pytest
from aiohttp import web
from aiohttp import test_utils

from codeconnect.config import Config
from codeconnect.logging import (
    ACCESS_LOGGER,
    AIOHTTP_LOGGERS,
    reset_logging,
    setup_logging,
)


class TestSetupLogging:
    """Test logging setup."""

    def test_setup_logging_returns_logger(self):
        logger = setup_logging(Config())

        assert isinstance(logger, logging.Logger)
        assert logger.name == "codeconnect"
        assert logger.propagate is False

    def test_setup_is_idempotent(self):
        first = setup_logging(Config())
        handlers = list(first.handlers)
        second = setup_logging(Config(log_level="DEBUG"))

        assert second is first
        assert second.handlers == handlers

    def test_setup_logging_creates_log_file(self, tmp_path):
        log_file = tmp_path / "subdir" / "codeconnect.log"
        logger = setup_logging(Config(log_file=str(log_file)))

        logging.getLogger("codeconnect.pairing").info("code issued")

        assert log_file.exists()
        assert "code issued" in log_file.read_text()
        assert len(logger.handlers) == 2

    def test_log_level_filters_output(self, tmp_path):
        log_file = tmp_path / "test.log"
        logger = setup_logging(Config(log_file=str(log_file), log_level="WARNING"))

        logger.info("info message")
        logger.warning("warning message")

        content = log_file.read_text()
        assert "info message" not in content
        assert "warning message" in content

    def test_log_format_names_the_logger(self, tmp_path):
        log_file = tmp_path / "test.log"
        setup_logging(Config(log_file=str(log_file)))

        logging.getLogger("codeconnect.server").info("hello")

        line = log_file.read_text().strip()
        assert re.match(
            r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[INFO\] codeconnect.server: hello", line
        )

    def test_unknown_level_falls_back_to_info(self):
        logger = setup_logging(Config(log_level="CHATTY"))
        assert logger.level == logging.INFO

    def test_reset_clears_handlers(self):
        logger = setup_logging(Config())
        reset_logging()
        assert logger.handlers == []
        for name in AIOHTTP_LOGGERS:
            assert logging.getLogger(name).handlers == []


class TestAiohttpLoggers:
    """aiohttp's loggers share the codeconnect handlers."""

    def test_server_loggers_share_handlers(self, tmp_path):
        logger = setup_logging(Config(log_file=str(tmp_path / "test.log")))

        for name in AIOHTTP_LOGGERS:
            aiohttp_logger = logging.getLogger(name)
            assert aiohttp_logger.handlers == logger.handlers
            assert aiohttp_logger.propagate is False

    def test_aiohttp_debug_stays_quiet(self):
        setup_logging(Config(log_level="DEBUG"))
        assert logging.getLogger("aiohttp.server").level == logging.WARNING

    def test_aiohttp_errors_kept_at_quiet_app_level(self):
        setup_logging(Config(log_level="CRITICAL"))
        assert logging.getLogger("aiohttp.server").isEnabledFor(logging.ERROR)

    def test_access_log_off_by_default(self):
        setup_logging(Config())
        assert logging.getLogger(ACCESS_LOGGER).handlers == []

    def test_access_log_enabled(self, tmp_path):
        logger = setup_logging(Config(access_log=True, log_file=str(tmp_path / "a.log")))

        access = logging.getLogger(ACCESS_LOGGER)
        assert access.isEnabledFor(logging.INFO)
        assert access.handlers == logger.handlers

    @pytest.mark.asyncio
    async def test_handler_crash_reaches_log_file(self, tmp_path):
        log_file = tmp_path / "server.log"
        setup_logging(Config(log_file=str(log_file)))

        async def crash(request):
            raise RuntimeError("handler exploded")

        app = web.Application()
        app.router.add_get("/crash", crash)
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/crash")
            assert resp.status == 500

        content = log_file.read_text()
        assert "[ERROR] aiohttp.server" in content
        assert "handler exploded" in content
