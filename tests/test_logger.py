"""
Tests for log configuration and structured loggers.
"""

import json
import logging
import sys

import pytest
import structlog

from agent_orchestrator.config import LoggingSettings
from agent_orchestrator.monitoring import LogManager, StructuredLogger
from agent_orchestrator.monitoring.logger import JsonFormatter


@pytest.fixture
def restore_logging():
    """Undo root handler and structlog changes made by a LogManager."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()


class TestLogManager:
    """Test LogManager."""

    def test_console_handler_installed(self, restore_logging):
        manager = LogManager({"level": "debug"})

        assert manager.config.level == "DEBUG"
        assert len(manager.handlers) == 1
        assert logging.getLogger().level == logging.DEBUG
        assert manager.handlers[0] in logging.getLogger().handlers

    def test_file_handler(self, restore_logging, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        manager = LogManager(LoggingSettings(file=str(log_file), json_format=True))

        logging.getLogger("agent_orchestrator.test").info("written to file")
        for handler in manager.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "written to file"
        assert entry["level"] == "INFO"
        assert len(manager.handlers) == 2

    def test_loggers_are_cached(self, restore_logging):
        manager = LogManager()

        assert manager.get_logger("engine") is manager.get_logger("engine")
        assert isinstance(manager.get_logger("engine"), StructuredLogger)

    def test_set_level(self, restore_logging):
        manager = LogManager()

        manager.set_level("warning")

        assert manager.config.level == "WARNING"
        assert all(handler.level == logging.WARNING for handler in manager.handlers)

    def test_close_detaches_handlers(self, restore_logging):
        manager = LogManager()
        installed = list(manager.handlers)

        manager.close()

        assert manager.handlers == []
        assert not any(handler in logging.getLogger().handlers for handler in installed)


class TestStructuredLogger:
    """Test StructuredLogger binding."""

    def test_bind_returns_new_logger(self):
        logger = StructuredLogger("engine")

        bound = logger.bind(task_id="t1")

        assert bound is not logger
        assert bound.name == "engine"

    def test_context_restores_logger(self):
        logger = StructuredLogger("engine")
        original = logger.logger

        with logger.context(task_id="t1") as scoped:
            assert scoped is logger
            assert logger.logger is not original

        assert logger.logger is original


class TestJsonFormatter:
    """Test JsonFormatter."""

    def test_exception_is_included(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = logging.LogRecord(
                "engine", logging.ERROR, __file__, 10, "failed", None, exc_info=sys.exc_info()
            )

        entry = json.loads(JsonFormatter().format(record))

        assert entry["message"] == "failed"
        assert entry["logger_name"] == "engine"
        assert "ValueError: bad value" in entry["exception"]
