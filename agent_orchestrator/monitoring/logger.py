"""
Logging setup for the orchestration engine.

Services log through standard library loggers; :class:`LogManager` wires
those loggers to console and file handlers and configures structlog for
the structured loggers used by the orchestrator facade.
"""

import json
import logging
import logging.handlers
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import LoggerFactory

from ..config.settings import LoggingSettings


class StructuredLogger:
    """Structured logger with key/value context."""

    def __init__(self, name: str):
        self.name = name
        self.logger = structlog.get_logger(name)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def exception(self, message: str, **kwargs):
        self.logger.exception(message, **kwargs)

    def bind(self, **kwargs) -> "StructuredLogger":
        """Return a logger that adds ``kwargs`` to every entry."""
        bound = StructuredLogger(self.name)
        bound.logger = self.logger.bind(**kwargs)
        return bound

    @contextmanager
    def context(self, **kwargs):
        """Context manager for adding context to logs."""
        old_logger = self.logger
        self.logger = self.logger.bind(**kwargs)
        try:
            yield self
        finally:
            self.logger = old_logger


class JsonFormatter(logging.Formatter):
    """JSON formatter for standard library log records."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger_name": record.name,
            "module": record.module,
            "function": record.funcName,
            "line_number": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class LogManager:
    """Centralized log configuration."""

    def __init__(self, config: Optional[Union[LoggingSettings, Dict[str, Any]]] = None):
        """
        Initialize log manager.

        Args:
            config: Logging settings or a dictionary of them
        """
        if isinstance(config, LoggingSettings):
            self.config = config
        else:
            self.config = LoggingSettings(**(config or {}))

        self.loggers: Dict[str, StructuredLogger] = {}
        self.handlers: List[logging.Handler] = []

        self._setup_logging()

    def _setup_logging(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(self.config.level)

        for handler in self.handlers:
            root_logger.removeHandler(handler)
        self.handlers = []

        formatter = JsonFormatter() if self.config.json_format else logging.Formatter(self.config.format)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.config.level)
        console_handler.setFormatter(formatter)
        self.handlers.append(console_handler)

        if self.config.file:
            Path(self.config.file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                self.config.file,
                maxBytes=self.config.max_size,
                backupCount=self.config.backup_count
            )
            file_handler.setLevel(self.config.level)
            file_handler.setFormatter(formatter)
            self.handlers.append(file_handler)

        for handler in self.handlers:
            root_logger.addHandler(handler)

        self._configure_structlog()

    def _configure_structlog(self):
        processors = [
            TimeStamper(fmt="iso"),
            add_log_level,
        ]

        if self.config.json_format:
            processors.append(JSONRenderer())
        else:
            processors.append(ConsoleRenderer(colors=False))

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=LoggerFactory(),
            cache_logger_on_first_use=False,
        )

    def get_logger(self, name: str) -> StructuredLogger:
        """Get or create a structured logger."""
        if name not in self.loggers:
            self.loggers[name] = StructuredLogger(name)
        return self.loggers[name]

    def set_level(self, level: str):
        """Set log level for the root logger and all handlers."""
        level = level.upper()
        self.config = self.config.model_copy(update={"level": level})
        logging.getLogger().setLevel(level)
        for handler in self.handlers:
            handler.setLevel(level)

    def close(self):
        """Detach and close the handlers this manager installed."""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers = []
