# -*- coding: utf-8 -*-
"""Location: ./mcplink/services/logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Logging Service.

Thin wrapper around the standard ``logging`` module. It configures the
root logger once from settings (plain text or JSON lines rendered with
orjson, optional file output) and hands out module loggers. Library code
only ever calls :meth:`LoggingService.get_logger`; logging is write-only
and never affects control flow.

Examples:
    >>> from mcplink.services.logging_service import LoggingService
    >>> service = LoggingService()
    >>> service.get_logger("mcplink.test").name
    'mcplink.test'
"""

# Standard
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

# Third-Party
import orjson

# First-Party
from mcplink.config import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in through ``extra=``
_RESERVED_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    Examples:
        >>> record = logging.makeLogRecord({"name": "x", "levelname": "INFO", "msg": "hello %s", "args": ("world",)})
        >>> line = JsonFormatter().format(record)
        >>> orjson.loads(line)["message"]
        'hello world'
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as JSON.

        Args:
            record: The log record.

        Returns:
            JSON encoded string.
        """
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode()


class LoggingService:
    """Configure and hand out loggers for the application."""

    _configured = False

    def __init__(self) -> None:
        self._handlers: list[logging.Handler] = []

    def get_logger(self, name: str) -> logging.Logger:
        """Return a named logger.

        Args:
            name: Logger name, usually ``__name__``.

        Returns:
            logging.Logger: The logger.
        """
        return logging.getLogger(name)

    def initialize(self, level: Optional[str] = None, log_format: Optional[str] = None, log_file: Optional[str] = None) -> None:
        """Install handlers on the root logger.

        Calling this more than once is harmless; only the first call
        installs handlers.

        Args:
            level: Override for ``settings.log_level``.
            log_format: ``"text"`` or ``"json"``; defaults to ``settings.log_format``.
            log_file: Optional file path; defaults to ``settings.log_file``.
        """
        if LoggingService._configured:
            return

        root = logging.getLogger()
        root.setLevel(level or settings.log_level)

        formatter: logging.Formatter
        if (log_format or settings.log_format) == "json":
            formatter = JsonFormatter()
        else:
            formatter = logging.Formatter(TEXT_FORMAT)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        self._handlers.append(console)

        file_path = log_file or settings.log_file
        if file_path:
            file_handler = logging.FileHandler(file_path, encoding="utf-8")
            file_handler.setFormatter(formatter)
            self._handlers.append(file_handler)

        for handler in self._handlers:
            root.addHandler(handler)

        # httpx logs every request at INFO
        logging.getLogger("httpx").setLevel(logging.WARNING)
        LoggingService._configured = True

    def shutdown(self) -> None:
        """Flush and detach the handlers installed by :meth:`initialize`."""
        root = logging.getLogger()
        for handler in self._handlers:
            handler.flush()
            root.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        LoggingService._configured = False
