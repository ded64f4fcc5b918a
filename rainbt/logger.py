"""Process-wide log handler and named loggers for connection-level messages."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime

_handler: logging.Handler


class LogFormatter(logging.Formatter):
    """Formats records as ``2014-02-28 18:15:57 INFO     [name] file.go:12 message``."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        location = f"{os.path.basename(record.pathname)}:{record.lineno}"
        message = record.getMessage()
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return f"{timestamp} {record.levelname:<8} [{record.name}] {location:<8} {message}"


def set_handler(handler: logging.Handler) -> None:
    """Use ``handler`` for loggers created from now on."""
    global _handler
    _handler = handler
    _handler.setFormatter(LogFormatter())


def set_debug() -> None:
    """Let debug messages through the current handler."""
    _handler.setLevel(logging.DEBUG)


def disable() -> None:
    """Discard every message of loggers created from now on."""
    set_handler(logging.NullHandler())


def new_logger(name: str) -> logging.Logger:
    """Return a logger whose messages are prefixed with ``name``.

    The logger forwards every message to the handler that is current at the
    time of the call; the handler decides what is written.
    """
    logger = logging.Logger(name, logging.DEBUG)
    logger.propagate = False
    logger.addHandler(_handler)
    return logger


def _default_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.INFO)
    return handler


set_handler(_default_handler())