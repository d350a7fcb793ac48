"""Logging setup.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how records are rendered and where they go.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

from pgjournal.config import ServiceConfig

LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_COLORS = {
    logging.ERROR: "\033[31m",
    logging.WARNING: "\033[33m",
    logging.INFO: "\033[36m",
    logging.DEBUG: "\033[35m",
}
_RESET = "\033[0m"


def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the service name and version."""

    def __init__(self, service: str, version: str):
        super().__init__()
        self.service = service
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _timestamp(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "version": self.version,
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["stack"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SimpleFormatter(logging.Formatter):
    """``[LEVEL] message {"timestamp": ..., "service": ...}`` for terminals."""

    def __init__(self, service: str, color: bool = False):
        super().__init__()
        self.service = service
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        if self.color:
            level = f"{_COLORS.get(record.levelno, '')}{level}{_RESET}"

        meta = {"timestamp": _timestamp(record), "service": self.service}
        meta.update(_extras(record))
        line = f"[{level}] {record.getMessage()} {json.dumps(meta, default=str)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    config: Optional[ServiceConfig] = None, stream: Optional[TextIO] = None
) -> logging.Handler:
    """Install a single stream handler on the root logger.

    Calling it again replaces the handler installed by the previous call.

    Returns:
        The installed handler
    """
    config = config or ServiceConfig()
    stream = stream or sys.stderr

    if config.log_format == "json":
        formatter: logging.Formatter = JsonFormatter(config.name, config.version)
    else:
        formatter = SimpleFormatter(config.name, color=stream.isatty())

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.set_name("pgjournal")

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "pgjournal":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(LEVELS[config.log_level])

    return handler
