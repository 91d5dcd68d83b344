"""Logging setup for output mapping runs.

Modules log with ``extra={"table_id": ..., "job_id": ...}``; the
formatters here put those context fields where an operator can find them.
With JSON output they are top-level keys, so a log aggregator can filter
on ``table_id`` across the whole run:

    {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
     "logger": "output_mapping.lib.load_queue",
     "message": "Loaded table out.c-main.orders (job 123)",
     "table_id": "out.c-main.orders", "job_id": "123"}

Text output appends them to the line as ``[table_id=... job_id=...]``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Union

from output_mapping.lib.settings import LoggingSettings

__all__ = [
    "CONTEXT_FIELDS",
    "ContextFormatter",
    "JSONFormatter",
    "record_context",
    "setup_logging",
]

# Attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

CONTEXT_FIELDS = ("table_id", "job_id", "source", "bucket_id", "branch_id")

NOISY_LOGGERS = ("httpx", "httpcore", "azure", "botocore", "boto3", "s3transfer")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields set on ``record``, in ``CONTEXT_FIELDS`` order."""
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class ContextFormatter(logging.Formatter):
    """Text formatter that appends the record's context fields."""

    def __init__(self, fmt: str = TEXT_FORMAT, datefmt: str = DATE_FORMAT) -> None:
        super().__init__(fmt, datefmt)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        suffix = " ".join(f"{key}={value}" for key, value in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Context fields are top-level keys; other ``extra=`` attributes are
    nested under ``"extra"``. Fields in ``exclude_fields`` never appear.
    """

    def __init__(self, exclude_fields: Optional[Iterable[str]] = None) -> None:
        super().__init__()
        self.exclude_fields = frozenset(exclude_fields or ())

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record_context(record).items():
            if key not in self.exclude_fields:
                data[key] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
            and key not in CONTEXT_FIELDS
            and key not in self.exclude_fields
        }
        if extra:
            data["extra"] = extra

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        if record.levelno >= logging.WARNING:
            data["origin"] = {"file": record.pathname, "line": record.lineno, "function": record.funcName}

        return json.dumps(data, default=str)


def setup_logging(
    settings: Optional[LoggingSettings] = None,
    *,
    level: Union[int, str, None] = None,
    json_format: Optional[bool] = None,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger for an output mapping run.

    Keyword arguments override ``settings``; without settings, the
    ``OUTPUT_MAPPING_LOG_*`` environment variables are read.
    """
    settings = settings or LoggingSettings()
    level = level if level is not None else settings.level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    json_format = settings.json_format if json_format is None else json_format
    log_file = log_file or settings.file

    formatter: logging.Formatter = JSONFormatter(settings.exclude_fields) if json_format else ContextFormatter()

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
