"""Structured logging for QuoteDesk services.

Provides JSON-formatted logging with request context support so that
queue actions can be traced per staff member and per lead. Sync runs
and worker tasks bind their own fields (mode, task id) the same way.
"""

import json
import logging
import sys
import traceback
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional


# Cache for logger instances
_loggers: dict[str, "StructuredLogger"] = {}

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "quotedesk"

# Libraries that log every HTTP call or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")

# Attributes every LogRecord carries; never copied into the JSON body
RESERVED_FIELDS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        for key, value in record.__dict__.items():
            if key in RESERVED_FIELDS or key.startswith("_"):
                continue
            entry[key] = value

        return json.dumps(entry, default=_json_default)


@dataclass
class RequestContext:
    """Who is acting on which lead.

    Attached to every log line emitted while handling a queue action.
    """

    request_id: Optional[str] = None
    staff_id: Optional[str] = None
    lead_id: Optional[int] = None
    path: Optional[str] = None
    method: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.request_id:
            result["request_id"] = self.request_id
        if self.staff_id:
            result["staff_id"] = self.staff_id
        if self.lead_id is not None:
            result["lead_id"] = self.lead_id
        if self.path:
            result["path"] = self.path
        if self.method:
            result["method"] = self.method
        result.update(self.extra)
        return result


class StructuredLogger:
    """Logger taking structured fields as keyword arguments.

    Fields that collide with LogRecord attributes (``name``, ``created``,
    ``msg``...) are prefixed with ``field_`` rather than rejected by the
    logging module.

    Usage:
        logger = get_logger(__name__)
        logger.info("Lead claimed", context=ctx, lead_id=12)

        task_logger = logger.bind(task="queue.sync_from_orders")
        task_logger.warning("Index incomplete", index_size=40)
    """

    def __init__(self, name: str, bound: Optional[dict[str, Any]] = None):
        self.name = name
        self._logger = logging.getLogger(name)
        self._bound = dict(bound or {})

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a logger that adds ``fields`` to every record."""
        return StructuredLogger(self.name, {**self._bound, **fields})

    def _log(
        self,
        level: int,
        msg: str,
        context: Optional[RequestContext] = None,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        merged = dict(self._bound)
        if context:
            merged.update(context.to_dict())
        merged.update(fields)

        extra = {
            (f"field_{key}" if key in RESERVED_FIELDS else key): value
            for key, value in merged.items()
        }
        # stacklevel points the record at the caller, not this wrapper
        self._logger.log(level, msg, exc_info=exc_info, extra=extra, stacklevel=3)

    def debug(self, msg: str, context: Optional[RequestContext] = None, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, context, **fields)

    def info(self, msg: str, context: Optional[RequestContext] = None, **fields: Any) -> None:
        self._log(logging.INFO, msg, context, **fields)

    def warning(self, msg: str, context: Optional[RequestContext] = None, **fields: Any) -> None:
        self._log(logging.WARNING, msg, context, **fields)

    def error(
        self,
        msg: str,
        context: Optional[RequestContext] = None,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        self._log(logging.ERROR, msg, context, exc_info=exc_info, **fields)


def get_logger(name: str) -> StructuredLogger:
    """Get or create the structured logger for ``name``."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Configure root logging for an API or worker process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Emit one JSON object per line instead of plain text.
        service_name: Value of the ``service`` field in JSON output.
    """
    numeric_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(handler)

    # Collaborator calls are already summarised by the adapters
    noisy_level = logging.WARNING if numeric_level > logging.DEBUG else logging.NOTSET
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)
