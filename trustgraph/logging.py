# trustgraph/logging.py
"""
Structured logging.

Every call names an event and passes its fields as keywords:

    from trustgraph.logging import get_logger
    logger = get_logger(__name__)
    logger.info("node_expanded", node_id=pubkey[:8], follows=12)

With LOG_JSON=true each record is one JSON object (timestamp, level,
logger, event, fields). Otherwise records render as
"<time> [LEVEL] logger: event key=value ...".
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Third-party loggers held at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "uvicorn", "sqlalchemy")


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "fields", None) or {}


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        data.update(_fields(record))
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with trailing key=value fields."""

    def __init__(self):
        super().__init__("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


class StructuredLogger:
    """
    Logger taking an event name plus keyword fields.

    bind() returns a child that adds fixed fields to every record.
    """

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self._logger = logging.getLogger(name)
        self._context = dict(context or {})

    def bind(self, **context: Any) -> "StructuredLogger":
        return StructuredLogger(self._logger.name, {**self._context, **context})

    def _log(self, level: int, event: str, fields: Dict[str, Any]) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, event, extra={"fields": {**self._context, **fields}})

    def debug(self, event: str, **fields: Any) -> None:
        self._log(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: Any) -> None:
        self._log(logging.INFO, event, fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._log(logging.WARNING, event, fields)


_configured = False


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Install one stdout handler on the root logger. Later calls are ignored.

    Args:
        level: Log level name
        json_output: JsonFormatter (True) or TextFormatter (False)
    """
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for a module; configures logging from settings on first use."""
    if not _configured:
        from .settings import settings
        configure_logging(level=settings.log_level, json_output=settings.log_json)
    return StructuredLogger(name)


def get_relay_logger(relay_url: str) -> StructuredLogger:
    """Logger for one relay connection; every record carries the relay URL."""
    host = relay_url.split("://", 1)[-1].split("/", 1)[0]
    return get_logger(f"trustgraph.ingestion.relay.{host}").bind(relay=relay_url)
