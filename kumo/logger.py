"""
kumo.logger — Structured JSON logging.

All logs are structured JSON lines on stderr. No print-based logging.

Entities are reconciled concurrently, so log lines from different entities
interleave. ``entity_context`` tags every line emitted inside it (within the
current asyncio task) with the entity being reconciled; a line that names
a more specific subject (a variant SKU, a reference key) keeps the
enclosing entity under ``parent``.
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

from kumo.config import LogLevel

_current_entity: ContextVar[str | None] = ContextVar("kumo_entity", default=None)

_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_RECORD_FIELDS = ("run_id", "entity", "parent", "stage")


@contextmanager
def entity_context(label: str) -> Iterator[None]:
    """Attribute log lines in this block to ``label``."""
    token = _current_entity.set(label)
    try:
        yield
    finally:
        _current_entity.reset(token)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
        }

        for name in _RECORD_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_entry[name] = value

        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class KumoLogger:
    """Structured logger for kumo; one run id per instance."""

    def __init__(
        self,
        name: str = "kumo",
        level: LogLevel = LogLevel.INFO,
        stream: Any = None,
    ):
        self.run_id = uuid.uuid4().hex[:12]
        self._logger = logging.getLogger(name)
        self._logger.setLevel(_LEVELS.get(level, logging.INFO))
        self._logger.handlers.clear()
        self._logger.propagate = False

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(JSONFormatter())
        self._logger.addHandler(handler)

    def _log(
        self,
        level: int,
        message: str,
        entity: str | None,
        stage: str | None,
        data: dict[str, Any],
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        enclosing = _current_entity.get()
        fields: dict[str, Any] = {
            "run_id": self.run_id,
            "entity": entity or enclosing,
            "parent": enclosing if entity and entity != enclosing else None,
            "stage": stage,
        }
        if data:
            fields["extra_data"] = data

        record = self._logger.makeRecord(
            self._logger.name, level, "", 0, message, (), None, extra=fields
        )
        self._logger.handle(record)

    def debug(self, message: str, entity: str | None = None, stage: str | None = None, **data: Any) -> None:
        self._log(logging.DEBUG, message, entity, stage, data)

    def info(self, message: str, entity: str | None = None, stage: str | None = None, **data: Any) -> None:
        self._log(logging.INFO, message, entity, stage, data)

    def warn(self, message: str, entity: str | None = None, stage: str | None = None, **data: Any) -> None:
        self._log(logging.WARNING, message, entity, stage, data)

    def error(self, message: str, entity: str | None = None, stage: str | None = None, **data: Any) -> None:
        self._log(logging.ERROR, message, entity, stage, data)


_logger: KumoLogger | None = None


def get_logger() -> KumoLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = KumoLogger()
    return _logger


def configure_logger(level: LogLevel, stream: Any = None) -> KumoLogger:
    """Configure and return the global logger. Starts a new run id."""
    global _logger
    _logger = KumoLogger(level=level, stream=stream)
    return _logger
