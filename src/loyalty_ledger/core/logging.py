"""Structured JSON logging for the loyalty ledger."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from typing import Any, Dict, TextIO

from loguru import logger
from opentelemetry import trace

# Attributes every stdlib LogRecord carries; anything else was passed via ``extra=``.
_STANDARD_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_LIBRARY_LEVELS = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "apscheduler": logging.INFO,
}


class InterceptHandler(logging.Handler):
    """Forward stdlib records (SQLAlchemy, APScheduler, alembic) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_RECORD_FIELDS}
        logger.bind(stdlib_logger=record.name, **extra).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


class JsonSink:
    """Loguru sink writing one JSON object per line, tagged with service metadata."""

    def __init__(
        self,
        *,
        service_name: str,
        environment: str,
        version: str,
        stream: TextIO | None = None,
    ) -> None:
        self._static = {"service": service_name, "environment": environment, "version": version}
        self._stream = stream

    def __call__(self, message: Any) -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **self._static,
            **self._trace_fields(),
            **record["extra"],
        }
        if record["exception"] is not None:
            payload["exception"] = self._exception_fields(record["exception"])

        stream = self._stream or sys.stdout
        stream.write(json.dumps(payload, default=str) + "\n")

    @staticmethod
    def _trace_fields() -> Dict[str, str]:
        context = trace.get_current_span().get_span_context()
        if not context.is_valid:
            return {}
        return {"trace_id": f"{context.trace_id:032x}", "span_id": f"{context.span_id:016x}"}

    @staticmethod
    def _exception_fields(exception: Any) -> Dict[str, Any]:
        exc_type, exc_value, exc_traceback = exception
        return {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback))
            if exc_type
            else None,
        }


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
) -> None:
    """Route loguru and stdlib logging through a single JSON sink."""

    logger.remove()
    logger.add(
        JsonSink(service_name=service_name, environment=environment, version=version),
        level=level,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)


__all__ = ["InterceptHandler", "JsonSink", "configure_logging"]
