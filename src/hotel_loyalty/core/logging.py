from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


_STDLIB_RECORD_FIELDS = frozenset(
    vars(LogRecord("hotel_loyalty", logging.INFO, __file__, 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level> | {extra}"
)


class InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, sqlalchemy, apscheduler) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format strings
            message = str(record.msg)

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_FIELDS}
        bound = logger.bind(**extra) if extra else logger
        bound.opt(depth=6, exception=record.exc_info).log(
            level, message.replace("{", "{{").replace("}", "}}")
        )


def _json_sink(metadata: Dict[str, str]):
    def _write(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **metadata,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        if record["exception"] is not None:
            payload["exception"] = str(record["exception"].value)

        payload.update(record["extra"])
        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return _write


def configure_logging(*, service_name: str, environment: str, version: str) -> None:
    """Configure Loguru sinks and bridge stdlib logging into them.

    Development gets a colourised console sink; every other environment emits
    one JSON document per line with trace correlation ids.
    """

    logger.remove()
    if environment == "development":
        logger.add(sys.stderr, format=_CONSOLE_FORMAT, backtrace=False, diagnose=False)
    else:
        metadata = {"service": service_name, "environment": environment, "version": version}
        logger.add(_json_sink(metadata), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
