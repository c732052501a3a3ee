"""Structured logging with request and job context.

A correlation ID and any bound job fields (``video_id``, ``session_id``)
live in a context variable and are copied onto every log record, so the
chunk requests of one upload or the rungs of one transcode job can be
followed through the logs. HTTP requests bind a correlation ID in
``CorrelationIdMiddleware``; Celery tasks bind the task id.
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

# LogRecord attributes that are not caller-supplied extras.
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "context"}


def get_correlation_id() -> str:
    """Get the current correlation ID, minting one if none is bound."""
    cid = _log_context.get().get("correlation_id")
    if cid is None:
        cid = str(uuid.uuid4())
        set_correlation_id(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    _log_context.set({**_log_context.get(), "correlation_id": correlation_id})


def clear_correlation_id() -> None:
    _log_context.set({})


@contextmanager
def bind_context(**fields: Any) -> Iterator[None]:
    """Attach fields to every record logged inside the block.

    Example:
        with bind_context(video_id=video_id):
            logger.info("Processing started")
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextFilter(logging.Filter):
    """Copies the bound context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = dict(_log_context.get())
        context.setdefault("correlation_id", "-")
        record.context = context
        record.correlation_id = context["correlation_id"]
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "context", {}))

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key != "correlation_id"
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            entry["error"] = {"type": exc_type.__name__, "message": str(exc)}
            if self.include_stack_trace and tb is not None:
                entry["error"]["stack"] = traceback.format_exception(exc_type, exc, tb)

        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Configure the root logger.

    Args:
        level: Log level name
        json_format: Emit JSON lines instead of plain text
        include_stack_trace: Include stack traces in JSON error entries
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    if json_format:
        handler.setFormatter(JsonFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())

    # ffmpeg jobs and relay fetches make these chatty at INFO.
    for name in ("uvicorn.access", "httpx", "httpcore", "botocore", "boto3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error, with the exception's traceback when given."""
    logger.error(message, exc_info=exception, extra=extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    logger.warning(message, extra=extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    logger.info(message, extra=extra)
