"""
Structured JSON Logging Module.

One JSON object per record. Records emitted while handling an HTTP request
(or inside a correlation_scope, e.g. one smart home poll tick) carry the
same correlation_id, so a device event can be followed from fetch through
rituals to forwarding.
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

SERVICE_NAME = "terratone-relay"

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """Dumps records as JSON; ``extra={"extra_data": {...}}`` is merged in."""

    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
            "service": self.service,
        }

        for key, ctx in (("correlation_id", correlation_id_ctx), ("request_id", request_id_ctx)):
            value = ctx.get()
            if value:
                entry[key] = value

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, dict):
            entry.update(extra_data)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block (new uuid if none given)."""
    cid = correlation_id or str(uuid.uuid4())
    token = correlation_id_ctx.set(cid)
    try:
        yield cid
    finally:
        correlation_id_ctx.reset(token)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger through a single JSON stdout handler."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    # TracingMiddleware logs each request itself
    logging.getLogger("uvicorn.access").disabled = True
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
