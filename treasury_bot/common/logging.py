"""
Structured JSON logging for the treasury bot (stdlib-only).

One JSON object per stdout line, carrying `service`, `run_id` (one per process),
`tick_id` (one per loop tick), `event_type` and `severity`. Semantic events go
through `log_event(logger, "purchase.submitted", tx_hash=..., cost_wei=...)`.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

_RUN_ID: str = uuid.uuid4().hex
_TICK_ID: ContextVar[Optional[str]] = ContextVar("tick_id", default=None)

# Everything a bare LogRecord carries; whatever else is on the record came in via `extra`.
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}

_QUIET_LOGGERS = ("web3", "urllib3", "httpx", "httpcore", "asyncio")


def _one_line(v: Any, *, max_len: int) -> str:
    s = "" if v is None else str(v).replace("\n", " ").replace("\r", " ").strip()
    return s if len(s) <= max_len else s[: max_len - 1] + "…"


def _jsonable(v: Any) -> Any:
    # Wei amounts and block numbers exceed float precision; keep them exact.
    if isinstance(v, bool) or v is None:
        return v
    if isinstance(v, int):
        return str(v)
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    if isinstance(v, dict):
        return {str(k): _jsonable(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_jsonable(x) for x in v]
    return v


def default_service_name() -> str:
    return (os.getenv("SERVICE_NAME") or "").strip() or "treasury-bot"


@contextmanager
def bind_tick_id(tick_id: str | None = None) -> Iterator[str]:
    tid = tick_id or uuid.uuid4().hex[:16]
    token = _TICK_ID.set(tid)
    try:
        yield tid
    finally:
        _TICK_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (format required by logging)
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname,
            "service": self._service,
            "run_id": _RUN_ID,
            "tick_id": _TICK_ID.get(),
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), max_len=4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for k, v in record.__dict__.items():
            if k in _RECORD_ATTRS or k in payload or k.startswith("_"):
                continue
            payload[k] = _jsonable(v)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(*, service: str | None = None, level: str | int | None = None) -> None:
    """
    Route the root logger to JSON lines on stdout. Last call wins.
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service or default_service_name()))
    root.handlers = [handler]

    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    **fields: Any,
) -> None:
    lvl = getattr(logging, str(severity).upper(), logging.INFO)
    logger.log(lvl, message or event_type, extra={"event_type": event_type, **fields})
