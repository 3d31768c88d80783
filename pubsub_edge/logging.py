"""
JSON-lines logging for services embedding an `Edge` (stdlib-only).

Each record becomes one JSON object on stdout carrying service, env, version,
sha, severity and a stable `event_type`, plus whatever was passed in `extra`.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pubsub_edge.errors import AckRejectedError

# Attributes every LogRecord has; anything else on a record came from `extra`.
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _one_line(v: Any, *, max_len: int = 2000) -> str:
    s = "" if v is None else str(v)
    s = s.replace("\n", " ").replace("\r", " ").strip()
    return s[:max_len]


def _first_env(*names: str) -> str:
    for name in names:
        v = (os.getenv(name) or "").strip()
        if v:
            return v
    return "unknown"


class JsonLogFormatter(logging.Formatter):
    def __init__(
        self,
        *,
        service: str | None = None,
        env: str | None = None,
        version: str | None = None,
        sha: str | None = None,
    ) -> None:
        super().__init__()
        self._static = {
            "service": service or _first_env("SERVICE_NAME", "K_SERVICE"),
            "env": env or _first_env("ENVIRONMENT", "ENV"),
            "version": version or _first_env("APP_VERSION", "K_REVISION"),
            "sha": sha or _first_env("GIT_SHA", "COMMIT_SHA"),
        }

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (format required by logging)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            # Python level names are valid Cloud Logging severities.
            "severity": record.levelname,
            **self._static,
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _one_line(record.getMessage(), max_len=4000),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for k, v in vars(record).items():
            if k not in _RECORD_ATTRS and k not in payload and not k.startswith("_"):
                payload[k] = v

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def init_structured_logging(
    *,
    service: str | None = None,
    env: str | None = None,
    version: str | None = None,
    sha: str | None = None,
    level: str | int | None = None,
) -> None:
    """
    Route the root logger to a single JSON stdout handler.

    `level` defaults to `LOG_LEVEL` (then INFO). Safe to call again; the last
    call wins.
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").strip().upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version, sha=sha))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)


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


def logging_error_handler(logger: Optional[logging.Logger] = None) -> Callable[[BaseException], None]:
    """
    Build an `Edge` error handler that logs each error as a `pubsub_edge.error` event.

    Thread-safe: stdlib logging serialises handler output.
    """
    lg = logger or logging.getLogger("pubsub_edge")

    def _handle(err: BaseException) -> None:
        text = _one_line(err)
        fields: dict[str, Any] = {"error_type": type(err).__name__, "error": text}
        if isinstance(err, AckRejectedError):
            fields["message_id"] = err.message_id
            fields["status"] = str(getattr(err.status, "name", err.status))
        log_event(lg, "pubsub_edge.error", severity="ERROR", message=text, **fields)

    return _handle
