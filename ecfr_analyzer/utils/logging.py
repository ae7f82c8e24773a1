"""Structured JSON logging utilities for the eCFR analyzer service."""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, Set

from .context import get_request_id, get_run_id

_DEFAULT_SERVICE = os.getenv("ECFR_SERVICE_NAME", "ecfr-analyzer")
_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Patterns for sensitive values that should never be logged
_SENSITIVE_PATTERNS: Set[re.Pattern[str]] = {
    re.compile(r"(postgres(?:ql)?://[^:/\s]+:)[^@\s]+(@)", re.I),  # Password in DSN
    re.compile(r"password\s*=\s*[^\s]+", re.I),
}

_SENSITIVE_FIELD_NAMES = frozenset({"password", "secret", "token", "dsn", "authorization"})

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "request_id",
        "run_id",
    }
)


def _redact_sensitive(value: Any) -> Any:
    """Redact sensitive patterns from a string value."""
    if not isinstance(value, str):
        return value
    result = value
    for pattern in _SENSITIVE_PATTERNS:
        if pattern.groups == 2:
            result = pattern.sub(r"\1[REDACTED]\2", result)
        else:
            result = pattern.sub("[REDACTED]", result)
    return result


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(s in key_lower for s in _SENSITIVE_FIELD_NAMES)


class JSONFormatter(logging.Formatter):
    """Format log records as structured JSON lines with sensitive value redaction."""

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__()
        self.service_name = service_name or _DEFAULT_SERVICE
        self.env = os.getenv("ENVIRONMENT", "dev")

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        log_record: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service_name,
            "env": self.env,
            "thread": record.threadName,
            "msg": _redact_sensitive(record.getMessage()),
        }

        request_id = get_request_id() or getattr(record, "request_id", None)
        if request_id:
            log_record["request_id"] = request_id

        run_id = get_run_id() or getattr(record, "run_id", None)
        if run_id:
            log_record["run_id"] = run_id

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            log_record[key] = "[REDACTED]" if _is_sensitive_key(key) else _redact_sensitive(value)

        if record.exc_info:
            error_type = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            log_record["error_type"] = error_type
            log_record["error_msg"] = _redact_sensitive(str(record.exc_info[1]))
            log_record["traceback"] = _redact_sensitive(self.formatException(record.exc_info))

        if record.stack_info:
            log_record["stack"] = _redact_sensitive(record.stack_info)

        return json.dumps(log_record, default=str, ensure_ascii=False)


def setup_logging(
    service_name: str | None = None,
    level: int = logging.INFO,
    json_output: bool = False,
) -> None:
    """
    Configure root logging.

    Args:
        service_name: Service identifier for JSON logs (default: ecfr-analyzer)
        level: Root log level
        json_output: Emit JSON lines instead of the console format
    """
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Silence noisy third-party loggers
    for noisy_logger in ("httpx", "httpcore", "apscheduler.scheduler", "apscheduler.executors"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)
