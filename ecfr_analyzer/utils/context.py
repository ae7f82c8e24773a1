"""Context helpers for request-scoped and run-scoped log metadata."""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Optional

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def get_request_id() -> Optional[str]:
    """Return the current request ID, if any."""
    return _request_id.get()


def set_request_id(request_id: Optional[str]) -> Token:
    """Set the current request ID and return the context token."""
    return _request_id.set(request_id)


def reset_request_id(token: Token | None = None) -> None:
    if token is not None:
        _request_id.reset(token)
    else:
        _request_id.set(None)


def get_run_id() -> Optional[str]:
    """Return the import run ID bound to the current thread, if any."""
    return _run_id.get()


@contextmanager
def run_id_context(run_id: Optional[str]) -> Iterator[None]:
    """Bind an import run ID for log records emitted inside the block."""
    token = _run_id.set(run_id)
    try:
        yield
    finally:
        _run_id.reset(token)


__all__ = [
    "get_request_id",
    "get_run_id",
    "reset_request_id",
    "run_id_context",
    "set_request_id",
]
