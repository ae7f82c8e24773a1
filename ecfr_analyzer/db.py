# ecfr_analyzer/db.py
"""
eCFR Analyzer - Database Layer

Provides a thread-safe PostgreSQL connection pool via psycopg3 + psycopg_pool.
The import pipeline runs on worker threads, so the pool is the synchronous
ConnectionPool; every repository call checks out its own connection and
commits independently.

Implements:
- Exponential backoff retry on initialization
- Structured logging (DSN host/port/dbname/user, no password)
- Pool health state tracking for readiness probes
"""

from __future__ import annotations

import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional
from urllib.parse import urlparse

import psycopg
from loguru import logger
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from . import __version__
from .config import Settings, get_settings

# ---------------------------------------------------------------------------
# Pool Health State
# ---------------------------------------------------------------------------


@dataclass
class PoolHealthState:
    """Tracks database pool initialization state for readiness probes."""

    initialized: bool = False
    healthy: bool = False
    last_error: str | None = None
    last_check_at: float | None = None
    init_attempts: int = 0
    init_duration_ms: float | None = None


_pool_health = PoolHealthState()
_db_pool: Optional[ConnectionPool] = None

# Retry configuration for pool initialization
MAX_RETRY_ATTEMPTS = 5
MAX_TOTAL_WAIT_SECONDS = 30.0
BASE_DELAY_SECONDS = 1.0
POOL_OPEN_TIMEOUT = 10.0


def get_pool_health() -> PoolHealthState:
    """Return the current pool health state for readiness probes."""
    return _pool_health


def _parse_dsn_for_logging(dsn: str) -> dict[str, str | None]:
    """Extract loggable DSN components (never the password)."""
    try:
        parsed = urlparse(dsn)
        return {
            "host": parsed.hostname,
            "port": str(parsed.port) if parsed.port else "5432",
            "dbname": parsed.path.lstrip("/") if parsed.path else None,
            "user": parsed.username,
        }
    except ValueError as e:
        return {"error": str(e)}


def init_db_pool(settings: Settings | None = None) -> Optional[ConnectionPool]:
    """
    Initialize the PostgreSQL connection pool with retry.

    Returns the pool, or None when every attempt failed. Failure does not
    raise so the API can still serve /health; repository calls will raise
    PersistenceError until the pool comes up.
    """
    global _db_pool

    if _db_pool is not None:
        return _db_pool

    settings = settings or get_settings()
    dsn = settings.database_url
    dsn_info = _parse_dsn_for_logging(dsn)
    logger.info(
        "Database connection parameters: host={} port={} dbname={} user={}",
        dsn_info.get("host"),
        dsn_info.get("port"),
        dsn_info.get("dbname"),
        dsn_info.get("user"),
    )

    app_name = "ecfr_analyzer_v" + __version__.replace(".", "_")
    start_time = time.monotonic()
    last_error: Exception | None = None

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        _pool_health.init_attempts = attempt
        elapsed = time.monotonic() - start_time
        if elapsed >= MAX_TOTAL_WAIT_SECONDS:
            logger.error(f"DB pool init: time budget exhausted ({elapsed:.1f}s)")
            break

        try:
            logger.info(f"DB pool init: attempt {attempt}/{MAX_RETRY_ATTEMPTS}")
            pool = ConnectionPool(
                dsn,
                min_size=settings.DB_POOL_MIN_SIZE,
                max_size=max(settings.DB_POOL_MAX_SIZE, settings.DB_POOL_MIN_SIZE),
                kwargs={"application_name": app_name, "autocommit": True, "row_factory": dict_row},
                open=False,
            )
            pool.open(wait=True, timeout=POOL_OPEN_TIMEOUT)

            with pool.connection() as conn:
                row = conn.execute("SELECT 1 AS ok").fetchone()
                if row is None or row["ok"] != 1:
                    raise RuntimeError("SELECT 1 did not return expected result")

            init_duration = (time.monotonic() - start_time) * 1000
            _db_pool = pool
            _pool_health.initialized = True
            _pool_health.healthy = True
            _pool_health.last_error = None
            _pool_health.init_duration_ms = init_duration
            _pool_health.last_check_at = time.monotonic()
            logger.info(f"Database pool initialized OK (attempt {attempt}, {init_duration:.0f}ms total)")
            return pool

        except Exception as e:
            last_error = e
            _pool_health.last_error = f"{type(e).__name__}: {str(e)[:200]}"
            _pool_health.healthy = False
            logger.warning(f"DB pool init attempt {attempt} failed: {type(e).__name__}: {e}")

            if attempt < MAX_RETRY_ATTEMPTS:
                delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
                jitter = random.uniform(0, delay * 0.3)
                actual_delay = min(delay + jitter, MAX_TOTAL_WAIT_SECONDS - elapsed)
                if actual_delay > 0:
                    logger.info(f"DB pool init: waiting {actual_delay:.1f}s before retry")
                    time.sleep(actual_delay)

    _pool_health.initialized = False
    _pool_health.healthy = False
    logger.error(f"Failed to initialize database pool after {_pool_health.init_attempts} attempts: {last_error}")
    return None


def check_db_ready() -> tuple[bool, str]:
    """Run SELECT 1 against the pool. Returns (is_ready, status_message)."""
    pool = _db_pool
    if pool is None:
        return False, _pool_health.last_error or "Pool not initialized"

    try:
        start = time.monotonic()
        with pool.connection(timeout=2.0) as conn:
            conn.execute("SELECT 1")
        latency_ms = (time.monotonic() - start) * 1000
        _pool_health.healthy = True
        _pool_health.last_error = None
        _pool_health.last_check_at = time.monotonic()
        return True, f"ok ({latency_ms:.0f}ms)"
    except Exception as e:
        _pool_health.healthy = False
        _pool_health.last_error = f"{type(e).__name__}: {str(e)[:100]}"
        return False, f"error: {type(e).__name__}"


def close_db_pool() -> None:
    """Close the connection pool and reset health state."""
    global _db_pool
    if _db_pool is not None:
        logger.info("Closing PostgreSQL connection pool")
        _db_pool.close()
        _db_pool = None
        _pool_health.initialized = False
        _pool_health.healthy = False


def get_pool() -> Optional[ConnectionPool]:
    """Return the pool, initializing it on first use."""
    if _db_pool is None:
        init_db_pool()
    return _db_pool


@contextmanager
def get_connection() -> Iterator[psycopg.Connection]:
    """
    Yield a pooled connection (autocommit, dict rows).

    Usage:
        with get_connection() as conn:
            conn.execute("SELECT ...")
    """
    pool = get_pool()
    if pool is None:
        raise RuntimeError(_pool_health.last_error or "Database pool not initialized")
    with pool.connection() as conn:
        yield conn
