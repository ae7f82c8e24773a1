"""
eCFR Analyzer - Health Check Router

- GET /health        liveness: 200 while the process is up
- GET /health/ready  readiness: 200 only if the database answers
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..db import check_db_ready, get_pool_health

logger = logging.getLogger(__name__)

SERVICE_NAME = "ecfr-analyzer"

router = APIRouter(prefix="/health", tags=["Health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str


class ReadinessResponse(BaseModel):
    ready: bool
    status: str
    timestamp: str
    database: str
    version: str
    pool_init_attempts: int


@router.get("", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Liveness probe. Never touches the database."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        service=SERVICE_NAME,
    )


@router.get("/ready", response_model=ReadinessResponse)
def readiness_check() -> JSONResponse:
    ready, message = check_db_ready()
    if not ready:
        logger.warning(f"Readiness check failed: {message}")
    body = ReadinessResponse(
        ready=ready,
        status="ready" if ready else "not_ready",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=message,
        version=__version__,
        pool_init_attempts=get_pool_health().init_attempts,
    )
    return JSONResponse(status_code=200 if ready else 503, content=body.model_dump())
