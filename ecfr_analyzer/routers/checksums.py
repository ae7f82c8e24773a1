"""
eCFR Analyzer - Checksum Recalculation Router

POST /api/v1/calculate-checksums recomputes every agency checksum
synchronously and reports created/updated/skipped/error counts. The
response is 206 when any agency failed.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..dependencies import get_checksum_service
from ..services.checksum_service import ChecksumService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Checksums"])


class ChecksumStats(BaseModel):
    total: int
    created_updated: int
    created: int
    updated: int
    skipped: int
    errors: int


class CalculateChecksumsResponse(BaseModel):
    success: bool
    message: str
    stats: ChecksumStats


@router.post("/calculate-checksums", response_model=CalculateChecksumsResponse)
def calculate_checksums(checksums: ChecksumService = Depends(get_checksum_service)) -> JSONResponse:
    stats = checksums.recalculate_all()

    message = f"Processed {stats.total} agencies"
    if stats.errors:
        message += f" with {stats.errors} errors"

    body = CalculateChecksumsResponse(
        success=stats.errors == 0,
        message=message,
        stats=ChecksumStats(**stats.as_dict()),
    )
    status_code = status.HTTP_206_PARTIAL_CONTENT if stats.errors else status.HTTP_200_OK
    return JSONResponse(status_code=status_code, content=body.model_dump())
