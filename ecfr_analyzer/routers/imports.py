"""
eCFR Analyzer - Import Router

Fire-and-forget triggers for the ingestion pipeline plus its status:

- POST /api/v1/import/agencies              agencies + CFR references
- POST /api/v1/import/titles                titles, then content and history
- POST /api/v1/import/historical-snapshots  snapshot capture + backfill
- POST /api/v1/import/all                   agencies then titles
- POST /api/v1/import/cancel                stop the active run
- GET  /api/v1/status                       current ImportStatus

Triggers return immediately; a trigger while a run is active gets 409.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..api import ApiResponse, api_response
from ..dependencies import get_import_service
from ..services.import_service import ImportService
from ..services.import_status import ImportStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Import"])


class ImportStartedResponse(BaseModel):
    message: str
    status: str = "started"
    run_id: str | None = None


def _start(service: ImportService, kind: str, message: str) -> ImportStartedResponse:
    run_id = service.start(kind)
    logger.info(f"{message} (run {run_id})")
    return ImportStartedResponse(message=message, run_id=run_id)


@router.post("/import/agencies", response_model=ImportStartedResponse)
def import_agencies(service: ImportService = Depends(get_import_service)) -> ImportStartedResponse:
    return _start(service, "agencies", "Agency import started")


@router.post("/import/titles", response_model=ImportStartedResponse)
def import_titles(service: ImportService = Depends(get_import_service)) -> ImportStartedResponse:
    """Titles import; content download and historical snapshots follow in the same run."""
    return _start(service, "titles", "Title import started")


@router.post("/import/historical-snapshots", response_model=ImportStartedResponse)
def import_historical_snapshots(service: ImportService = Depends(get_import_service)) -> ImportStartedResponse:
    return _start(service, "historical", "Historical snapshots import started")


@router.post("/import/all", response_model=ImportStartedResponse)
def import_all(service: ImportService = Depends(get_import_service)) -> ImportStartedResponse:
    return _start(service, "all", "Full import started")


@router.post("/import/cancel")
def cancel_import(service: ImportService = Depends(get_import_service)) -> dict[str, str]:
    if not service.request_cancel():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No import is running")
    return {"message": "Import cancellation requested", "status": "cancelling"}


@router.get("/status", response_model=ApiResponse[ImportStatus])
def get_status(service: ImportService = Depends(get_import_service)) -> ApiResponse[ImportStatus]:
    return api_response(service.status)
