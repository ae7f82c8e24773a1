"""
eCFR Analyzer - Export Router

GET /api/v1/export/{agencies|titles|metrics} returns the same envelope as
the matching read endpoint, served as a downloadable JSON attachment.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..api import api_response
from ..dependencies import get_metrics_service
from ..services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

EXPORT_TYPES = ("agencies", "titles", "metrics")

router = APIRouter(prefix="/v1/export", tags=["Export"])


@router.get("/{export_type}")
def export_data(export_type: str, metrics: MetricsService = Depends(get_metrics_service)) -> JSONResponse:
    if export_type == "agencies":
        envelope = api_response(metrics.list_agencies())
    elif export_type == "titles":
        envelope = api_response(metrics.list_titles())
    elif export_type == "metrics":
        word_counts = metrics.word_count_metrics()
        envelope = api_response(word_counts, total=len(word_counts.agencies))
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid export type")

    filename = f"ecfr-{export_type}-{datetime.now(timezone.utc):%Y-%m-%d}.json"
    logger.info(f"Exporting {export_type} ({envelope.meta.total} items)")
    return JSONResponse(
        content=jsonable_encoder(envelope, by_alias=True),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
