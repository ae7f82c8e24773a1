"""
eCFR Analyzer - Agencies Router

- GET /api/v1/agencies         every agency with word count, share and checksum
- GET /api/v1/agencies/{slug}  one agency with sub-agencies and title breakdown
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..api import ApiResponse, api_response
from ..dependencies import get_metrics_service
from ..models import AgencyDetail, AgencyWithMetrics
from ..services.metrics_service import MetricsService

router = APIRouter(prefix="/v1/agencies", tags=["Agencies"])


@router.get("", response_model=ApiResponse[list[AgencyWithMetrics]])
def list_agencies(metrics: MetricsService = Depends(get_metrics_service)) -> ApiResponse[list[AgencyWithMetrics]]:
    return api_response(metrics.list_agencies())


@router.get("/{slug}", response_model=ApiResponse[AgencyDetail])
def get_agency(slug: str, metrics: MetricsService = Depends(get_metrics_service)) -> ApiResponse[AgencyDetail]:
    detail = metrics.get_agency_detail(slug)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agency not found")
    return api_response(detail, total=1)
