"""
eCFR Analyzer - Titles Router
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..api import ApiResponse, api_response
from ..dependencies import get_metrics_service
from ..models import TitleWithMetrics
from ..services.metrics_service import MetricsService

router = APIRouter(prefix="/v1/titles", tags=["Titles"])


@router.get("", response_model=ApiResponse[list[TitleWithMetrics]])
def list_titles(metrics: MetricsService = Depends(get_metrics_service)) -> ApiResponse[list[TitleWithMetrics]]:
    """All titles by number, with the latest stored word count and checksum."""
    return api_response(metrics.list_titles())
