"""
eCFR Analyzer - Metrics Router

- GET /api/v1/metrics/word-counts       total words + per-agency rollup
- GET /api/v1/metrics/checksums         latest checksum per title
- GET /api/v1/metrics/agency-checksums  agencies with content, by word count
- GET /api/v1/metrics/history           word count trend (overall or ?agency=slug)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..api import ApiResponse, api_response
from ..dependencies import get_historical_service, get_metrics_service
from ..models import AgencyChecksumInfo, ChecksumInfo, HistoricalPoint, WordCountMetrics
from ..services.historical_service import DEFAULT_TREND_MONTHS, HistoricalService
from ..services.metrics_service import MetricsService

router = APIRouter(prefix="/v1/metrics", tags=["Metrics"])


@router.get("/word-counts", response_model=ApiResponse[WordCountMetrics])
def word_counts(metrics: MetricsService = Depends(get_metrics_service)) -> ApiResponse[WordCountMetrics]:
    result = metrics.word_count_metrics()
    return api_response(result, total=len(result.agencies))


@router.get("/checksums", response_model=ApiResponse[list[ChecksumInfo]])
def title_checksums(metrics: MetricsService = Depends(get_metrics_service)) -> ApiResponse[list[ChecksumInfo]]:
    return api_response(metrics.title_checksums())


@router.get("/agency-checksums", response_model=ApiResponse[list[AgencyChecksumInfo]])
def agency_checksums(
    metrics: MetricsService = Depends(get_metrics_service),
) -> ApiResponse[list[AgencyChecksumInfo]]:
    return api_response(metrics.agency_checksums())


@router.get("/history", response_model=ApiResponse[list[HistoricalPoint]])
def history(
    agency: Optional[str] = Query(None, description="Agency slug; omit for the whole CFR"),
    months: Optional[str] = Query(None, description="Months back from today (default 12)"),
    historical: HistoricalService = Depends(get_historical_service),
) -> ApiResponse[list[HistoricalPoint]]:
    """Ascending trend with percent change against the previous point."""
    try:
        window = int(months) if months else DEFAULT_TREND_MONTHS
    except ValueError:
        window = DEFAULT_TREND_MONTHS
    return api_response(historical.get_trend(agency or None, window))
