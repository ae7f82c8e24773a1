"""
eCFR Analyzer - API Response Envelope

Every data endpoint returns the same envelope so the dashboard can read
`data` and show `meta.total` / `meta.lastUpdated` uniformly:

    {"data": ..., "meta": {"total": 12, "lastUpdated": "2025-01-01T00:00:00Z"}}

Usage:
    from ecfr_analyzer.api import api_response

    return api_response(agencies)              # total = len(agencies)
    return api_response(detail, total=1)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ResponseMeta(BaseModel):
    """Metadata included in every enveloped response."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., description="Number of items in data (1 for single objects)")
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="lastUpdated",
        description="When the response was produced",
    )


class ApiResponse(BaseModel, Generic[T]):
    """Standard `{data, meta}` envelope."""

    data: T
    meta: ResponseMeta


def api_response(data: Any, total: Optional[int] = None) -> ApiResponse[Any]:
    """
    Wrap a payload in the envelope.

    Args:
        data: Response payload (model, list of models, or plain dict)
        total: Item count; defaults to len(data) for lists and 1 otherwise
    """
    if total is None:
        total = len(data) if isinstance(data, list) else 1
    return ApiResponse(data=data, meta=ResponseMeta(total=total))
