"""
eCFR Analyzer - API Module

Shared API utilities: the response envelope used by every data endpoint.
"""

from .response import ApiResponse, ResponseMeta, api_response

__all__ = [
    "ApiResponse",
    "ResponseMeta",
    "api_response",
]
