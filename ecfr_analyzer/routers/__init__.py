"""
eCFR Analyzer - API Routers
"""

from .agencies import router as agencies_router
from .checksums import router as checksums_router
from .export import router as export_router
from .health import router as health_router
from .imports import router as imports_router
from .metrics import router as metrics_router
from .titles import router as titles_router

__all__ = [
    "agencies_router",
    "checksums_router",
    "export_router",
    "health_router",
    "imports_router",
    "metrics_router",
    "titles_router",
]
