"""
eCFR Analyzer - FastAPI Application

Creates the FastAPI app, wires up routers, initializes the database pool,
the schema and the refresh scheduler on startup.

Run with: uvicorn ecfr_analyzer.main:app --reload

- CORS middleware is added first (outermost) to handle preflight
- All data routers are versioned under /api/v1
- /health stays at the root for load balancers
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import configure_logging, get_settings
from .core.errors import register_exception_handlers
from .core.middleware import RequestLoggingMiddleware
from .db import close_db_pool, get_connection, init_db_pool
from .dependencies import get_import_service, reset_services
from .routers import (
    agencies_router,
    checksums_router,
    export_router,
    health_router,
    imports_router,
    metrics_router,
    titles_router,
)
from .scheduler import init_scheduler, shutdown_scheduler
from .schema import ensure_schema

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: database pool, schema, scheduler.
    Shutdown: cancel any running import, stop the scheduler, close clients and pool.
    """
    settings = get_settings()
    logger.info(f"Starting eCFR Analyzer v{__version__} ({settings.ENVIRONMENT})")

    pool = init_db_pool(settings)
    if pool is not None:
        with get_connection() as conn:
            ensure_schema(conn)
    else:
        logger.error("Database pool unavailable; API will answer 503 until it recovers")

    init_scheduler(settings)

    yield

    logger.info("Shutting down eCFR Analyzer...")
    get_import_service().request_cancel()
    shutdown_scheduler()
    reset_services()
    close_db_pool()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title="eCFR Analyzer",
        description="Ingests the electronic Code of Federal Regulations and serves word count, "
        "checksum and trend metrics per agency and title.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # First added = outermost
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(imports_router, prefix="/api")  # internal: /v1/import/*, /v1/status
    app.include_router(agencies_router, prefix="/api")  # internal: /v1/agencies
    app.include_router(titles_router, prefix="/api")  # internal: /v1/titles
    app.include_router(metrics_router, prefix="/api")  # internal: /v1/metrics
    app.include_router(export_router, prefix="/api")  # internal: /v1/export
    app.include_router(checksums_router, prefix="/api")  # internal: /v1/calculate-checksums

    logger.info(f"FastAPI app created: {app.title}")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "ecfr_analyzer.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
    )
