"""
eCFR Analyzer - Service Wiring

Process-wide singletons for the repository, the upstream clients and the
services built on them. Routers receive them through FastAPI Depends so
tests can swap any of them with app.dependency_overrides.

Creation is double-checked under one re-entrant lock; getters nest.
"""

from __future__ import annotations

import logging
import threading

from .repository import PostgresRepository, Repository
from .services.bulk_download import BulkDownloadService
from .services.checksum_service import ChecksumService
from .services.content_strategy import ContentDownloader
from .services.ecfr_client import EcfrClient
from .services.historical_service import HistoricalService
from .services.import_service import ImportService
from .services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

_lock = threading.RLock()

_repository: Repository | None = None
_ecfr_client: EcfrClient | None = None
_bulk_service: BulkDownloadService | None = None
_checksum_service: ChecksumService | None = None
_historical_service: HistoricalService | None = None
_import_service: ImportService | None = None
_metrics_service: MetricsService | None = None


def get_repository() -> Repository:
    global _repository
    if _repository is None:
        with _lock:
            if _repository is None:
                _repository = PostgresRepository()
    return _repository


def get_ecfr_client() -> EcfrClient:
    global _ecfr_client
    if _ecfr_client is None:
        with _lock:
            if _ecfr_client is None:
                _ecfr_client = EcfrClient()
    return _ecfr_client


def get_bulk_service() -> BulkDownloadService:
    global _bulk_service
    if _bulk_service is None:
        with _lock:
            if _bulk_service is None:
                _bulk_service = BulkDownloadService()
    return _bulk_service


def get_checksum_service() -> ChecksumService:
    global _checksum_service
    if _checksum_service is None:
        with _lock:
            if _checksum_service is None:
                _checksum_service = ChecksumService(get_repository())
    return _checksum_service


def get_historical_service() -> HistoricalService:
    global _historical_service
    if _historical_service is None:
        with _lock:
            if _historical_service is None:
                _historical_service = HistoricalService(get_repository(), get_ecfr_client())
    return _historical_service


def get_import_service() -> ImportService:
    """Singleton import orchestrator; it owns the process-wide import status."""
    global _import_service
    if _import_service is None:
        with _lock:
            if _import_service is None:
                client = get_ecfr_client()
                _import_service = ImportService(
                    get_repository(),
                    client,
                    ContentDownloader.default(client, get_bulk_service()),
                    get_historical_service(),
                )
    return _import_service


def get_metrics_service() -> MetricsService:
    global _metrics_service
    if _metrics_service is None:
        with _lock:
            if _metrics_service is None:
                _metrics_service = MetricsService(get_repository(), get_checksum_service())
    return _metrics_service


def reset_services() -> None:
    """Close upstream clients and drop every singleton (shutdown and tests)."""
    global _repository, _ecfr_client, _bulk_service, _checksum_service
    global _historical_service, _import_service, _metrics_service
    with _lock:
        for client in (_ecfr_client, _bulk_service):
            if client is not None:
                client.close()
        _repository = None
        _ecfr_client = None
        _bulk_service = None
        _checksum_service = None
        _historical_service = None
        _import_service = None
        _metrics_service = None
    logger.debug("Service singletons reset")
