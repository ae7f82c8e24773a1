"""
eCFR Analyzer - Bulk Download Service

Alternate transport for title XML: the govinfo bulk archive publishes
one file per title at {base}/title-{n}/ECFR-title{n}.xml. Same content
contract and failure semantics as EcfrClient.fetch_title_content.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings, get_settings
from ..core.errors import SourceError
from .ecfr_client import USER_AGENT, fetch_text, require_xml

logger = logging.getLogger(__name__)


class BulkDownloadService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = (base_url or settings.ECFR_BULK_BASE_URL).rstrip("/")
        self._client = httpx.Client(
            timeout=timeout or settings.ECFR_BULK_TIMEOUT,
            headers={"User-Agent": USER_AGENT, "Accept": "application/xml"},
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "BulkDownloadService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def title_url(self, number: int) -> str:
        return f"{self.base_url}/title-{number}/ECFR-title{number}.xml"

    def download_title_xml(self, number: int) -> str:
        url = self.title_url(number)
        body = require_xml(fetch_text(self._client, url), url)
        logger.debug(f"Bulk archive returned {len(body)} bytes for title {number}")
        return body

    def is_available(self) -> bool:
        """Probe the archive with title 1."""
        try:
            self.download_title_xml(1)
        except SourceError as exc:
            logger.warning(f"Bulk archive unavailable: {exc}")
            return False
        return True
