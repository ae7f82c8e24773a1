"""
eCFR Analyzer - Content Download Strategies

A content source is anything with a `name` and a
`fetch_title_content(number) -> str` method. ContentDownloader holds an
ordered tuple of sources and returns the first success; the default
order prefers the bulk archive and falls back to the live API.
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence, runtime_checkable

from ..core.errors import ContentUnavailableError, SourceError
from .bulk_download import BulkDownloadService
from .ecfr_client import EcfrClient

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentSource(Protocol):
    name: str

    def fetch_title_content(self, number: int) -> str: ...


class BulkContentSource:
    name = "Bulk Repository"

    def __init__(self, service: BulkDownloadService) -> None:
        self.service = service

    def fetch_title_content(self, number: int) -> str:
        return self.service.download_title_xml(number)


class ApiContentSource:
    name = "API"

    def __init__(self, client: EcfrClient) -> None:
        self.client = client

    def fetch_title_content(self, number: int) -> str:
        return self.client.fetch_title_content(number)


class ContentDownloader:
    def __init__(self, sources: Sequence[ContentSource]) -> None:
        self.sources = tuple(sources)

    @classmethod
    def default(cls, client: EcfrClient, bulk: BulkDownloadService) -> "ContentDownloader":
        return cls([BulkContentSource(bulk), ApiContentSource(client)])

    def download_title_content(self, number: int) -> str:
        """
        Try each source in order and return the first document.

        Raises:
            ContentUnavailableError: every source failed; `failures` lists
                (source name, error) in attempt order and the last error
                is chained as the cause.
        """
        failures: list[tuple[str, Exception]] = []
        for source in self.sources:
            try:
                content = source.fetch_title_content(number)
            except SourceError as exc:
                logger.warning(f"{source.name} failed for title {number}: {exc}")
                failures.append((source.name, exc))
                continue
            if failures:
                logger.info(f"Title {number} downloaded from {source.name} after {len(failures)} failed source(s)")
            return content

        error = ContentUnavailableError(number, failures)
        if failures:
            raise error from failures[-1][1]
        raise error
