"""
eCFR Analyzer - Source Client

Thin synchronous client for the public eCFR API (https://www.ecfr.gov).
One HTTP request per call, bounded by a timeout; no retries. A non-2xx
status or a transport failure raises SourceTransportError, a body that
does not decode into the expected shape raises SourceParseError.

Endpoints:
    /api/admin/v1/agencies.json                          agency forest
    /api/versioner/v1/titles.json                        title registry
    /api/versioner/v1/full/{date}/title-{n}.xml          title document
    /api/versioner/v1/structure/{date}/title-{n}.json    title structure
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ..config import Settings, get_settings
from ..core.errors import SourceParseError, SourceTransportError
from ..models import TitleResponse, TitleStructure
from .agency_tree import AgencyTree

logger = logging.getLogger(__name__)

USER_AGENT = "ecfr-analyzer/0.1 (+https://www.ecfr.gov/developers/documentation/api/v1)"


def today_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def fetch_text(client: httpx.Client, url: str) -> str:
    """GET a URL and return the body, mapping httpx failures to SourceTransportError."""
    try:
        response = client.get(url)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise SourceTransportError(
            f"GET {url} returned {exc.response.status_code}",
            url=url,
            status_code=exc.response.status_code,
        ) from exc
    except httpx.HTTPError as exc:
        raise SourceTransportError(f"GET {url} failed: {type(exc).__name__}: {exc}", url=url) from exc
    return response.text


def require_xml(body: str, url: str) -> str:
    """Reject bodies that are obviously not an XML document (HTML error pages, empty)."""
    head = body.lstrip("\ufeff \t\r\n")[:256].lower()
    if not head.startswith("<") or head.startswith("<!doctype html") or head.startswith("<html"):
        raise SourceParseError(f"GET {url} did not return an XML document", url=url)
    return body


class EcfrClient:
    """Client for the eCFR admin and versioner APIs."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = (base_url or settings.ECFR_BASE_URL).rstrip("/")
        self._client = httpx.Client(
            timeout=timeout or settings.ECFR_API_TIMEOUT,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json, application/xml"},
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EcfrClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        body = fetch_text(self._client, url)
        try:
            return json.loads(body)
        except ValueError as exc:
            raise SourceParseError(f"GET {url} returned invalid JSON: {exc}", url=url) from exc

    def fetch_agencies(self) -> AgencyTree:
        """Fetch the agency hierarchy as an arena-backed forest."""
        path = "/api/admin/v1/agencies.json"
        payload = self._get_json(path)
        if not isinstance(payload, dict) or not isinstance(payload.get("agencies"), list):
            raise SourceParseError(f"{path}: expected an object with an 'agencies' list", url=path)
        tree = AgencyTree.from_payload(payload["agencies"])
        logger.info(f"Fetched {len(tree.roots)} top-level agencies ({len(tree)} total)")
        return tree

    def fetch_titles(self) -> TitleResponse:
        path = "/api/versioner/v1/titles.json"
        payload = self._get_json(path)
        try:
            titles = TitleResponse.model_validate(payload)
        except ValidationError as exc:
            raise SourceParseError(f"{path}: {exc.error_count()} validation errors", url=path) from exc
        logger.info(f"Fetched {len(titles.titles)} titles")
        return titles

    def fetch_title_content(self, number: int, date: str = "") -> str:
        """Fetch a title's full XML for a date (today, UTC, when empty)."""
        url = f"{self.base_url}/api/versioner/v1/full/{date or today_utc()}/title-{number}.xml"
        return require_xml(fetch_text(self._client, url), url)

    def fetch_title_structure(self, number: int, date: str = "") -> TitleStructure:
        path = f"/api/versioner/v1/structure/{date or today_utc()}/title-{number}.json"
        payload = self._get_json(path)
        try:
            return TitleStructure.model_validate(payload)
        except ValidationError as exc:
            raise SourceParseError(f"{path}: {exc.error_count()} validation errors", url=path) from exc


def parse_source_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD field; anything else (including empty) yields None."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        logger.debug(f"Ignoring unparseable source date {value!r}")
        return None
