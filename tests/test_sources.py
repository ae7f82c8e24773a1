"""
Tests for the upstream source layer:
- EcfrClient against httpx.MockTransport (URLs, parsing, error mapping)
- BulkDownloadService URL layout and availability probe
- ContentDownloader strategy order and failure aggregation
"""

from __future__ import annotations

import httpx
import pytest

from ecfr_analyzer.core.errors import (
    ContentUnavailableError,
    SourceParseError,
    SourceTransportError,
)
from ecfr_analyzer.services.agency_tree import AgencyTree
from ecfr_analyzer.services.bulk_download import BulkDownloadService
from ecfr_analyzer.services.content_strategy import (
    ApiContentSource,
    BulkContentSource,
    ContentDownloader,
    ContentSource,
)
from ecfr_analyzer.services.ecfr_client import EcfrClient, parse_source_date
from tests.fakes import StaticSource

XML = '<?xml version="1.0"?><ECFR><P>text</P></ECFR>'


def client_for(handler, **kwargs) -> EcfrClient:
    return EcfrClient(base_url="https://ecfr.test", timeout=5, transport=httpx.MockTransport(handler), **kwargs)


class TestEcfrClient:
    def test_fetch_agencies_builds_tree(self, settings, agencies_payload):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"agencies": agencies_payload})

        with client_for(handler, settings=settings) as client:
            tree = client.fetch_agencies()

        assert seen == ["https://ecfr.test/api/admin/v1/agencies.json"]
        assert [n.slug for n in tree.walk()] == ["dept-examples", "bureau-samples", "office-testing"]
        bureau = next(n for n in tree.walk() if n.slug == "bureau-samples")
        assert tree.parent_of(bureau).slug == "dept-examples"

    def test_fetch_titles(self, settings, titles_payload):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/versioner/v1/titles.json"
            return httpx.Response(200, json={"titles": titles_payload, "meta": {"date": "2025-03-14"}})

        with client_for(handler, settings=settings) as client:
            titles = client.fetch_titles().titles

        assert [t.number for t in titles] == [7, 10, 35]
        assert titles[2].reserved is True

    def test_fetch_title_content_uses_date(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/versioner/v1/full/2025-01-01/title-7.xml"
            return httpx.Response(200, text=XML)

        with client_for(handler, settings=settings) as client:
            assert client.fetch_title_content(7, "2025-01-01") == XML

    def test_fetch_title_structure(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/versioner/v1/structure/2024-06-01/title-10.json"
            return httpx.Response(200, json={"identifier": "10", "type": "title", "size": 123456, "children": []})

        with client_for(handler, settings=settings) as client:
            assert client.fetch_title_structure(10, "2024-06-01").size == 123456

    def test_non_2xx_is_transport_error(self, settings):
        with client_for(lambda request: httpx.Response(503), settings=settings) as client:
            with pytest.raises(SourceTransportError) as exc_info:
                client.fetch_titles()
        assert exc_info.value.status_code == 503
        assert exc_info.value.url.endswith("/titles.json")

    def test_connection_failure_is_transport_error(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with client_for(handler, settings=settings) as client:
            with pytest.raises(SourceTransportError):
                client.fetch_agencies()

    def test_invalid_json_is_parse_error(self, settings):
        with client_for(lambda request: httpx.Response(200, text="{not json"), settings=settings) as client:
            with pytest.raises(SourceParseError):
                client.fetch_titles()

    def test_agency_without_slug_is_parse_error(self, settings):
        payload = {"agencies": [{"name": "Dept", "slug": "dept", "children": [{"name": "No slug"}]}]}
        with client_for(lambda request: httpx.Response(200, json=payload), settings=settings) as client:
            with pytest.raises(SourceParseError, match=r"agencies\[0\]\.children\[0\]"):
                client.fetch_agencies()

    def test_html_body_is_not_content(self, settings):
        page = "<!DOCTYPE html><html><body>Maintenance</body></html>"
        with client_for(lambda request: httpx.Response(200, text=page), settings=settings) as client:
            with pytest.raises(SourceParseError):
                client.fetch_title_content(7)


class TestAgencyTree:
    def test_single_root(self):
        tree = AgencyTree.from_payload([{"name": "Dept", "slug": "dept", "children": []}])

        assert len(tree) == 1
        assert tree.roots == [0]
        assert tree.parent_of(tree.nodes[0]) is None

    def test_roots_keep_payload_order(self, agencies_payload):
        tree = AgencyTree.from_payload(agencies_payload)

        assert [tree.nodes[i].slug for i in tree.roots] == ["dept-examples", "office-testing"]
        assert [n.slug for n in tree.descendants()] == ["bureau-samples"]

    def test_non_object_root_is_parse_error(self):
        with pytest.raises(SourceParseError, match=r"agencies\[1\]"):
            AgencyTree.from_payload([{"name": "Dept", "slug": "dept"}, "oops"])


class TestParseSourceDate:
    def test_valid(self):
        assert str(parse_source_date("2024-12-20")) == "2024-12-20"

    @pytest.mark.parametrize("value", [None, "", "2024-13-01", "12/20/2024"])
    def test_invalid_is_none(self, value):
        assert parse_source_date(value) is None


class TestBulkDownload:
    def test_title_url_layout(self, settings):
        bulk = BulkDownloadService(settings, base_url="https://bulk.test/ECFR/")
        assert bulk.title_url(42) == "https://bulk.test/ECFR/title-42/ECFR-title42.xml"
        bulk.close()

    def test_download_and_probe(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("title-1/ECFR-title1.xml"):
                return httpx.Response(200, text=XML)
            return httpx.Response(404)

        with BulkDownloadService(settings, transport=httpx.MockTransport(handler)) as bulk:
            assert bulk.download_title_xml(1) == XML
            assert bulk.is_available() is True
            with pytest.raises(SourceTransportError):
                bulk.download_title_xml(2)

    def test_probe_failure(self, settings):
        with BulkDownloadService(settings, transport=httpx.MockTransport(lambda r: httpx.Response(500))) as bulk:
            assert bulk.is_available() is False


class TestContentDownloader:
    def test_default_order_is_bulk_then_api(self, settings):
        with EcfrClient(settings) as client, BulkDownloadService(settings) as bulk:
            downloader = ContentDownloader.default(client, bulk)
        assert [s.name for s in downloader.sources] == ["Bulk Repository", "API"]
        assert isinstance(downloader.sources[0], BulkContentSource)
        assert isinstance(downloader.sources[1], ApiContentSource)
        assert all(isinstance(s, ContentSource) for s in downloader.sources)

    def test_first_success_wins(self):
        first = StaticSource("Bulk Repository", {7: "<a>bulk</a>"})
        second = StaticSource("API", {7: "<a>api</a>"})

        assert ContentDownloader([first, second]).download_title_content(7) == "<a>bulk</a>"
        assert second.calls == []

    def test_falls_back_on_failure(self):
        first = StaticSource("Bulk Repository", error=SourceTransportError("404", status_code=404))
        second = StaticSource("API", {7: "<a>api</a>"})

        assert ContentDownloader([first, second]).download_title_content(7) == "<a>api</a>"
        assert first.calls == [7]

    def test_all_failures_are_reported(self):
        last = SourceParseError("not xml")
        first = StaticSource("Bulk Repository", error=SourceTransportError("timeout"))
        second = StaticSource("API", error=last)

        with pytest.raises(ContentUnavailableError) as exc_info:
            ContentDownloader([first, second]).download_title_content(3)

        assert [name for name, _ in exc_info.value.failures] == ["Bulk Repository", "API"]
        assert exc_info.value.__cause__ is last
        assert exc_info.value.title_number == 3

    def test_empty_chain_fails_immediately(self):
        with pytest.raises(ContentUnavailableError):
            ContentDownloader([]).download_title_content(1)

    def test_payload_round_trip_through_mock_transport(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "bulk.test":
                return httpx.Response(404)
            return httpx.Response(200, text=XML)

        transport = httpx.MockTransport(handler)
        with EcfrClient(settings, base_url="https://api.test", transport=transport) as client, BulkDownloadService(
            settings, base_url="https://bulk.test", transport=transport
        ) as bulk:
            assert ContentDownloader.default(client, bulk).download_title_content(7) == XML
