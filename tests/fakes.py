"""
tests/fakes.py

In-memory stand-ins for the storage contract and the upstream sources.

InMemoryRepository enforces the same uniqueness rules as the PostgreSQL
schema (slug, title number, (agency, title, chapter), (title, date) and
the NULLS NOT DISTINCT snapshot triple) so idempotency properties can be
tested without a database. All methods are guarded by one lock because
content workers write concurrently.
"""

from __future__ import annotations

import threading
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from ecfr_analyzer.core.errors import PersistenceError, SourceParseError, SourceTransportError
from ecfr_analyzer.models import (
    Agency,
    AgencyChecksum,
    AgencyReference,
    AgencyTitleChecksum,
    HistoricalSnapshot,
    Title,
    TitleContent,
    TitleResponse,
    TitleStructure,
)
from ecfr_analyzer.services.agency_tree import AgencyTree


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.agencies: dict[str, Agency] = {}
        self.titles: dict[int, Title] = {}
        self.references: set[tuple[UUID, UUID, str]] = set()
        self.contents: dict[tuple[UUID, date], TitleContent] = {}
        self.snapshots: dict[tuple[date, Optional[UUID], Optional[UUID]], HistoricalSnapshot] = {}
        self.agency_checksums: dict[UUID, AgencyChecksum] = {}
        self.fail_checksum_for: set[UUID] = set()
        self.fail_snapshot_for: set[tuple[Optional[UUID], Optional[UUID]]] = set()
        self.content_writes = 0

    # -- Agencies -------------------------------------------------------------

    def upsert_agency(self, name: str, short_name: Optional[str], slug: str, parent_id: Optional[UUID]) -> Agency:
        with self._lock:
            existing = self.agencies.get(slug)
            agency = Agency(
                id=existing.id if existing else uuid.uuid4(),
                name=name,
                short_name=short_name,
                slug=slug,
                parent_id=parent_id,
            )
            self.agencies[slug] = agency
            return agency

    def get_agency_by_slug(self, slug: str) -> Optional[Agency]:
        with self._lock:
            return self.agencies.get(slug)

    def list_agencies(self) -> list[Agency]:
        with self._lock:
            return sorted(self.agencies.values(), key=lambda a: a.name)

    # -- Titles ---------------------------------------------------------------

    def upsert_title(
        self,
        number: int,
        name: str,
        reserved: bool,
        latest_amended_on: Optional[date],
        latest_issue_date: Optional[date],
        up_to_date_as_of: Optional[date],
    ) -> Title:
        with self._lock:
            existing = self.titles.get(number)
            title = Title(
                id=existing.id if existing else uuid.uuid4(),
                number=number,
                name=name,
                reserved=reserved,
                latest_amended_on=latest_amended_on,
                latest_issue_date=latest_issue_date,
                up_to_date_as_of=up_to_date_as_of,
            )
            self.titles[number] = title
            return title

    def list_titles(self, include_reserved: bool = True) -> list[Title]:
        with self._lock:
            titles = sorted(self.titles.values(), key=lambda t: t.number)
        return [t for t in titles if include_reserved or not t.reserved]

    def title_by_number(self, number: int) -> Title:
        return self.titles[number]

    # -- References -----------------------------------------------------------

    def add_reference(self, agency_id: UUID, title_id: UUID, chapter: str) -> bool:
        key = (agency_id, title_id, chapter or "")
        with self._lock:
            if key in self.references:
                return False
            self.references.add(key)
            return True

    def list_references(self) -> list[AgencyReference]:
        with self._lock:
            return [AgencyReference(agency_id=a, title_id=t, chapter=c) for a, t, c in self.references]

    # -- Content --------------------------------------------------------------

    def upsert_title_content(
        self, title_id: UUID, content_date: date, xml_content: str, word_count: int, checksum: str
    ) -> TitleContent:
        with self._lock:
            self.content_writes += 1
            existing = self.contents.get((title_id, content_date))
            content = TitleContent(
                id=existing.id if existing else uuid.uuid4(),
                title_id=title_id,
                content_date=content_date,
                word_count=word_count,
                checksum=checksum,
                created_at=existing.created_at if existing else _now(),
                xml_content=xml_content,
            )
            self.contents[(title_id, content_date)] = content
            return content

    def add_content(self, title_id: UUID, content_date: date, word_count: int, checksum: Optional[str]) -> None:
        """Seed a content row directly (test helper)."""
        with self._lock:
            self.contents[(title_id, content_date)] = TitleContent(
                id=uuid.uuid4(),
                title_id=title_id,
                content_date=content_date,
                word_count=word_count,
                checksum=checksum,
                created_at=_now(),
            )

    def latest_content_date(self) -> Optional[date]:
        with self._lock:
            return max((d for _, d in self.contents), default=None)

    def contents_for_date(self, content_date: date) -> list[TitleContent]:
        with self._lock:
            return [c for (_, d), c in self.contents.items() if d == content_date]

    def latest_contents(self) -> list[TitleContent]:
        latest: dict[UUID, TitleContent] = {}
        with self._lock:
            for content in self.contents.values():
                current = latest.get(content.title_id)
                if current is None or content.content_date > current.content_date:
                    latest[content.title_id] = content
        return list(latest.values())

    def title_checksums_for_agencies(self, agency_ids: Sequence[UUID]) -> list[AgencyTitleChecksum]:
        wanted = set(agency_ids)
        for agency_id in wanted & self.fail_checksum_for:
            raise PersistenceError(f"simulated failure for {agency_id}")
        latest = {c.title_id: c for c in self.latest_contents()}
        numbers = {t.id: t.number for t in self.titles.values()}
        rows = {
            AgencyTitleChecksum(agency_id, numbers[title_id], latest[title_id].checksum)
            for agency_id, title_id, _ in self.references
            if agency_id in wanted and title_id in latest
        }
        return sorted(rows, key=lambda r: (str(r.agency_id), r.title_number))

    # -- Snapshots ------------------------------------------------------------

    def insert_snapshot_if_absent(
        self,
        snapshot_date: date,
        agency_id: Optional[UUID],
        title_id: Optional[UUID],
        word_count: int,
        checksum: Optional[str] = None,
    ) -> bool:
        key = (snapshot_date, agency_id, title_id)
        if (agency_id, title_id) in self.fail_snapshot_for:
            raise PersistenceError(f"simulated snapshot failure for {key}")
        with self._lock:
            if key in self.snapshots:
                return False
            self.snapshots[key] = HistoricalSnapshot(
                id=uuid.uuid4(),
                snapshot_date=snapshot_date,
                agency_id=agency_id,
                title_id=title_id,
                word_count=word_count,
                checksum=checksum,
            )
            return True

    def snapshot_exists_for_date(self, snapshot_date: date) -> bool:
        with self._lock:
            return any(d == snapshot_date for d, _, _ in self.snapshots)

    def title_snapshots_for_date(self, snapshot_date: date) -> list[HistoricalSnapshot]:
        with self._lock:
            return [
                s for (d, a, t), s in self.snapshots.items() if d == snapshot_date and a is None and t is not None
            ]

    def list_snapshots(self, start: date, end: date, agency_id: Optional[UUID] = None) -> list[HistoricalSnapshot]:
        with self._lock:
            rows = [
                s
                for (d, a, t), s in self.snapshots.items()
                if start <= d <= end and t is None and a == agency_id
            ]
        return sorted(rows, key=lambda s: s.snapshot_date)

    # -- Agency checksums -----------------------------------------------------

    def get_agency_checksum(self, agency_id: UUID) -> Optional[AgencyChecksum]:
        with self._lock:
            return self.agency_checksums.get(agency_id)

    def list_agency_checksums(self, agency_ids: Iterable[UUID]) -> dict[UUID, AgencyChecksum]:
        with self._lock:
            return {i: self.agency_checksums[i] for i in agency_ids if i in self.agency_checksums}

    def save_agency_checksum(self, agency_id: UUID, checksum: str, content_hash: str) -> AgencyChecksum:
        with self._lock:
            row = AgencyChecksum(agency_id=agency_id, checksum=checksum, content_hash=content_hash, updated_at=_now())
            self.agency_checksums[agency_id] = row
            return row


class FakeEcfrClient:
    """Serves canned agencies/titles/content/structure; records every call."""

    def __init__(
        self,
        agencies: Optional[list[dict[str, Any]]] = None,
        titles: Optional[list[dict[str, Any]]] = None,
        content: Optional[dict[int, str]] = None,
        structure_sizes: Optional[dict[tuple[int, str], int]] = None,
    ) -> None:
        self.agencies = agencies or []
        self.titles = titles or []
        self.content = content or {}
        self.structure_sizes = structure_sizes or {}
        self.fail_agencies = False
        self.structure_calls: list[tuple[int, str]] = []
        self.content_calls: list[int] = []
        self._lock = threading.Lock()

    def fetch_agencies(self) -> AgencyTree:
        if self.fail_agencies:
            raise SourceTransportError("GET agencies.json returned 503", status_code=503)
        return AgencyTree.from_payload(self.agencies)

    def fetch_titles(self) -> TitleResponse:
        return TitleResponse.model_validate({"titles": self.titles})

    def fetch_title_content(self, number: int, date: str = "") -> str:
        with self._lock:
            self.content_calls.append(number)
        if number not in self.content:
            raise SourceTransportError(f"title {number} not found", status_code=404)
        return self.content[number]

    def fetch_title_structure(self, number: int, date: str = "") -> TitleStructure:
        self.structure_calls.append((number, date))
        size = self.structure_sizes.get((number, date))
        if size is None:
            raise SourceParseError(f"no structure for title {number} on {date}")
        return TitleStructure(identifier=str(number), size=size)


class StaticSource:
    """ContentSource returning fixed documents, or failing for listed titles."""

    def __init__(self, name: str, documents: Optional[dict[int, str]] = None, error: Optional[Exception] = None):
        self.name = name
        self.documents = documents or {}
        self.error = error
        self.calls: list[int] = []
        self._lock = threading.Lock()

    def fetch_title_content(self, number: int) -> str:
        with self._lock:
            self.calls.append(number)
        if self.error is not None:
            raise self.error
        if number not in self.documents:
            raise SourceTransportError(f"{self.name}: title {number} missing", status_code=404)
        return self.documents[number]
