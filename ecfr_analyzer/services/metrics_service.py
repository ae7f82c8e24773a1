"""
eCFR Analyzer - Metrics Service

Read-side aggregates for the dashboard. Word counts use the latest
content row of each title, and an agency's count is the sum over the
distinct titles it references (a title listed under several chapters
counts once). Agency checksums come from the agency_checksums cache,
computed on demand for agencies the recalculation run has not reached.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from ..models import (
    Agency,
    AgencyChecksumInfo,
    AgencyDetail,
    AgencyWithMetrics,
    ChecksumInfo,
    TitleBreakdown,
    TitleContent,
    TitleWithMetrics,
    WordCountMetrics,
)
from ..repository import Repository
from .checksum_service import ChecksumService

logger = logging.getLogger(__name__)


class _Snapshot:
    """One consistent read of agencies, titles, references and latest content."""

    def __init__(self, repository: Repository) -> None:
        self.agencies = repository.list_agencies()
        self.titles = {t.id: t for t in repository.list_titles()}
        self.latest: dict[UUID, TitleContent] = {c.title_id: c for c in repository.latest_contents()}

        self.titles_by_agency: dict[UUID, set[UUID]] = defaultdict(set)
        for ref in repository.list_references():
            self.titles_by_agency[ref.agency_id].add(ref.title_id)

        self.total_words = sum(c.word_count or 0 for c in self.latest.values())

    def words(self, title_id: UUID) -> int:
        content = self.latest.get(title_id)
        return (content.word_count or 0) if content else 0

    def agency_words(self, agency_id: UUID) -> int:
        return sum(self.words(title_id) for title_id in self.titles_by_agency.get(agency_id, ()))

    def title_count(self, agency_id: UUID) -> int:
        return len(self.titles_by_agency.get(agency_id, ()))

    def percent(self, words: int) -> float:
        return words / self.total_words * 100 if self.total_words > 0 else 0.0


class MetricsService:
    def __init__(self, repository: Repository, checksums: ChecksumService) -> None:
        self.repository = repository
        self.checksums = checksums

    def _with_metrics(
        self, snapshot: _Snapshot, agencies: list[Agency], checksums: dict[UUID, str], with_percent: bool = True
    ) -> list[AgencyWithMetrics]:
        result = []
        for agency in agencies:
            words = snapshot.agency_words(agency.id)
            result.append(
                AgencyWithMetrics(
                    id=agency.id,
                    name=agency.name,
                    slug=agency.slug,
                    word_count=words,
                    percent_of_total=snapshot.percent(words) if with_percent else 0.0,
                    title_count=snapshot.title_count(agency.id),
                    checksum=checksums.get(agency.id),
                    parent_id=agency.parent_id,
                )
            )
        return result

    def list_agencies(self) -> list[AgencyWithMetrics]:
        snapshot = _Snapshot(self.repository)
        checksums = self.checksums.get_cached([a.id for a in snapshot.agencies])
        agencies = self._with_metrics(snapshot, snapshot.agencies, checksums)
        agencies.sort(key=lambda a: (-a.word_count, a.name))
        return agencies

    def get_agency_detail(self, slug: str) -> Optional[AgencyDetail]:
        agency = self.repository.get_agency_by_slug(slug)
        if agency is None:
            return None

        snapshot = _Snapshot(self.repository)
        children = [a for a in snapshot.agencies if a.parent_id == agency.id]
        sub_checksums = self.checksums.get_cached([a.id for a in children])
        sub_agencies = self._with_metrics(snapshot, children, sub_checksums, with_percent=False)

        breakdown = []
        for title_id in snapshot.titles_by_agency.get(agency.id, ()):
            title = snapshot.titles.get(title_id)
            content = snapshot.latest.get(title_id)
            if title is None or content is None or content.word_count is None:
                continue
            breakdown.append(
                TitleBreakdown(title_number=title.number, title_name=title.name, word_count=content.word_count)
            )
        breakdown.sort(key=lambda b: b.title_number)

        words = snapshot.agency_words(agency.id)
        return AgencyDetail(
            id=agency.id,
            name=agency.name,
            slug=agency.slug,
            word_count=words,
            percent_of_total=snapshot.percent(words),
            title_count=snapshot.title_count(agency.id),
            checksum=self.checksums.calculate(agency.id),
            parent_id=agency.parent_id,
            sub_agencies=sub_agencies,
            title_breakdown=breakdown,
        )

    def list_titles(self) -> list[TitleWithMetrics]:
        latest = {c.title_id: c for c in self.repository.latest_contents()}
        titles = sorted(self.repository.list_titles(), key=lambda t: t.number)
        result = []
        for title in titles:
            content = latest.get(title.id)
            result.append(
                TitleWithMetrics(
                    id=title.id,
                    number=title.number,
                    name=title.name,
                    word_count=(content.word_count or 0) if content else 0,
                    checksum=content.checksum if content else None,
                    latest_amended_on=title.latest_amended_on,
                    up_to_date_as_of=title.up_to_date_as_of,
                )
            )
        return result

    def word_count_metrics(self) -> WordCountMetrics:
        snapshot = _Snapshot(self.repository)
        checksums = self.checksums.get_cached([a.id for a in snapshot.agencies])
        agencies = self._with_metrics(snapshot, snapshot.agencies, checksums)
        agencies.sort(key=lambda a: (-a.word_count, a.name))
        return WordCountMetrics(total_cfr_words=snapshot.total_words, agencies=agencies)

    def title_checksums(self) -> list[ChecksumInfo]:
        titles = {t.id: t for t in self.repository.list_titles()}
        result = []
        for content in self.repository.latest_contents():
            title = titles.get(content.title_id)
            if title is None or not content.checksum:
                continue
            result.append(
                ChecksumInfo(
                    title_number=title.number,
                    title_name=title.name,
                    checksum=content.checksum,
                    last_changed=content.created_at,
                )
            )
        result.sort(key=lambda c: c.title_number)
        return result

    def agency_checksums(self) -> list[AgencyChecksumInfo]:
        """Agencies with any words, largest first; lastChanged is the cache timestamp when cached."""
        snapshot = _Snapshot(self.repository)
        candidates = [a for a in snapshot.agencies if snapshot.agency_words(a.id) > 0]
        ids = [a.id for a in candidates]

        cached = self.repository.list_agency_checksums(ids)
        checksums = self.checksums.get_cached(ids, rows=cached)
        now = datetime.now(timezone.utc)

        result = [
            AgencyChecksumInfo(
                agency_id=agency.id,
                agency_name=agency.name,
                agency_slug=agency.slug,
                checksum=checksums.get(agency.id),
                word_count=snapshot.agency_words(agency.id),
                title_count=snapshot.title_count(agency.id),
                last_changed=cached[agency.id].updated_at if agency.id in cached else now,
            )
            for agency in candidates
        ]
        result.sort(key=lambda a: (-a.word_count, a.agency_name))
        return result
