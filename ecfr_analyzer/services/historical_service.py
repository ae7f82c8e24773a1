"""
eCFR Analyzer - Historical Snapshot Service

Snapshots are (date, agency?, title?) rows with a word count:

    agency NULL, title NULL   overall corpus
    agency set,  title NULL   one agency
    agency NULL, title set    one title

Every write is insert-if-absent on that triple, so re-running any step
for a date leaves existing rows untouched.

Backfill uses the versioner structure endpoint, which reports a title's
size in characters rather than words; size // 5 is the word estimate.
"""

from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional
from uuid import UUID

from ..config import Settings, get_settings
from ..core.errors import EcfrAnalyzerError, ImportCancelled, SourceError
from ..models import AgencyReference, HistoricalPoint, HistoricalSnapshot, Title
from ..repository import Repository
from .ecfr_client import EcfrClient
from .import_status import CancelToken

logger = logging.getLogger(__name__)

CHARS_PER_WORD = 5
DEFAULT_TREND_MONTHS = 12


@dataclass
class SnapshotCaptureResult:
    snapshot_date: date
    total_words: int
    overall_created: bool
    agency_rows_created: int
    title_rows_created: int


@dataclass
class BackfillResult:
    months_processed: int = 0
    months_skipped: int = 0
    months_failed: int = 0
    title_rows_created: int = 0


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def month_start(today: date, months_back: int) -> date:
    """First day of the calendar month `months_back` months before `today`."""
    index = today.year * 12 + (today.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def shift_months(day: date, months: int) -> date:
    """Move `day` back by `months` calendar months, clamping the day of month."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = index // 12, index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def compute_change_percentages(counts: list[int]) -> list[float]:
    """Percent change of each value against the previous one (0 for the first, or after a 0)."""
    changes: list[float] = []
    for i, current in enumerate(counts):
        previous = counts[i - 1] if i > 0 else 0
        changes.append((current - previous) / previous * 100 if i > 0 and previous > 0 else 0.0)
    return changes


def sum_by_agency(
    references: Iterable[AgencyReference], words_by_title: dict[UUID, int]
) -> dict[UUID, int]:
    """Sum word counts per agency over its distinct referenced titles."""
    titles_by_agency: dict[UUID, set[UUID]] = defaultdict(set)
    for ref in references:
        titles_by_agency[ref.agency_id].add(ref.title_id)
    return {
        agency_id: sum(words_by_title.get(title_id, 0) for title_id in title_ids)
        for agency_id, title_ids in titles_by_agency.items()
    }


class HistoricalService:
    def __init__(
        self,
        repository: Repository,
        client: EcfrClient,
        settings: Settings | None = None,
        *,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.client = client
        self.months = settings.ECFR_HISTORY_MONTHS
        self.title_delay = settings.ECFR_HISTORY_TITLE_DELAY
        self.month_delay = settings.ECFR_HISTORY_MONTH_DELAY
        self._today = today

    # -------------------------------------------------------------------------
    # Current snapshot
    # -------------------------------------------------------------------------

    def capture_snapshot(self) -> Optional[SnapshotCaptureResult]:
        """Snapshot overall, per-agency and per-title word counts for the latest content date."""
        snapshot_date = self.repository.latest_content_date()
        if snapshot_date is None:
            logger.info("No title content stored yet; nothing to snapshot")
            return None

        contents = self.repository.contents_for_date(snapshot_date)
        words_by_title = {c.title_id: c.word_count or 0 for c in contents}
        total_words = sum(words_by_title.values())

        try:
            overall_created = self.repository.insert_snapshot_if_absent(snapshot_date, None, None, total_words)
        except EcfrAnalyzerError as exc:
            logger.error(f"Error creating overall snapshot for {snapshot_date}: {exc}")
            overall_created = False

        agency_rows = 0
        for agency_id, words in sum_by_agency(self.repository.list_references(), words_by_title).items():
            if words == 0:
                continue
            try:
                agency_rows += self.repository.insert_snapshot_if_absent(snapshot_date, agency_id, None, words)
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating agency snapshot for {agency_id}: {exc}")

        title_rows = 0
        for content in contents:
            if not content.word_count:
                continue
            try:
                title_rows += self.repository.insert_snapshot_if_absent(
                    snapshot_date, None, content.title_id, content.word_count, content.checksum
                )
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating title snapshot for {content.title_id}: {exc}")

        logger.info(
            f"Snapshot for {snapshot_date}: {total_words} words, "
            f"{agency_rows} agency rows and {title_rows} title rows created"
        )
        return SnapshotCaptureResult(snapshot_date, total_words, overall_created, agency_rows, title_rows)

    # -------------------------------------------------------------------------
    # Backfill
    # -------------------------------------------------------------------------

    def import_historical_data(
        self, months: Optional[int] = None, cancel: Optional[CancelToken] = None
    ) -> BackfillResult:
        """Backfill month-start snapshots for the past `months` months from the structure endpoint."""
        cancel = cancel or CancelToken()
        months = months or self.months
        titles = self.repository.list_titles(include_reserved=False)
        logger.info(f"Backfilling {months} months of history for {len(titles)} active titles")

        today = self._today()
        result = BackfillResult()
        for months_back in range(1, months + 1):
            cancel.raise_if_cancelled()
            snapshot_date = month_start(today, months_back)

            if self.repository.snapshot_exists_for_date(snapshot_date):
                logger.info(f"Skipping {snapshot_date:%Y-%m}: snapshots already exist")
                result.months_skipped += 1
                continue

            try:
                result.title_rows_created += self._import_month(titles, snapshot_date, cancel)
                result.months_processed += 1
            except ImportCancelled:
                raise
            except EcfrAnalyzerError as exc:
                result.months_failed += 1
                logger.error(f"Error importing snapshots for {snapshot_date:%Y-%m}: {exc}")
                continue

            if cancel.wait(self.month_delay):
                cancel.raise_if_cancelled()

        logger.info(
            f"Historical import finished: {result.months_processed} months imported, "
            f"{result.months_skipped} skipped, {result.months_failed} failed"
        )
        return result

    def _import_month(self, titles: list[Title], snapshot_date: date, cancel: CancelToken) -> int:
        date_str = snapshot_date.isoformat()
        total_words = 0
        created = 0

        for title in titles:
            cancel.raise_if_cancelled()
            try:
                structure = self.client.fetch_title_structure(title.number, date_str)
            except SourceError as exc:
                logger.warning(f"Failed to fetch structure for title {title.number} on {date_str}: {exc}")
                continue

            if structure.size == 0:
                continue

            words = structure.size // CHARS_PER_WORD
            total_words += words
            try:
                created += self.repository.insert_snapshot_if_absent(snapshot_date, None, title.id, words)
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating title snapshot for {title.number} on {date_str}: {exc}")

            cancel.wait(self.title_delay)

        if total_words > 0:
            try:
                self.repository.insert_snapshot_if_absent(snapshot_date, None, None, total_words)
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating overall snapshot for {date_str}: {exc}")

        self._derive_agency_snapshots(snapshot_date)
        logger.info(f"{date_str}: {created} title snapshots, {total_words} estimated words")
        return created

    def _derive_agency_snapshots(self, snapshot_date: date) -> int:
        """Per-agency rows summed from the per-title rows already stored for the date."""
        words_by_title: dict[UUID, int] = {
            s.title_id: s.word_count or 0
            for s in self.repository.title_snapshots_for_date(snapshot_date)
            if s.title_id is not None
        }
        created = 0
        for agency_id, words in sum_by_agency(self.repository.list_references(), words_by_title).items():
            if words == 0:
                continue
            try:
                created += self.repository.insert_snapshot_if_absent(snapshot_date, agency_id, None, words)
            except EcfrAnalyzerError as exc:
                logger.error(f"Error creating agency snapshot for {agency_id} on {snapshot_date}: {exc}")
        return created

    # -------------------------------------------------------------------------
    # Trend read
    # -------------------------------------------------------------------------

    def get_trend(self, agency_slug: Optional[str] = None, months: Optional[int] = None) -> list[HistoricalPoint]:
        if not months or months <= 0:
            months = DEFAULT_TREND_MONTHS
        end = self._today()
        start = shift_months(end, months)

        agency_id: Optional[UUID] = None
        if agency_slug:
            agency = self.repository.get_agency_by_slug(agency_slug)
            if agency is None:
                return []
            agency_id = agency.id

        snapshots: list[HistoricalSnapshot] = self.repository.list_snapshots(start, end, agency_id)
        counts = [s.word_count or 0 for s in snapshots]
        return [
            HistoricalPoint(point_date=s.snapshot_date, word_count=count, change_percent=change)
            for s, count, change in zip(snapshots, counts, compute_change_percentages(counts))
        ]
