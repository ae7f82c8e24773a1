"""
eCFR Analyzer - Checksum Engine

Title level: SHA-256 of the raw document, computed once at ingestion.

Agency level: the latest document checksum of every distinct title the
agency references, sorted by title number, rendered as
"TITLE_<n>:<checksum>\\n" lines and hashed with SHA-256. Sorting makes the
result independent of query order. An agency with no qualifying titles
has no checksum at all (never the hash of an empty string).

Persisted rows in agency_checksums are only rewritten when the content
hash changes, so a recalculation with unchanged content is all "skipped".
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence
from uuid import UUID

from ..core.errors import EcfrAnalyzerError
from ..models import AgencyChecksum
from ..repository import Repository

logger = logging.getLogger(__name__)


class ChecksumOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class ChecksumRunStats:
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def created_updated(self) -> int:
        return self.created + self.updated

    def record(self, outcome: ChecksumOutcome) -> None:
        if outcome is ChecksumOutcome.CREATED:
            self.created += 1
        elif outcome is ChecksumOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def as_dict(self) -> dict[str, int]:
        data = asdict(self)
        data["created_updated"] = self.created_updated
        return data


def document_checksum(content: str) -> str:
    """Lowercase hex SHA-256 of the UTF-8 encoded document."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def agency_checksum(pairs: Iterable[tuple[int, Optional[str]]]) -> Optional[str]:
    """
    Aggregate (title number, checksum) pairs into one agency checksum.

    Pairs without a checksum are ignored; returns None if nothing is left.
    """
    qualifying = sorted((number, checksum) for number, checksum in pairs if checksum)
    if not qualifying:
        return None
    combined = "".join(f"TITLE_{number}:{checksum}\n" for number, checksum in qualifying)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def agency_content_hash(pairs: Iterable[tuple[int, Optional[str]]]) -> Optional[str]:
    """Change-detection hash stored next to the checksum (currently the same digest)."""
    return agency_checksum(pairs)


class ChecksumService:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    def _pairs_by_agency(self, agency_ids: Sequence[UUID]) -> dict[UUID, list[tuple[int, Optional[str]]]]:
        grouped: dict[UUID, list[tuple[int, Optional[str]]]] = {}
        for row in self.repository.title_checksums_for_agencies(agency_ids):
            grouped.setdefault(row.agency_id, []).append((row.title_number, row.checksum))
        return grouped

    def calculate_batch(self, agency_ids: Sequence[UUID]) -> dict[UUID, str]:
        """Compute checksums for many agencies from a single query."""
        result: dict[UUID, str] = {}
        for agency_id, pairs in self._pairs_by_agency(agency_ids).items():
            checksum = agency_checksum(pairs)
            if checksum:
                result[agency_id] = checksum
        return result

    def calculate(self, agency_id: UUID) -> Optional[str]:
        return self.calculate_batch([agency_id]).get(agency_id)

    def calculate_and_store(self, agency_id: UUID) -> ChecksumOutcome:
        pairs = self._pairs_by_agency([agency_id]).get(agency_id, [])
        checksum = agency_checksum(pairs)
        content_hash = agency_content_hash(pairs)
        if checksum is None or content_hash is None:
            return ChecksumOutcome.SKIPPED

        existing = self.repository.get_agency_checksum(agency_id)
        if existing is not None and existing.content_hash == content_hash:
            return ChecksumOutcome.SKIPPED

        self.repository.save_agency_checksum(agency_id, checksum, content_hash)
        return ChecksumOutcome.CREATED if existing is None else ChecksumOutcome.UPDATED

    def recalculate_all(self) -> ChecksumRunStats:
        """
        Recompute and persist checksums for every agency.

        Per-agency failures are counted in `errors` and never raised; a
        failure to list agencies propagates.
        """
        agencies = self.repository.list_agencies()
        stats = ChecksumRunStats(total=len(agencies))
        logger.info(f"Recalculating checksums for {stats.total} agencies")

        for agency in agencies:
            try:
                stats.record(self.calculate_and_store(agency.id))
            except EcfrAnalyzerError as exc:
                stats.errors += 1
                logger.error(f"Checksum calculation failed for agency {agency.slug}: {exc}")

        logger.info(
            f"Checksum run completed: {stats.created} created, {stats.updated} updated, "
            f"{stats.skipped} skipped, {stats.errors} errors"
        )
        return stats

    def get_cached(
        self, agency_ids: Sequence[UUID], rows: Optional[Mapping[UUID, AgencyChecksum]] = None
    ) -> dict[UUID, str]:
        """
        Serve checksums from agency_checksums, computing any missing ones.

        `rows` are cache rows the caller already read for these ids. The
        recalculation run should keep the cache populated, so falling back
        is logged as a warning.
        """
        ids = list(agency_ids)
        if rows is None:
            rows = self.repository.list_agency_checksums(ids)
        cached = {agency_id: rows[agency_id].checksum for agency_id in ids if agency_id in rows}
        missing = [agency_id for agency_id in ids if agency_id not in cached]
        if missing:
            logger.warning(
                f"{len(missing)} of {len(ids)} agencies have no cached checksum; computing on demand"
            )
            cached.update(self.calculate_batch(missing))
        return cached
