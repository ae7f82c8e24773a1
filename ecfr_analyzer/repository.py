"""
eCFR Analyzer - Storage Contract

`Repository` is the create/update/query contract the pipeline and the
metrics layer are written against. `PostgresRepository` implements it on
the shared psycopg connection pool. Every method runs on its own pooled
connection in autocommit mode, so each upsert commits independently and
a crashed run leaves individually consistent rows behind.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Iterator, Optional, Protocol, Sequence
from uuid import UUID

import psycopg

from .core.errors import PersistenceError
from .db import get_connection
from .models import (
    Agency,
    AgencyChecksum,
    AgencyReference,
    AgencyTitleChecksum,
    HistoricalSnapshot,
    Title,
    TitleContent,
)

logger = logging.getLogger(__name__)


class Repository(Protocol):
    # Agencies
    def upsert_agency(
        self, name: str, short_name: Optional[str], slug: str, parent_id: Optional[UUID]
    ) -> Agency: ...

    def get_agency_by_slug(self, slug: str) -> Optional[Agency]: ...

    def list_agencies(self) -> list[Agency]: ...

    # Titles
    def upsert_title(
        self,
        number: int,
        name: str,
        reserved: bool,
        latest_amended_on: Optional[date],
        latest_issue_date: Optional[date],
        up_to_date_as_of: Optional[date],
    ) -> Title: ...

    def list_titles(self, include_reserved: bool = True) -> list[Title]: ...

    # CFR references
    def add_reference(self, agency_id: UUID, title_id: UUID, chapter: str) -> bool: ...

    def list_references(self) -> list[AgencyReference]: ...

    # Title content
    def upsert_title_content(
        self,
        title_id: UUID,
        content_date: date,
        xml_content: str,
        word_count: int,
        checksum: str,
    ) -> TitleContent: ...

    def latest_content_date(self) -> Optional[date]: ...

    def contents_for_date(self, content_date: date) -> list[TitleContent]: ...

    def latest_contents(self) -> list[TitleContent]: ...

    def title_checksums_for_agencies(self, agency_ids: Sequence[UUID]) -> list[AgencyTitleChecksum]: ...

    # Historical snapshots
    def insert_snapshot_if_absent(
        self,
        snapshot_date: date,
        agency_id: Optional[UUID],
        title_id: Optional[UUID],
        word_count: int,
        checksum: Optional[str] = None,
    ) -> bool: ...

    def snapshot_exists_for_date(self, snapshot_date: date) -> bool: ...

    def title_snapshots_for_date(self, snapshot_date: date) -> list[HistoricalSnapshot]: ...

    def list_snapshots(
        self, start: date, end: date, agency_id: Optional[UUID] = None
    ) -> list[HistoricalSnapshot]: ...

    # Agency checksums
    def get_agency_checksum(self, agency_id: UUID) -> Optional[AgencyChecksum]: ...

    def list_agency_checksums(self, agency_ids: Iterable[UUID]) -> dict[UUID, AgencyChecksum]: ...

    def save_agency_checksum(self, agency_id: UUID, checksum: str, content_hash: str) -> AgencyChecksum: ...


# =============================================================================
# PostgreSQL implementation
# =============================================================================

_CONTENT_COLUMNS = "id, title_id, content_date, word_count, checksum, created_at"


class PostgresRepository:
    """Repository backed by the shared psycopg connection pool."""

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        try:
            with get_connection() as conn:
                yield conn
        except psycopg.Error as e:
            raise PersistenceError(f"{type(e).__name__}: {e}") from e
        except RuntimeError as e:
            raise PersistenceError(str(e)) from e

    # -- Agencies -------------------------------------------------------------

    def upsert_agency(
        self, name: str, short_name: Optional[str], slug: str, parent_id: Optional[UUID]
    ) -> Agency:
        with self._connection() as conn:
            row = conn.execute(
                """
                INSERT INTO agencies (name, short_name, slug, parent_id)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (slug) DO UPDATE
                SET name = EXCLUDED.name,
                    short_name = EXCLUDED.short_name,
                    parent_id = EXCLUDED.parent_id,
                    updated_at = now()
                RETURNING id, name, short_name, slug, parent_id
                """,
                (name, short_name, slug, parent_id),
            ).fetchone()
        return Agency(**row)

    def get_agency_by_slug(self, slug: str) -> Optional[Agency]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, name, short_name, slug, parent_id FROM agencies WHERE slug = %s",
                (slug,),
            ).fetchone()
        return Agency(**row) if row else None

    def list_agencies(self) -> list[Agency]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id, name, short_name, slug, parent_id FROM agencies ORDER BY name"
            ).fetchall()
        return [Agency(**row) for row in rows]

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
        with self._connection() as conn:
            row = conn.execute(
                """
                INSERT INTO titles (number, name, reserved, latest_amended_on,
                                    latest_issue_date, up_to_date_as_of)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (number) DO UPDATE
                SET name = EXCLUDED.name,
                    reserved = EXCLUDED.reserved,
                    latest_amended_on = EXCLUDED.latest_amended_on,
                    latest_issue_date = EXCLUDED.latest_issue_date,
                    up_to_date_as_of = EXCLUDED.up_to_date_as_of,
                    updated_at = now()
                RETURNING id, number, name, reserved, latest_amended_on,
                          latest_issue_date, up_to_date_as_of
                """,
                (number, name, reserved, latest_amended_on, latest_issue_date, up_to_date_as_of),
            ).fetchone()
        return Title(**row)

    def list_titles(self, include_reserved: bool = True) -> list[Title]:
        query = (
            "SELECT id, number, name, reserved, latest_amended_on, latest_issue_date, "
            "up_to_date_as_of FROM titles"
        )
        if not include_reserved:
            query += " WHERE reserved = false"
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY number").fetchall()
        return [Title(**row) for row in rows]

    # -- CFR references -------------------------------------------------------

    def add_reference(self, agency_id: UUID, title_id: UUID, chapter: str) -> bool:
        with self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO agency_cfr_references (agency_id, title_id, chapter)
                VALUES (%s, %s, %s)
                ON CONFLICT ON CONSTRAINT agency_cfr_references_unique DO NOTHING
                """,
                (agency_id, title_id, chapter or ""),
            )
            return cur.rowcount == 1

    def list_references(self) -> list[AgencyReference]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT agency_id, title_id, chapter FROM agency_cfr_references"
            ).fetchall()
        return [AgencyReference(**row) for row in rows]

    # -- Title content --------------------------------------------------------

    def upsert_title_content(
        self,
        title_id: UUID,
        content_date: date,
        xml_content: str,
        word_count: int,
        checksum: str,
    ) -> TitleContent:
        with self._connection() as conn:
            row = conn.execute(
                f"""
                INSERT INTO title_contents (title_id, content_date, xml_content, word_count, checksum)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT ON CONSTRAINT title_contents_unique DO UPDATE
                SET xml_content = EXCLUDED.xml_content,
                    word_count = EXCLUDED.word_count,
                    checksum = EXCLUDED.checksum
                RETURNING {_CONTENT_COLUMNS}
                """,
                (title_id, content_date, xml_content, word_count, checksum),
            ).fetchone()
        return TitleContent(**row)

    def latest_content_date(self) -> Optional[date]:
        with self._connection() as conn:
            row = conn.execute("SELECT MAX(content_date) AS latest FROM title_contents").fetchone()
        return row["latest"] if row else None

    def contents_for_date(self, content_date: date) -> list[TitleContent]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_CONTENT_COLUMNS} FROM title_contents WHERE content_date = %s",
                (content_date,),
            ).fetchall()
        return [TitleContent(**row) for row in rows]

    def latest_contents(self) -> list[TitleContent]:
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT DISTINCT ON (title_id) {_CONTENT_COLUMNS}
                FROM title_contents
                ORDER BY title_id, content_date DESC
                """
            ).fetchall()
        return [TitleContent(**row) for row in rows]

    def title_checksums_for_agencies(self, agency_ids: Sequence[UUID]) -> list[AgencyTitleChecksum]:
        if not agency_ids:
            return []
        with self._connection() as conn:
            rows = conn.execute(
                """
                WITH latest AS (
                    SELECT DISTINCT ON (title_id) title_id, checksum
                    FROM title_contents
                    ORDER BY title_id, content_date DESC
                )
                SELECT DISTINCT acr.agency_id, t.number AS title_number, latest.checksum
                FROM agency_cfr_references acr
                JOIN titles t ON t.id = acr.title_id
                JOIN latest ON latest.title_id = acr.title_id
                WHERE acr.agency_id = ANY(%s)
                ORDER BY acr.agency_id, t.number
                """,
                (list(agency_ids),),
            ).fetchall()
        return [AgencyTitleChecksum(row["agency_id"], row["title_number"], row["checksum"]) for row in rows]

    # -- Historical snapshots -------------------------------------------------

    def insert_snapshot_if_absent(
        self,
        snapshot_date: date,
        agency_id: Optional[UUID],
        title_id: Optional[UUID],
        word_count: int,
        checksum: Optional[str] = None,
    ) -> bool:
        with self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO historical_snapshots (snapshot_date, agency_id, title_id, word_count, checksum)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT ON CONSTRAINT historical_snapshots_unique DO NOTHING
                """,
                (snapshot_date, agency_id, title_id, word_count, checksum),
            )
            return cur.rowcount == 1

    def snapshot_exists_for_date(self, snapshot_date: date) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT EXISTS (SELECT 1 FROM historical_snapshots WHERE snapshot_date = %s) AS found",
                (snapshot_date,),
            ).fetchone()
        return bool(row and row["found"])

    def title_snapshots_for_date(self, snapshot_date: date) -> list[HistoricalSnapshot]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, snapshot_date, agency_id, title_id, word_count, checksum
                FROM historical_snapshots
                WHERE snapshot_date = %s AND agency_id IS NULL AND title_id IS NOT NULL
                """,
                (snapshot_date,),
            ).fetchall()
        return [HistoricalSnapshot(**row) for row in rows]

    def list_snapshots(
        self, start: date, end: date, agency_id: Optional[UUID] = None
    ) -> list[HistoricalSnapshot]:
        if agency_id is None:
            scope, params = "agency_id IS NULL AND title_id IS NULL", (start, end)
        else:
            scope, params = "agency_id = %s AND title_id IS NULL", (start, end, agency_id)
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT id, snapshot_date, agency_id, title_id, word_count, checksum
                FROM historical_snapshots
                WHERE snapshot_date BETWEEN %s AND %s AND {scope}
                ORDER BY snapshot_date ASC
                """,
                params,
            ).fetchall()
        return [HistoricalSnapshot(**row) for row in rows]

    # -- Agency checksums -----------------------------------------------------

    def get_agency_checksum(self, agency_id: UUID) -> Optional[AgencyChecksum]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT agency_id, checksum, content_hash, updated_at FROM agency_checksums WHERE agency_id = %s",
                (agency_id,),
            ).fetchone()
        return AgencyChecksum(**row) if row else None

    def list_agency_checksums(self, agency_ids: Iterable[UUID]) -> dict[UUID, AgencyChecksum]:
        ids = list(agency_ids)
        if not ids:
            return {}
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT agency_id, checksum, content_hash, updated_at FROM agency_checksums "
                "WHERE agency_id = ANY(%s)",
                (ids,),
            ).fetchall()
        return {row["agency_id"]: AgencyChecksum(**row) for row in rows}

    def save_agency_checksum(self, agency_id: UUID, checksum: str, content_hash: str) -> AgencyChecksum:
        with self._connection() as conn:
            row = conn.execute(
                """
                INSERT INTO agency_checksums (agency_id, checksum, content_hash, updated_at)
                VALUES (%s, %s, %s, now())
                ON CONFLICT (agency_id) DO UPDATE
                SET checksum = EXCLUDED.checksum,
                    content_hash = EXCLUDED.content_hash,
                    updated_at = now()
                RETURNING agency_id, checksum, content_hash, updated_at
                """,
                (agency_id, checksum, content_hash),
            ).fetchone()
        return AgencyChecksum(**row)
