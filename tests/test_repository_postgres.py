"""
Integration tests for PostgresRepository.

Require PostgreSQL 15+ (NULLS NOT DISTINCT) and ECFR_TEST_DATABASE_URL.
Rows use random slugs and title numbers so the suite can run against a
database that already holds data.
"""

from __future__ import annotations

import random
import uuid
from datetime import date
from typing import Generator

import pytest

from ecfr_analyzer.config import Settings
from ecfr_analyzer.db import close_db_pool, get_connection, init_db_pool
from ecfr_analyzer.repository import PostgresRepository
from ecfr_analyzer.schema import ensure_schema

pytestmark = pytest.mark.integration


@pytest.fixture(scope="module")
def pg_repo(postgres_dsn) -> Generator[PostgresRepository, None, None]:
    pool = init_db_pool(Settings(_env_file=None, DATABASE_URL=postgres_dsn))  # type: ignore[call-arg]
    if pool is None:
        pytest.skip("PostgreSQL not reachable")
    with get_connection() as conn:
        ensure_schema(conn)
        ensure_schema(conn)
    yield PostgresRepository()
    close_db_pool()


def unique_slug() -> str:
    return f"it-{uuid.uuid4().hex[:10]}"


def unique_number() -> int:
    return random.randint(100_000, 2_000_000_000)


class TestUpserts:
    def test_agency_upsert_keeps_id(self, pg_repo):
        slug = unique_slug()
        first = pg_repo.upsert_agency("Agency", None, slug, None)
        second = pg_repo.upsert_agency("Agency Renamed", "AR", slug, None)

        assert first.id == second.id
        assert pg_repo.get_agency_by_slug(slug).name == "Agency Renamed"

    def test_title_and_reference_idempotent(self, pg_repo):
        number = unique_number()
        title = pg_repo.upsert_title(number, "Title", False, date(2025, 1, 1), None, None)
        again = pg_repo.upsert_title(number, "Title", False, date(2025, 2, 1), None, None)
        agency = pg_repo.upsert_agency("Agency", None, unique_slug(), None)

        assert title.id == again.id
        assert again.latest_amended_on == date(2025, 2, 1)
        assert pg_repo.add_reference(agency.id, title.id, "") is True
        assert pg_repo.add_reference(agency.id, title.id, "") is False
        assert pg_repo.add_reference(agency.id, title.id, "IV") is True

    def test_content_same_day_replaces(self, pg_repo):
        title = pg_repo.upsert_title(unique_number(), "Title", False, None, None, None)
        day = date(2025, 3, 15)

        first = pg_repo.upsert_title_content(title.id, day, "<a>one</a>", 1, "a" * 64)
        second = pg_repo.upsert_title_content(title.id, day, "<a>one two</a>", 2, "b" * 64)

        assert first.id == second.id
        rows = [c for c in pg_repo.contents_for_date(day) if c.title_id == title.id]
        assert [(r.word_count, r.checksum) for r in rows] == [(2, "b" * 64)]

    def test_snapshot_nulls_are_not_distinct(self, pg_repo):
        agency = pg_repo.upsert_agency("Agency", None, unique_slug(), None)
        day = date(1990, 1, 1)

        assert pg_repo.insert_snapshot_if_absent(day, agency.id, None, 10) is True
        assert pg_repo.insert_snapshot_if_absent(day, agency.id, None, 20) is False
        points = pg_repo.list_snapshots(day, day, agency.id)
        assert [p.word_count for p in points] == [10]

    def test_agency_checksum_roundtrip(self, pg_repo):
        agency = pg_repo.upsert_agency("Agency", None, unique_slug(), None)

        pg_repo.save_agency_checksum(agency.id, "c" * 64, "h" * 64)
        pg_repo.save_agency_checksum(agency.id, "d" * 64, "i" * 64)

        row = pg_repo.get_agency_checksum(agency.id)
        assert row.checksum == "d" * 64
        assert pg_repo.list_agency_checksums([agency.id])[agency.id].content_hash == "i" * 64
