"""
eCFR Analyzer - Schema Bootstrap

Idempotent DDL applied at startup (and by `ecfr-analyzer init-db`).
Natural keys used by the import upserts:

    agencies.slug
    titles.number
    agency_cfr_references (agency_id, title_id, chapter)
    title_contents (title_id, content_date)
    historical_snapshots (snapshot_date, agency_id, title_id)  NULLS NOT DISTINCT
    agency_checksums.agency_id
"""

from __future__ import annotations

import logging

import psycopg

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS agencies (
        id          uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        name        text NOT NULL,
        short_name  text,
        slug        text NOT NULL UNIQUE,
        parent_id   uuid REFERENCES agencies(id),
        created_at  timestamptz NOT NULL DEFAULT now(),
        updated_at  timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS titles (
        id                 uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        number             integer NOT NULL UNIQUE,
        name               text NOT NULL,
        latest_amended_on  date,
        latest_issue_date  date,
        up_to_date_as_of   date,
        reserved           boolean NOT NULL DEFAULT false,
        created_at         timestamptz NOT NULL DEFAULT now(),
        updated_at         timestamptz NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agency_cfr_references (
        id          uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id   uuid NOT NULL REFERENCES agencies(id),
        title_id    uuid NOT NULL REFERENCES titles(id),
        chapter     text NOT NULL DEFAULT '',
        created_at  timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT agency_cfr_references_unique UNIQUE (agency_id, title_id, chapter)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS title_contents (
        id            uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        title_id      uuid NOT NULL REFERENCES titles(id),
        content_date  date NOT NULL,
        xml_content   text NOT NULL,
        word_count    integer,
        checksum      varchar(64),
        created_at    timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT title_contents_unique UNIQUE (title_id, content_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS historical_snapshots (
        id             uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        snapshot_date  date NOT NULL,
        agency_id      uuid REFERENCES agencies(id),
        title_id       uuid REFERENCES titles(id),
        word_count     integer,
        checksum       varchar(64),
        created_at     timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT historical_snapshots_unique
            UNIQUE NULLS NOT DISTINCT (snapshot_date, agency_id, title_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agency_checksums (
        agency_id     uuid PRIMARY KEY REFERENCES agencies(id),
        checksum      varchar(64) NOT NULL,
        content_hash  varchar(64) NOT NULL,
        updated_at    timestamptz NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_agency_cfr_references_agency ON agency_cfr_references (agency_id)",
    "CREATE INDEX IF NOT EXISTS idx_agency_cfr_references_title ON agency_cfr_references (title_id)",
    "CREATE INDEX IF NOT EXISTS idx_title_contents_title_date ON title_contents (title_id, content_date DESC)",
    "CREATE INDEX IF NOT EXISTS idx_agencies_parent ON agencies (parent_id)",
    "CREATE INDEX IF NOT EXISTS idx_historical_snapshots_date ON historical_snapshots (snapshot_date)",
    "CREATE INDEX IF NOT EXISTS idx_historical_snapshots_agency_date ON historical_snapshots (agency_id, snapshot_date)",
    "CREATE INDEX IF NOT EXISTS idx_agency_checksums_updated ON agency_checksums (updated_at)",
)


def ensure_schema(conn: psycopg.Connection) -> None:
    """Create tables and indexes that do not exist yet."""
    with conn.transaction():
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)
    logger.info(f"Schema verified ({len(SCHEMA_STATEMENTS)} statements)")
