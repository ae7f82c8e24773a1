"""
eCFR Analyzer - Data Models

Three groups of pydantic models:

- Upstream payloads: the eCFR admin/versioner JSON documents.
- Stored records: rows of the relational tables, as read back by the
  repository.
- Read models: the camelCase JSON shapes served to the dashboard.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import NamedTuple, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# =============================================================================
# Upstream payloads
# =============================================================================


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CFRReferencePayload(_Payload):
    """One {title, chapter} entry of an agency's cfr_references list."""

    title: int
    chapter: Optional[str] = None


class AgencyRecord(_Payload):
    """
    A single agency node without its children.

    Nested children are walked separately (see services.agency_tree) so
    that untrusted depth never turns into recursion.
    """

    name: str
    short_name: Optional[str] = None
    display_name: Optional[str] = None
    slug: str = Field(min_length=1)
    cfr_references: list[CFRReferencePayload] = Field(default_factory=list)


class TitleRecord(_Payload):
    """One entry of the titles.json registry. Dates stay raw strings."""

    number: int
    name: str
    latest_amended_on: Optional[str] = None
    latest_issue_date: Optional[str] = None
    up_to_date_as_of: Optional[str] = None
    reserved: bool = False


class TitleResponse(_Payload):
    titles: list[TitleRecord]


class TitleStructure(_Payload):
    """Top node of a title's structure document; only `size` is consumed."""

    identifier: Optional[str | int] = None
    label: Optional[str] = None
    type: Optional[str] = None
    size: int = 0
    reserved: bool = False


# =============================================================================
# Stored records
# =============================================================================


class Agency(BaseModel):
    id: UUID
    name: str
    short_name: Optional[str] = None
    slug: str
    parent_id: Optional[UUID] = None


class Title(BaseModel):
    id: UUID
    number: int
    name: str
    reserved: bool = False
    latest_amended_on: Optional[date] = None
    latest_issue_date: Optional[date] = None
    up_to_date_as_of: Optional[date] = None


class AgencyReference(BaseModel):
    agency_id: UUID
    title_id: UUID
    chapter: str = ""


class TitleContent(BaseModel):
    """A title content row; xml_content is omitted on aggregate reads."""

    id: UUID
    title_id: UUID
    content_date: date
    word_count: Optional[int] = None
    checksum: Optional[str] = None
    created_at: Optional[datetime] = None
    xml_content: Optional[str] = None


class HistoricalSnapshot(BaseModel):
    id: UUID
    snapshot_date: date
    agency_id: Optional[UUID] = None
    title_id: Optional[UUID] = None
    word_count: Optional[int] = None
    checksum: Optional[str] = None


class AgencyChecksum(BaseModel):
    agency_id: UUID
    checksum: str
    content_hash: str
    updated_at: datetime


class AgencyTitleChecksum(NamedTuple):
    """(agency, title number, document checksum) row for agency hashing."""

    agency_id: UUID
    title_number: int
    checksum: Optional[str]


# =============================================================================
# Read models (dashboard JSON)
# =============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgencyWithMetrics(CamelModel):
    id: UUID
    name: str
    slug: str
    word_count: int = 0
    percent_of_total: float = 0.0
    title_count: int = 0
    checksum: Optional[str] = None
    parent_id: Optional[UUID] = None


class TitleBreakdown(CamelModel):
    title_number: int
    title_name: str
    word_count: int


class AgencyDetail(AgencyWithMetrics):
    sub_agencies: list[AgencyWithMetrics] = Field(default_factory=list)
    title_breakdown: list[TitleBreakdown] = Field(default_factory=list)


class TitleWithMetrics(CamelModel):
    id: UUID
    number: int
    name: str
    word_count: int = 0
    checksum: Optional[str] = None
    latest_amended_on: Optional[date] = None
    up_to_date_as_of: Optional[date] = None


class WordCountMetrics(CamelModel):
    total_cfr_words: int = Field(alias="totalCFRWords")
    agencies: list[AgencyWithMetrics]


class ChecksumInfo(CamelModel):
    title_number: int
    title_name: str
    checksum: str
    last_changed: Optional[datetime] = None


class AgencyChecksumInfo(CamelModel):
    agency_id: UUID
    agency_name: str
    agency_slug: str
    checksum: Optional[str] = None
    word_count: int
    title_count: int
    last_changed: datetime


class HistoricalPoint(CamelModel):
    point_date: date = Field(alias="date")
    word_count: int
    change_percent: float = 0.0
