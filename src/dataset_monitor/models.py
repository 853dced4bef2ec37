"""
Data models for the dataset monitor.

This module defines all data structures used for provider credentials,
dedup workflow state, ingested dataset documents, and URL health records.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import ErrorCategory, ProcessingStatus

# Field names used by providers in dataset detail bodies
ID_FIELD = "@id"
TYPE_FIELD = "@type"
URL_FIELD = "schema:url"
NAME_FIELD = "schema:name"
DATE_PUBLISHED_FIELD = "schema:datePublished"
SYNC_DATE_FIELD = "syncDate"
CENTER_NAME_FIELD = "centerName"

UNKNOWN = "unknown"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ServiceEndpoint:
    """One named service from a provider's ticket response."""

    name: str
    version: str
    url: str


@dataclass(frozen=True)
class Credential:
    """
    Cached access ticket for a provider.

    Instances are never mutated; a refresh produces a new Credential that
    replaces the cached one.
    """

    token: str
    version: str
    services: tuple[ServiceEndpoint, ...]
    expires_at: datetime

    def service_url(self, name: str) -> Optional[str]:
        """Return the URL of the named service, or None if the provider lacks it."""
        for service in self.services:
            if service.name == name:
                return service.url
        return None

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at > now


@dataclass
class ProcessedIdRecord:
    """Dedup and workflow state for one provider + external id pair."""

    center_name: str
    dataset_id: str
    status: ProcessingStatus
    created_at: str
    updated_at: str


def _first_text(value: Any) -> Optional[str]:
    """Pull a plain string out of a JSON-LD literal, object or list."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        literal = value.get("@value")
        return literal if isinstance(literal, str) else None
    if isinstance(value, list) and value:
        return _first_text(value[0])
    return None


@dataclass
class DatasetDocument:
    """Canonical ingested dataset record, keyed by its external id."""

    raw_id: str
    center_name: str
    sync_date: str
    body: dict = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: dict, center_name: str, external_id: str) -> "DatasetDocument":
        """
        Build a document from a provider body and stamp it.

        The body is copied; '@id', 'centerName' and 'syncDate' are overwritten
        so the stored document always carries the id it was fetched under.
        """
        stamped = dict(body)
        sync_date = utc_now().isoformat()
        stamped[ID_FIELD] = external_id
        stamped[CENTER_NAME_FIELD] = center_name
        stamped[SYNC_DATE_FIELD] = sync_date
        return cls(
            raw_id=external_id,
            center_name=center_name,
            sync_date=sync_date,
            body=stamped,
        )

    @classmethod
    def from_stored(cls, body: dict) -> "DatasetDocument":
        """Rebuild a document previously written by the document store."""
        return cls(
            raw_id=str(body.get(ID_FIELD, "")),
            center_name=str(body.get(CENTER_NAME_FIELD, UNKNOWN)),
            sync_date=str(body.get(SYNC_DATE_FIELD, "")),
            body=body,
        )

    @property
    def data_type(self) -> Any:
        return self.body.get(TYPE_FIELD)

    def is_dataset(self) -> bool:
        """True if '@type' mentions 'dataset' (case-insensitive)."""
        data_type = self.data_type
        if data_type is None:
            return False
        if isinstance(data_type, list):
            return any("dataset" in str(item).lower() for item in data_type)
        return "dataset" in str(data_type).lower()

    def extract_url(self) -> Optional[str]:
        value = self.body.get(URL_FIELD)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def extract_name(self) -> str:
        return _first_text(self.body.get(NAME_FIELD)) or UNKNOWN

    def extract_date_published(self) -> str:
        value = self.body.get(DATE_PUBLISHED_FIELD)
        if isinstance(value, str):
            return value
        return UNKNOWN


@dataclass
class ProbeOutcome:
    """Result of one probe attempt, before it is merged into a HealthRecord."""

    status_code: Optional[int] = None
    status_text: Optional[str] = None
    headers: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    error_msg: Optional[str] = None
    error_detail: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.error_category is None


@dataclass
class HealthRecord:
    """
    One observation of one dataset URL at one point in time.

    Inserted with all result fields empty before probing, then updated in
    place (same id) once the probe completes.
    """

    id: str
    raw_id: str
    url: str
    name: Optional[str]
    center_name: str
    date_published: Optional[str]
    check_time: datetime
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    error_msg: Optional[str] = None
    error_detail: Optional[str] = None
    response_time_ms: Optional[int] = None
    is_likely_local_issue: bool = False
    headers: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ProbeSummary:
    """Aggregate counts for one probe run."""

    total: int = 0
    success: int = 0
    local_issues: int = 0
    remote_issues: int = 0
    skipped_without_url: int = 0

    @property
    def local_issue_ratio(self) -> float:
        if self.total == 0:
            return 0.0
        return self.local_issues / self.total
