"""
Domain models using Pydantic.
All data structures for the review workflow.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

# Relevance rating meanings
RATING_AWAITING_TRIAGE = -1
RATING_TRASH = 0
REVIEWABLE_RATINGS = (1, 2, 3)
VALID_RATINGS = (RATING_AWAITING_TRIAGE, RATING_TRASH) + REVIEWABLE_RATINGS

FIELD_NAME_PATTERN = r"^[a-z][a-z0-9_]{0,62}$"


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enumerations
# =============================================================================


class VideoType(str, Enum):
    """Closed set of submission types."""

    TRENDING = "Trending"
    GENERAL = "General"


class HostStatus(str, Enum):
    """Per-host acceptance sub-state. Absence of a status means unset."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ASSIGNED = "assigned"


# Statuses in which a host is acting on the video
TAKEN_STATUSES = frozenset({HostStatus.ACCEPTED, HostStatus.ASSIGNED})


class RelevanceGate(str, Enum):
    """System-wide triage state derived from the relevance rating."""

    RELEVANCE = "relevance"
    TRASH = "trash"
    REVIEWABLE = "reviewable"

    @classmethod
    def from_rating(cls, rating: int) -> "RelevanceGate":
        """Map a relevance rating onto its gate."""
        if rating == RATING_AWAITING_TRIAGE:
            return cls.RELEVANCE
        if rating == RATING_TRASH:
            return cls.TRASH
        if rating in REVIEWABLE_RATINGS:
            return cls.REVIEWABLE
        raise ValueError(f"Invalid relevance rating: {rating}")

    @property
    def is_open(self) -> bool:
        """Per-host statuses are meaningful only behind an open gate."""
        return self is RelevanceGate.REVIEWABLE


class FieldKind(str, Enum):
    """Kinds of per-host fields provisioned for every host."""

    STATUS = "status"
    NOTE = "note"
    EXTERNAL_ID = "external_id"
    TIMESTAMP = "timestamp"


# =============================================================================
# Domain Models (Internal)
# =============================================================================


class HostBindings(BaseModel):
    """Field names that locate one host's per-video data."""

    status_field: str = Field(..., pattern=FIELD_NAME_PATTERN)
    note_field: str = Field(..., pattern=FIELD_NAME_PATTERN)
    external_id_field: str = Field(..., pattern=FIELD_NAME_PATTERN)

    @model_validator(mode="after")
    def check_distinct_names(self) -> "HostBindings":
        names = [self.status_field, self.note_field, self.external_id_field]
        if len(set(names)) != len(names):
            raise ValueError("host field bindings must be distinct")
        if self.timestamp_field in names:
            raise ValueError("host field bindings clash with the timestamp field")
        return self

    @property
    def timestamp_field(self) -> str:
        """Last-transition timestamp field, derived from the status field."""
        return f"{self.status_field}_updated_at"

    def fields(self) -> Dict[FieldKind, str]:
        """All provisioned field names keyed by kind."""
        return {
            FieldKind.STATUS: self.status_field,
            FieldKind.NOTE: self.note_field,
            FieldKind.EXTERNAL_ID: self.external_id_field,
            FieldKind.TIMESTAMP: self.timestamp_field,
        }

    @classmethod
    def default_for(cls, host_id: int) -> "HostBindings":
        """Legacy naming: host 1 kept the original unsuffixed note/id fields."""
        if host_id == 1:
            return cls(
                status_field="status_1",
                note_field="note",
                external_id_field="video_id_text",
            )
        return cls(
            status_field=f"status_{host_id}",
            note_field=f"note_{host_id}",
            external_id_field=f"video_id_text_{host_id}",
        )


class Host(BaseModel):
    """
    An independent reviewer.
    Hosts are never removed, only deactivated, so ids are never reused.
    """

    id: int = Field(..., ge=1, description="Stable host identifier")
    name: str = Field(..., min_length=1, max_length=100)
    bindings: HostBindings
    active: bool = Field(default=True)
    provisioned: bool = Field(
        default=False,
        description="All per-host fields exist and initial state is seeded",
    )
    created_at: datetime = Field(default_factory=utcnow)
    deactivated_at: Optional[datetime] = None

    @property
    def is_visible(self) -> bool:
        """Only active, fully provisioned hosts take part in reviews."""
        return self.active and self.provisioned


class SchemaField(BaseModel):
    """Catalog entry for a provisioned per-host field."""

    name: str
    kind: FieldKind
    host_id: int
    created_at: datetime = Field(default_factory=utcnow)


class Person(BaseModel):
    """Submitter, referenced for attribution only."""

    id: int
    name: str


class Video(BaseModel):
    """A submitted video topic and its system-wide triage state."""

    id: int
    person_id: int
    url: str
    video_code: Optional[str] = Field(
        default=None,
        description="Canonical content code, null for unsupported platforms",
    )
    type: VideoType
    likes_count: int = Field(default=0, ge=0)
    pitch: Optional[str] = None
    relevance_rating: int = RATING_AWAITING_TRIAGE
    score: Optional[int] = None
    taken_by: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def gate(self) -> RelevanceGate:
        """Relevance gate implied by the current rating."""
        return RelevanceGate.from_rating(self.relevance_rating)


class HostReview(BaseModel):
    """One host's state for one video: the (video_id, host_id) relation."""

    video_id: int
    host_id: int
    status: Optional[HostStatus] = None
    note: Optional[str] = None
    external_id: Optional[str] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# API Models (External)
# =============================================================================


class SubmitVideoRequest(BaseModel):
    """Payload for a new submission."""

    person_id: int = Field(..., ge=1, description="Submitter id")
    url: str = Field(..., min_length=1, max_length=2048)
    type: VideoType = VideoType.GENERAL
    likes_count: int = Field(default=0, ge=0)
    pitch: Optional[str] = Field(default=None, max_length=5000)
    relevance_rating: int = Field(
        default=RATING_AWAITING_TRIAGE,
        description="Initial relevance rating (-1 awaits triage)",
    )


class SubmitVideoResponse(BaseModel):
    """Result of a successful submission."""

    id: int
    video_code: Optional[str] = None


class DuplicateCheckResponse(BaseModel):
    """Advisory duplicate lookup."""

    is_duplicate: bool
    video_code: Optional[str] = None
    existing_url: Optional[str] = None
    video_id: Optional[int] = None


class RelevanceUpdateRequest(BaseModel):
    relevance_rating: int


class VideoTypeUpdateRequest(BaseModel):
    type: VideoType


class HostTransitionRequest(BaseModel):
    """Requested per-host status change."""

    status: HostStatus
    note: Optional[str] = Field(default=None, max_length=5000)
    external_id: Optional[str] = Field(default=None, max_length=255)


class HostNoteRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=5000)


class TransitionResult(BaseModel):
    """Outcome of one successful host transition."""

    video_id: int
    host_id: int
    previous_status: Optional[HostStatus] = None
    status: HostStatus
    external_id: Optional[str] = None
    taken_by: int
    updated_at: datetime


class BulkTransitionItem(BaseModel):
    video_id: int
    host_id: int
    status: HostStatus
    note: Optional[str] = Field(default=None, max_length=5000)
    external_id: Optional[str] = Field(default=None, max_length=255)


class BulkTransitionRequest(BaseModel):
    items: List[BulkTransitionItem] = Field(..., min_length=1)


class BulkItemResult(BaseModel):
    """Per-entry outcome of a bulk transition."""

    video_id: int
    host_id: int
    success: bool
    result: Optional[TransitionResult] = None
    error: Optional[Dict[str, Any]] = None


class BulkTransitionResponse(BaseModel):
    results: List[BulkItemResult]
    succeeded: int
    failed: int


class VideoDetail(BaseModel):
    """Video with the per-host rows of the active hosts."""

    video: Video
    gate: RelevanceGate
    reviews: List[HostReview] = Field(default_factory=list)


class VideoListResponse(BaseModel):
    items: List[VideoDetail]
    total: int


class HostStatusEntry(BaseModel):
    """One host's line in a video's status history."""

    host_id: int
    host_name: str
    status: Optional[HostStatus] = None
    timestamp_field: str
    updated_at: Optional[datetime] = None
    last_changed: str = Field(..., description="Display string, 'Never' if unset")


class StatusHistory(BaseModel):
    video_id: int
    created_at: datetime
    hosts: List[HostStatusEntry]


class ReviewCounts(BaseModel):
    """Queue sizes per gate and per active host."""

    all: int
    gates: Dict[str, int]
    hosts: Dict[int, Dict[str, int]]


class ConsistencyReport(BaseModel):
    video_id: int
    consistent: bool
    violations: List[str] = Field(default_factory=list)


class ReconcileResponse(BaseModel):
    checked: int
    corrected: int


class RegisterHostRequest(BaseModel):
    """Introduce a new host; id and bindings default when omitted."""

    name: str = Field(..., min_length=1, max_length=100)
    host_id: Optional[int] = Field(default=None, ge=1)
    bindings: Optional[HostBindings] = None


class ProvisioningReport(BaseModel):
    """What a (possibly retried) provisioning run did."""

    host: Host
    fields_added: List[str] = Field(default_factory=list)
    fields_existing: List[str] = Field(default_factory=list)
    seeded_pending: int = 0
    roster_version: int
    already_provisioned: bool = False


class HostListResponse(BaseModel):
    roster_version: int
    hosts: List[Host]


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: Dict[str, Any] = Field(..., description="Error details")
