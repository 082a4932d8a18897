"""Models package - domain entities and interfaces."""
from .interfaces import (
    Database,
    HostRepository,
    PersonRepository,
    ReviewRepository,
    VideoRepository,
)
from .schemas import (
    ErrorResponse,
    FieldKind,
    Host,
    HostBindings,
    HostReview,
    HostStatus,
    Person,
    RelevanceGate,
    SchemaField,
    Video,
    VideoType,
)

__all__ = [
    # Interfaces
    "Database",
    "HostRepository",
    "PersonRepository",
    "ReviewRepository",
    "VideoRepository",
    # Schemas
    "ErrorResponse",
    "FieldKind",
    "Host",
    "HostBindings",
    "HostReview",
    "HostStatus",
    "Person",
    "RelevanceGate",
    "SchemaField",
    "Video",
    "VideoType",
]
