"""
Repository interfaces (abstractions).
Using Protocol for structural subtyping (duck typing with type hints).
These define the contracts that data access implementations must follow.
"""
from typing import (
    AsyncContextManager,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from app.models.schemas import (
    Host,
    HostReview,
    HostStatus,
    Person,
    SchemaField,
    Video,
    VideoType,
)


@runtime_checkable
class Database(Protocol):
    """Storage engine offering atomic multi-record writes."""

    def transaction(self) -> AsyncContextManager[None]:
        """
        Open a unit of work.

        Every write issued inside the block is committed together or, if the
        block raises, not at all.
        """
        ...


@runtime_checkable
class VideoRepository(Protocol):
    """
    Interface for video records.
    Enforces uniqueness of the canonical content code.
    """

    async def insert(
        self,
        person_id: int,
        url: str,
        video_code: Optional[str],
        type: VideoType,
        likes_count: int,
        pitch: Optional[str],
        relevance_rating: int,
        score: Optional[int],
    ) -> Video:
        """
        Insert a new video and assign its sequential id.

        Raises:
            UniqueConstraintError: video_code already belongs to another video
        """
        ...

    async def get(self, video_id: int) -> Optional[Video]:
        ...

    async def find_by_code(self, video_code: str) -> Optional[Video]:
        ...

    async def find_by_url(self, url: str) -> Optional[Video]:
        ...

    async def save(self, video: Video) -> None:
        """Persist changes to an existing video."""
        ...

    async def delete(self, video_id: int) -> bool:
        """Delete a video, returns True if it existed."""
        ...

    async def list_all(self) -> List[Video]:
        ...


@runtime_checkable
class ReviewRepository(Protocol):
    """Interface for the (video_id, host_id) -> host review relation."""

    async def get(self, video_id: int, host_id: int) -> Optional[HostReview]:
        ...

    async def for_video(self, video_id: int) -> Dict[int, HostReview]:
        """All stored rows of one video keyed by host id."""
        ...

    async def save(self, review: HostReview) -> None:
        ...

    async def delete_for_video(self, video_id: int) -> int:
        """Remove every row of a video, returns the number removed."""
        ...

    async def video_ids_with_status(
        self, host_id: int, statuses: Iterable[HostStatus]
    ) -> List[int]:
        ...


@runtime_checkable
class HostRepository(Protocol):
    """
    Interface for the host table and the per-host field catalog.
    Hosts are never deleted.
    """

    async def get(self, host_id: int) -> Optional[Host]:
        ...

    async def list_all(self) -> List[Host]:
        ...

    async def save(self, host: Host) -> None:
        ...

    async def next_id(self) -> int:
        """Smallest id greater than every id ever issued."""
        ...

    async def get_field(self, name: str) -> Optional[SchemaField]:
        ...

    async def ensure_field(self, field: SchemaField) -> bool:
        """
        Add a field to the catalog unless it already exists.

        Returns:
            True if the field was added, False if it was already present
        """
        ...

    async def list_fields(self, host_id: Optional[int] = None) -> List[SchemaField]:
        ...


@runtime_checkable
class PersonRepository(Protocol):
    """Interface for submitter attribution records."""

    async def get(self, person_id: int) -> Optional[Person]:
        ...

    async def list_all(self) -> List[Person]:
        ...
