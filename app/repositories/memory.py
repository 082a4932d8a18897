"""
In-memory repository implementations.
A small journaled table store gives the repositories atomic multi-record
writes and unique indexes. Production would replace these with Postgres
implementations of the same interfaces.
"""
import asyncio
import copy
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import (
    AsyncIterator,
    Dict,
    Generic,
    Hashable,
    Iterable,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from app.core.exceptions import FieldCollisionError, NotFoundError, UniqueConstraintError
from app.models.schemas import (
    Host,
    HostReview,
    HostStatus,
    Person,
    SchemaField,
    Video,
    VideoType,
)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_MISSING = object()


# =============================================================================
# Table store
# =============================================================================


class Table(Generic[K, V]):
    """
    Keyed rows owned by an InMemoryDatabase.
    Values are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self, name: str, db: "InMemoryDatabase") -> None:
        self.name = name
        self._db = db
        self._rows: Dict[K, V] = {}

    def get(self, key: K) -> Optional[V]:
        value = self._rows.get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: K, value: V) -> None:
        self._db._record(self, key, self._rows.get(key, _MISSING))
        self._rows[key] = copy.deepcopy(value)

    def delete(self, key: K) -> bool:
        if key not in self._rows:
            return False
        self._db._record(self, key, self._rows[key])
        del self._rows[key]
        return True

    def keys(self) -> List[K]:
        return list(self._rows.keys())

    def values(self) -> List[V]:
        return [copy.deepcopy(v) for v in self._rows.values()]

    def __contains__(self, key: object) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def _restore(self, key: K, previous: object) -> None:
        if previous is _MISSING:
            self._rows.pop(key, None)
        else:
            self._rows[key] = previous  # type: ignore[assignment]


class InMemoryDatabase:
    """
    Named tables with journaled transactions.

    Writes inside `transaction()` are undone if the block raises. Commits are
    serialized by a single lock; sequences are not rolled back, so ids may
    have gaps like a SERIAL column.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Table] = {}
        self._sequences: Dict[str, int] = {}
        self._journal: Optional[List[Tuple[Table, Hashable, object]]] = None
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"in_transaction_{id(self)}", default=False
        )

    def table(self, name: str) -> Table:
        """Get or create a table by name."""
        if name not in self._tables:
            self._tables[name] = Table(name, self)
        return self._tables[name]

    def next_value(self, sequence: str) -> int:
        """Advance a named sequence and return its new value."""
        value = self._sequences.get(sequence, 0) + 1
        self._sequences[sequence] = value
        return value

    def set_sequence(self, sequence: str, value: int) -> None:
        """Move a sequence forward (never backwards)."""
        self._sequences[sequence] = max(self._sequences.get(sequence, 0), value)

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction.get()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the block as one atomic unit of work."""
        if self._in_transaction.get():
            raise RuntimeError("Nested transactions are not supported")

        async with self._lock:
            token = self._in_transaction.set(True)
            self._journal = []
            try:
                yield
            except BaseException:
                self._rollback()
                raise
            finally:
                self._journal = None
                self._in_transaction.reset(token)

    def _record(self, table: Table, key: Hashable, previous: object) -> None:
        if self._journal is not None:
            self._journal.append((table, key, previous))

    def _rollback(self) -> None:
        journal = self._journal or []
        for table, key, previous in reversed(journal):
            table._restore(key, previous)


# =============================================================================
# Repositories
# =============================================================================


class InMemoryVideoRepository:
    """
    In-memory implementation of VideoRepository.
    Keeps a unique index of canonical content codes.
    """

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._videos: Table[int, Video] = db.table("videos")
        self._codes: Table[str, int] = db.table("video_codes")

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
        """Insert a video, enforcing the unique code index."""
        if video_code is not None and video_code in self._codes:
            raise UniqueConstraintError("videos.video_code", video_code)

        video = Video(
            id=self._db.next_value("videos_id_seq"),
            person_id=person_id,
            url=url,
            video_code=video_code,
            type=type,
            likes_count=likes_count,
            pitch=pitch,
            relevance_rating=relevance_rating,
            score=score,
        )
        self._videos.put(video.id, video)
        if video_code is not None:
            self._codes.put(video_code, video.id)
        return video

    async def get(self, video_id: int) -> Optional[Video]:
        return self._videos.get(video_id)

    async def find_by_code(self, video_code: str) -> Optional[Video]:
        video_id = self._codes.get(video_code)
        if video_id is None:
            return None
        return self._videos.get(video_id)

    async def find_by_url(self, url: str) -> Optional[Video]:
        for video in self._videos.values():
            if video.url == url:
                return video
        return None

    async def save(self, video: Video) -> None:
        existing = self._videos.get(video.id)
        if existing is None:
            raise NotFoundError("Video", video.id)
        if existing.video_code != video.video_code:
            raise ValueError("video_code is immutable once stored")
        self._videos.put(video.id, video)

    async def delete(self, video_id: int) -> bool:
        video = self._videos.get(video_id)
        if video is None:
            return False
        if video.video_code is not None:
            self._codes.delete(video.video_code)
        return self._videos.delete(video_id)

    async def list_all(self) -> List[Video]:
        return sorted(self._videos.values(), key=lambda v: v.id)


class InMemoryReviewRepository:
    """
    In-memory implementation of ReviewRepository.
    Rows are keyed by (video_id, host_id); a missing row means unset.
    """

    def __init__(self, db: InMemoryDatabase) -> None:
        self._reviews: Table[Tuple[int, int], HostReview] = db.table("host_reviews")

    async def get(self, video_id: int, host_id: int) -> Optional[HostReview]:
        return self._reviews.get((video_id, host_id))

    async def for_video(self, video_id: int) -> Dict[int, HostReview]:
        return {
            host_id: self._reviews.get((vid, host_id))
            for vid, host_id in self._reviews.keys()
            if vid == video_id
        }

    async def save(self, review: HostReview) -> None:
        self._reviews.put((review.video_id, review.host_id), review)

    async def delete_for_video(self, video_id: int) -> int:
        keys = [key for key in self._reviews.keys() if key[0] == video_id]
        for key in keys:
            self._reviews.delete(key)
        return len(keys)

    async def video_ids_with_status(
        self, host_id: int, statuses: Iterable[HostStatus]
    ) -> List[int]:
        wanted = set(statuses)
        return sorted(
            review.video_id
            for review in self._reviews.values()
            if review.host_id == host_id and review.status in wanted
        )


class InMemoryHostRepository:
    """
    In-memory implementation of HostRepository.
    Holds the host table and the catalog of provisioned per-host fields.
    """

    def __init__(
        self,
        db: InMemoryDatabase,
        seed_hosts: Optional[List[Host]] = None,
    ) -> None:
        self._db = db
        self._hosts: Table[int, Host] = db.table("hosts")
        self._fields: Table[str, SchemaField] = db.table("schema_fields")
        self._initialize_seed_hosts(seed_hosts or [])

    def _initialize_seed_hosts(self, hosts: List[Host]) -> None:
        """Load hosts that exist before the service starts, fully provisioned."""
        for host in hosts:
            seeded = host.model_copy(update={"provisioned": True})
            self._hosts.put(seeded.id, seeded)
            for kind, name in seeded.bindings.fields().items():
                self._fields.put(name, SchemaField(name=name, kind=kind, host_id=seeded.id))
            self._db.set_sequence("hosts_id_seq", seeded.id)

    async def get(self, host_id: int) -> Optional[Host]:
        return self._hosts.get(host_id)

    async def list_all(self) -> List[Host]:
        return sorted(self._hosts.values(), key=lambda h: h.id)

    async def save(self, host: Host) -> None:
        self._hosts.put(host.id, host)
        self._db.set_sequence("hosts_id_seq", host.id)

    async def next_id(self) -> int:
        return self._db.next_value("hosts_id_seq")

    async def get_field(self, name: str) -> Optional[SchemaField]:
        return self._fields.get(name)

    async def ensure_field(self, field: SchemaField) -> bool:
        existing = self._fields.get(field.name)
        if existing is not None:
            if existing.host_id != field.host_id:
                raise FieldCollisionError(field.name, existing.host_id)
            return False
        self._fields.put(field.name, field)
        return True

    async def list_fields(self, host_id: Optional[int] = None) -> List[SchemaField]:
        fields = self._fields.values()
        if host_id is not None:
            fields = [f for f in fields if f.host_id == host_id]
        return sorted(fields, key=lambda f: (f.host_id, f.name))


class InMemoryPersonRepository:
    """
    In-memory implementation of PersonRepository.
    Seeded with the default submitters.
    """

    def __init__(
        self,
        db: InMemoryDatabase,
        seed_names: Optional[List[str]] = None,
    ) -> None:
        self._db = db
        self._people: Table[int, Person] = db.table("people")
        for name in seed_names or []:
            self.add(name)

    def add(self, name: str) -> Person:
        """Register a submitter (used for seeding and tests)."""
        person = Person(id=self._db.next_value("people_id_seq"), name=name)
        self._people.put(person.id, person)
        return person

    async def get(self, person_id: int) -> Optional[Person]:
        return self._people.get(person_id)

    async def list_all(self) -> List[Person]:
        return sorted(self._people.values(), key=lambda p: p.id)
