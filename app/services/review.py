"""
Review service - main business logic orchestrator.
Coordinates submission, triage, per-host review and host management on
top of the state machine and schema evolution.
"""
import logging
from typing import Dict, List, Optional, Sequence

from app.core.exceptions import (
    DuplicateContentError,
    InvalidInputError,
    InvalidRatingError,
    NotFoundError,
    UniqueConstraintError,
)
from app.models.interfaces import (
    Database,
    PersonRepository,
    ReviewRepository,
    VideoRepository,
)
from app.models.schemas import (
    TAKEN_STATUSES,
    VALID_RATINGS,
    BulkTransitionItem,
    BulkTransitionResponse,
    ConsistencyReport,
    DuplicateCheckResponse,
    Host,
    HostBindings,
    HostListResponse,
    HostReview,
    HostStatus,
    HostStatusEntry,
    ProvisioningReport,
    ReconcileResponse,
    RelevanceGate,
    ReviewCounts,
    StatusHistory,
    TransitionResult,
    Video,
    VideoDetail,
    VideoListResponse,
    VideoType,
)
from app.services.identity import IdentityResolver
from app.services.invariants import find_violations
from app.services.registry import HostRegistry, HostRoster
from app.services.schema_evolution import SchemaEvolutionService
from app.services.state_machine import ReviewStateMachine
from app.services.taken_by import TakenByAggregator

logger = logging.getLogger(__name__)

NEVER = "Never"


def _sort_key(video: Video):
    """Trending first, then score (unscored last), then likes."""
    return (
        video.type is not VideoType.TRENDING,
        video.score is None,
        -(video.score or 0),
        -video.likes_count,
        video.id,
    )


class ReviewService:
    """
    Entry point for every review operation.

    Responsibilities:
    - Validate input and resolve duplicates at submission
    - Delegate rating and status writes to the state machine
    - Delegate host introduction to schema evolution
    - Serve read models (details, queues, counts, history)
    """

    def __init__(
            self,
            db: Database,
            video_repo: VideoRepository,
            review_repo: ReviewRepository,
            person_repo: PersonRepository,
            registry: HostRegistry,
            state_machine: ReviewStateMachine,
            schema_evolution: SchemaEvolutionService,
            identity: IdentityResolver,
            aggregator: TakenByAggregator,
            bulk_max_items: int = 200,
    ) -> None:
        self._db = db
        self._video_repo = video_repo
        self._review_repo = review_repo
        self._person_repo = person_repo
        self._registry = registry
        self._state_machine = state_machine
        self._schema_evolution = schema_evolution
        self._identity = identity
        self._aggregator = aggregator
        self._bulk_max_items = bulk_max_items

    @property
    def roster(self) -> HostRoster:
        return self._registry.current()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit_video(
            self,
            person_id: int,
            url: str,
            type: VideoType = VideoType.GENERAL,
            likes_count: int = 0,
            pitch: Optional[str] = None,
            relevance_rating: int = -1,
    ) -> Video:
        """
        Create a video unless its content is already known.

        Args:
            person_id: Submitter
            url: Link as entered; normalized before storage
            type: Content type
            likes_count: Likes at submission time, used for the score
            pitch: Optional free-text pitch
            relevance_rating: Initial rating; -1 leaves the video in triage

        Returns:
            The stored video with its derived fields set

        Raises:
            InvalidInputError: malformed URL, unknown submitter or type
            InvalidRatingError: rating outside the accepted set
            DuplicateContentError: same canonical code (or URL) exists
        """
        normalized, video_code = self._identity.resolve(url)

        try:
            type = VideoType(type)
        except ValueError:
            raise InvalidInputError(
                f"Unknown video type: {type}",
                details={"type": type, "allowed": [t.value for t in VideoType]},
            )
        if isinstance(relevance_rating, bool) or relevance_rating not in VALID_RATINGS:
            raise InvalidRatingError(relevance_rating, VALID_RATINGS)
        if likes_count is None or likes_count < 0:
            raise InvalidInputError(
                "likes_count must be a non-negative integer",
                details={"likes_count": likes_count},
            )
        if await self._person_repo.get(person_id) is None:
            raise InvalidInputError(
                f"Unknown submitter: {person_id}",
                details={"person_id": person_id},
            )

        existing = await self._identity.find_existing(normalized, video_code)
        if existing is not None:
            raise DuplicateContentError(existing.url, existing.id, video_code)

        try:
            async with self._db.transaction():
                video = await self._video_repo.insert(
                    person_id=person_id,
                    url=normalized,
                    video_code=video_code,
                    type=type,
                    likes_count=likes_count,
                    pitch=pitch,
                    relevance_rating=relevance_rating,
                    score=None,
                )
                video = await self._state_machine.initialize_video(video)
        except UniqueConstraintError as e:
            # Lost a race against a concurrent submission of the same content
            winner = await self._video_repo.find_by_code(video_code) if video_code else None
            raise DuplicateContentError(
                winner.url if winner else normalized,
                winner.id if winner else None,
                video_code,
            ) from e

        logger.info(
            f"Video submitted: id={video.id}, code={video_code}, "
            f"gate={video.gate.value}",
            extra={"video_id": video.id},
        )
        return video

    async def check_duplicate(self, url: str) -> DuplicateCheckResponse:
        return await self._identity.check_duplicate(url)

    # -------------------------------------------------------------------------
    # Workflow writes
    # -------------------------------------------------------------------------

    async def set_relevance(self, video_id: int, rating: int) -> Video:
        return await self._state_machine.set_relevance(video_id, rating)

    async def transition_host(
            self,
            video_id: int,
            host_id: int,
            status: HostStatus,
            note: Optional[str] = None,
            external_id: Optional[str] = None,
    ) -> TransitionResult:
        return await self._state_machine.transition_host(
            video_id, host_id, status, note=note, external_id=external_id
        )

    async def bulk_transition(
            self,
            items: Sequence[BulkTransitionItem],
    ) -> BulkTransitionResponse:
        """Apply independent transitions; reports success per entry."""
        if not items:
            raise InvalidInputError("At least one transition is required")
        if len(items) > self._bulk_max_items:
            raise InvalidInputError(
                f"Too many transitions: {len(items)} > {self._bulk_max_items}",
                details={"max_items": self._bulk_max_items},
            )

        results = await self._state_machine.bulk_transition(items)
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Bulk transition: succeeded={succeeded}, failed={len(results) - succeeded}")
        return BulkTransitionResponse(
            results=results,
            succeeded=succeeded,
            failed=len(results) - succeeded,
        )

    async def update_host_note(
            self,
            video_id: int,
            host_id: int,
            note: Optional[str],
    ) -> HostReview:
        return await self._state_machine.update_note(video_id, host_id, note)

    async def update_video_type(self, video_id: int, type: VideoType) -> Video:
        try:
            type = VideoType(type)
        except ValueError:
            raise InvalidInputError(
                f"Unknown video type: {type}",
                details={"type": type, "allowed": [t.value for t in VideoType]},
            )

        async with self._state_machine.locks.hold(video_id):
            async with self._db.transaction():
                video = await self._require_video(video_id)
                video = video.model_copy(update={"type": type})
                await self._video_repo.save(video)
        return video

    async def delete_video(self, video_id: int) -> None:
        """Remove a video with all its per-host rows; frees its canonical code."""
        async with self._state_machine.locks.hold(video_id):
            async with self._db.transaction():
                await self._require_video(video_id)
                rows = await self._review_repo.delete_for_video(video_id)
                await self._video_repo.delete(video_id)

        logger.info(
            f"Video deleted: id={video_id}, host_rows={rows}",
            extra={"video_id": video_id},
        )

    # -------------------------------------------------------------------------
    # Hosts
    # -------------------------------------------------------------------------

    async def register_host(
            self,
            name: str,
            host_id: Optional[int] = None,
            bindings: Optional[HostBindings] = None,
    ) -> ProvisioningReport:
        return await self._schema_evolution.register_host(
            name, host_id=host_id, bindings=bindings
        )

    async def deactivate_host(self, host_id: int) -> Host:
        """
        Soft-delete a host. Taken-by counts of the videos it held are
        corrected in the same transaction; the shrunken roster is published
        once that transaction has committed.

        Args:
            host_id: Host to remove from the roster

        Raises:
            UnknownHostError: no host with this id
        """
        async with self._db.transaction():
            affected = await self._review_repo.video_ids_with_status(host_id, TAKEN_STATUSES)
            host = await self._registry.deactivate(host_id)
            roster = await self._registry.snapshot()
            for video_id in affected:
                await self._aggregator.refresh(video_id, roster)

        self._registry.publish(roster)

        logger.info(
            f"Host {host_id} removed from roster, taken_by recomputed for {len(affected)} videos",
            extra={"host_id": host_id},
        )
        return host

    async def list_hosts(self, include_inactive: bool = False) -> HostListResponse:
        hosts = await self._registry.list_hosts(include_inactive=include_inactive)
        return HostListResponse(roster_version=self.roster.version, hosts=hosts)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_video(self, video_id: int) -> VideoDetail:
        video = await self._require_video(video_id)
        return await self._detail(video, self.roster)

    async def list_by_gate(
            self,
            gate: Optional[RelevanceGate] = None,
            limit: int = 50,
            offset: int = 0,
    ) -> VideoListResponse:
        """Videos in one gate (or all), in queue order."""
        videos = await self._video_repo.list_all()
        if gate is not None:
            videos = [v for v in videos if v.gate is gate]
        return await self._page(videos, limit, offset)

    async def list_by_host_status(
            self,
            host_id: int,
            status: HostStatus,
            limit: int = 50,
            offset: int = 0,
    ) -> VideoListResponse:
        """One host's queue for one status, e.g. its pending backlog."""
        self.roster.require(host_id)
        video_ids = await self._review_repo.video_ids_with_status(host_id, [status])

        videos: List[Video] = []
        for video_id in video_ids:
            video = await self._video_repo.get(video_id)
            if video is not None:
                videos.append(video)
        return await self._page(videos, limit, offset)

    async def get_status_history(self, video_id: int) -> StatusHistory:
        """Last transition time per active host, 'Never' when unset."""
        video = await self._require_video(video_id)
        reviews = await self._review_repo.for_video(video_id)

        entries = []
        for host in self.roster:
            review = reviews.get(host.id)
            updated_at = review.updated_at if review else None
            entries.append(
                HostStatusEntry(
                    host_id=host.id,
                    host_name=host.name,
                    status=review.status if review else None,
                    timestamp_field=host.bindings.timestamp_field,
                    updated_at=updated_at,
                    last_changed=(
                        updated_at.strftime("%Y-%m-%d %H:%M:%S UTC") if updated_at else NEVER
                    ),
                )
            )
        return StatusHistory(video_id=video.id, created_at=video.created_at, hosts=entries)

    async def get_counts(self) -> ReviewCounts:
        """Queue sizes per gate and per active host status."""
        roster = self.roster
        videos = await self._video_repo.list_all()

        gates: Dict[str, int] = {gate.value: 0 for gate in RelevanceGate}
        hosts: Dict[int, Dict[str, int]] = {
            host.id: {**{s.value: 0 for s in HostStatus}, "unset": 0} for host in roster
        }

        for video in videos:
            gates[video.gate.value] += 1
            if not video.gate.is_open:
                continue
            reviews = await self._review_repo.for_video(video.id)
            for host in roster:
                review = reviews.get(host.id)
                key = review.status.value if review and review.status else "unset"
                hosts[host.id][key] += 1

        return ReviewCounts(all=len(videos), gates=gates, hosts=hosts)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def reconcile_taken_by(self) -> ReconcileResponse:
        """Recompute every video's taken-by count from stored rows."""
        async with self._db.transaction():
            roster = self.roster
            videos = await self._video_repo.list_all()
            corrected = 0
            for video in videos:
                if await self._aggregator.refresh(video.id, roster):
                    corrected += 1

        if corrected:
            logger.warning(f"Reconcile corrected taken_by on {corrected} videos")
        return ReconcileResponse(checked=len(videos), corrected=corrected)

    async def check_consistency(self, video_id: int) -> ConsistencyReport:
        video = await self._require_video(video_id)
        reviews = await self._review_repo.for_video(video_id)
        violations = find_violations(video, reviews, self.roster)
        return ConsistencyReport(
            video_id=video_id,
            consistent=not violations,
            violations=violations,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _require_video(self, video_id: int) -> Video:
        video = await self._video_repo.get(video_id)
        if video is None:
            raise NotFoundError("Video", video_id)
        return video

    async def _detail(self, video: Video, roster: HostRoster) -> VideoDetail:
        stored = await self._review_repo.for_video(video.id)
        reviews = [
            stored.get(host.id) or HostReview(video_id=video.id, host_id=host.id)
            for host in roster
        ]
        return VideoDetail(video=video, gate=video.gate, reviews=reviews)

    async def _page(
            self,
            videos: List[Video],
            limit: int,
            offset: int,
    ) -> VideoListResponse:
        ordered = sorted(videos, key=_sort_key)
        roster = self.roster
        items = [await self._detail(v, roster) for v in ordered[offset:offset + limit]]
        return VideoListResponse(items=items, total=len(ordered))
