"""
Review state machine.
Sole writer of the relevance rating and of every per-host status.
Each operation runs under the video's lock inside one transaction, so the
status change, its timestamp, the score and the taken-by count commit together.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from app.core.exceptions import (
    AppException,
    IllegalTransitionError,
    InvalidInputError,
    InvalidRatingError,
    NotFoundError,
    UnknownHostError,
)
from app.core.locking import KeyedLock
from app.core.telemetry import HOST_TRANSITIONS, RELEVANCE_UPDATES
from app.models.interfaces import Database, ReviewRepository, VideoRepository
from app.models.schemas import (
    VALID_RATINGS,
    BulkItemResult,
    BulkTransitionItem,
    HostReview,
    HostStatus,
    RelevanceGate,
    TransitionResult,
    Video,
    utcnow,
)
from app.services.registry import HostRoster
from app.services.scoring import ScoreCalculator
from app.services.taken_by import ReviewChange, TakenByAggregator
from app.services.timestamps import StatusTimestampTracker

logger = logging.getLogger(__name__)

# Directed transition graph; the unset state is keyed by None
ALLOWED_TRANSITIONS: Dict[Optional[HostStatus], FrozenSet[HostStatus]] = {
    None: frozenset({HostStatus.PENDING}),
    HostStatus.PENDING: frozenset({HostStatus.ACCEPTED, HostStatus.REJECTED}),
    HostStatus.ACCEPTED: frozenset({HostStatus.ASSIGNED, HostStatus.PENDING}),
    HostStatus.REJECTED: frozenset({HostStatus.PENDING}),
    HostStatus.ASSIGNED: frozenset({HostStatus.ACCEPTED, HostStatus.PENDING}),
}


def transition_error(
        current: Optional[HostStatus],
        target: HostStatus,
        external_id: Optional[str] = None,
) -> Optional[str]:
    """
    Why `current -> target` is illegal, or None if it is allowed.
    Assumes the relevance gate is open.
    """
    if current == target:
        return "status is unchanged"
    if target not in ALLOWED_TRANSITIONS[current]:
        return "transition not allowed"
    if external_id is not None and target is not HostStatus.ASSIGNED:
        return "external id is only accepted with the assigned status"
    return None


def _status_value(status: Optional[HostStatus]) -> Optional[str]:
    return status.value if status is not None else None


def _normalize_note(note: str) -> Optional[str]:
    # Empty string clears the note
    return note if note != "" else None


class ReviewStateMachine:
    """
    Workflow core: relevance gate plus per-host statuses.

    Lock order is always video lock, then transaction. The roster is read
    inside the transaction, so a host published mid-operation is either
    fully seen or not seen at all.
    """

    def __init__(
            self,
            db: Database,
            video_repo: VideoRepository,
            review_repo: ReviewRepository,
            aggregator: TakenByAggregator,
            score_calculator: Optional[ScoreCalculator] = None,
            locks: Optional[KeyedLock] = None,
            clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the state machine with its collaborators.

        Args:
            db: Transaction boundary shared with the repositories
            video_repo: Repository for videos
            review_repo: Repository for per-host review rows
            aggregator: Keeps taken-by counts in step with status writes
            score_calculator: Sole writer of the score
            locks: Per-video locks; shared with callers that need them
            clock: Source of status timestamps
        """
        self._db = db
        self._video_repo = video_repo
        self._review_repo = review_repo
        self._aggregator = aggregator
        self._scores = score_calculator or ScoreCalculator()
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._roster = HostRoster(0, [])
        self._timestamps = StatusTimestampTracker()

    # -------------------------------------------------------------------------
    # Roster
    # -------------------------------------------------------------------------

    def load_roster(self, roster: HostRoster) -> None:
        """Adopt a newly published roster and regenerate timestamp tracking."""
        self._roster = roster
        self._timestamps.rebuild(roster)

    @property
    def roster(self) -> HostRoster:
        return self._roster

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    @property
    def timestamps(self) -> StatusTimestampTracker:
        return self._timestamps

    # -------------------------------------------------------------------------
    # Relevance gate
    # -------------------------------------------------------------------------

    async def initialize_video(self, video: Video) -> Video:
        """
        Bring a freshly inserted video into a consistent state.
        Must run inside the inserting transaction.
        """
        changes = await self._apply_gate(video.id, video.gate, self._roster)
        video = self._scores.refresh(video)
        video = await self._aggregator.apply(video, self._roster, changes)
        await self._video_repo.save(video)
        return video

    async def set_relevance(self, video_id: int, rating: int) -> Video:
        """
        Change a video's relevance rating.

        Entering the reviewable gate puts every unset active host into pending.
        Leaving it clears every host's status and external id; notes survive.

        Args:
            video_id: Video to re-rate
            rating: One of -1 (triage), 0 (trash) or 1..3 (reviewable)

        Raises:
            InvalidRatingError: rating outside {-1, 0, 1, 2, 3}
            NotFoundError: unknown video
        """
        if isinstance(rating, bool) or rating not in VALID_RATINGS:
            raise InvalidRatingError(rating, VALID_RATINGS)

        async with self._locks.hold(video_id):
            async with self._db.transaction():
                roster = self._roster
                video = await self._require_video(video_id)
                previous_gate = video.gate
                gate = RelevanceGate.from_rating(rating)

                changes = await self._apply_gate(video_id, gate, roster)

                video = video.model_copy(update={"relevance_rating": rating})
                video = self._scores.refresh(video)
                video = await self._aggregator.apply(video, roster, changes)
                await self._video_repo.save(video)

        RELEVANCE_UPDATES.labels(gate=gate.value).inc()
        logger.info(
            f"Relevance set: video={video_id}, rating={rating}, "
            f"gate={previous_gate.value}->{gate.value}, hosts_changed={len(changes)}",
            extra={"video_id": video_id},
        )
        return video

    async def _apply_gate(
            self,
            video_id: int,
            gate: RelevanceGate,
            roster: HostRoster,
    ) -> List[ReviewChange]:
        """Align every active host's row with the gate; returns the changes."""
        now = self._clock()
        changes: List[ReviewChange] = []

        for host in roster:
            before = await self._review_repo.get(video_id, host.id)

            if gate.is_open:
                if before is not None and before.status is not None:
                    continue
                after = (before or HostReview(video_id=video_id, host_id=host.id)).model_copy(
                    update={"status": HostStatus.PENDING, "external_id": None}
                )
            else:
                if before is None or (before.status is None and before.external_id is None):
                    continue
                after = before.model_copy(update={"status": None, "external_id": None})

            after = self._timestamps.stamp(before, after, now)
            await self._review_repo.save(after)
            changes.append((before, after))

        return changes

    # -------------------------------------------------------------------------
    # Host transitions
    # -------------------------------------------------------------------------

    async def transition_host(
            self,
            video_id: int,
            host_id: int,
            status: HostStatus,
            note: Optional[str] = None,
            external_id: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move one host's status along the transition graph.

        `note=None` keeps the current note, `note=""` clears it. An external id
        is accepted only with the assigned status and is cleared on any move
        away from it.

        Args:
            video_id: Video under review
            host_id: Active host whose status moves
            status: Target status
            note: Replacement note; None keeps, "" clears
            external_id: Production id, only with the assigned status

        Raises:
            UnknownHostError: host is not active
            NotFoundError: unknown video
            IllegalTransitionError: gate closed or edge not in the graph
        """
        try:
            status = HostStatus(status)
        except ValueError:
            raise InvalidInputError(
                f"Unknown host status: {status}",
                details={"status": status, "allowed": [s.value for s in HostStatus]},
            )

        async with self._locks.hold(video_id):
            try:
                async with self._db.transaction():
                    result = await self._transition_locked(
                        video_id, host_id, status, note, external_id
                    )
            except IllegalTransitionError as e:
                HOST_TRANSITIONS.labels(status=status.value, outcome="illegal").inc()
                logger.warning(e.message, extra={"video_id": video_id, "host_id": host_id})
                raise
            except (UnknownHostError, NotFoundError):
                HOST_TRANSITIONS.labels(status=status.value, outcome="not_found").inc()
                raise

        HOST_TRANSITIONS.labels(status=status.value, outcome="ok").inc()
        logger.info(
            f"Host transition: video={video_id}, host={host_id}, "
            f"{_status_value(result.previous_status) or 'unset'}->{status.value}, "
            f"taken_by={result.taken_by}",
            extra={"video_id": video_id, "host_id": host_id},
        )
        return result

    async def _transition_locked(
            self,
            video_id: int,
            host_id: int,
            status: HostStatus,
            note: Optional[str],
            external_id: Optional[str],
    ) -> TransitionResult:
        roster = self._roster
        roster.require(host_id)
        video = await self._require_video(video_id)

        before = await self._review_repo.get(video_id, host_id)
        current = before.status if before is not None else None

        if not video.gate.is_open:
            raise IllegalTransitionError(
                video_id,
                host_id,
                _status_value(current),
                status.value,
                reason=f"video is in the {video.gate.value} gate",
            )

        reason = transition_error(current, status, external_id)
        if reason is not None:
            raise IllegalTransitionError(
                video_id, host_id, _status_value(current), status.value, reason
            )

        update = {
            "status": status,
            "external_id": external_id if status is HostStatus.ASSIGNED else None,
        }
        if note is not None:
            update["note"] = _normalize_note(note)

        after = (before or HostReview(video_id=video_id, host_id=host_id)).model_copy(
            update=update
        )
        after = self._timestamps.stamp(before, after, self._clock())
        await self._review_repo.save(after)

        updated = await self._aggregator.apply(video, roster, [(before, after)])
        if updated is not video:
            await self._video_repo.save(updated)

        return TransitionResult(
            video_id=video_id,
            host_id=host_id,
            previous_status=current,
            status=status,
            external_id=after.external_id,
            taken_by=updated.taken_by,
            updated_at=after.updated_at or self._clock(),
        )

    async def bulk_transition(
            self,
            items: Sequence[BulkTransitionItem],
    ) -> List[BulkItemResult]:
        """
        Apply several independent transitions.
        Each entry commits or fails on its own; a failure does not stop the rest.
        """
        results: List[BulkItemResult] = []

        for item in items:
            try:
                result = await self.transition_host(
                    item.video_id,
                    item.host_id,
                    item.status,
                    note=item.note,
                    external_id=item.external_id,
                )
            except AppException as e:
                results.append(
                    BulkItemResult(
                        video_id=item.video_id,
                        host_id=item.host_id,
                        success=False,
                        error=e.to_dict()["error"],
                    )
                )
                continue

            results.append(
                BulkItemResult(
                    video_id=item.video_id,
                    host_id=item.host_id,
                    success=True,
                    result=result,
                )
            )

        return results

    # -------------------------------------------------------------------------
    # Notes and aggregates
    # -------------------------------------------------------------------------

    async def update_note(
            self,
            video_id: int,
            host_id: int,
            note: Optional[str],
    ) -> HostReview:
        """Set or clear a host's note without touching its status."""
        async with self._locks.hold(video_id):
            async with self._db.transaction():
                self._roster.require(host_id)
                await self._require_video(video_id)

                before = await self._review_repo.get(video_id, host_id)
                after = (before or HostReview(video_id=video_id, host_id=host_id)).model_copy(
                    update={"note": _normalize_note(note) if note is not None else None}
                )
                await self._review_repo.save(after)

        logger.info(
            f"Note updated: video={video_id}, host={host_id}",
            extra={"video_id": video_id, "host_id": host_id},
        )
        return after

    async def refresh_taken_by(self, video_id: int) -> bool:
        """Recompute one video's taken-by count from its stored rows."""
        async with self._locks.hold(video_id):
            async with self._db.transaction():
                return await self._aggregator.refresh(video_id, self._roster)

    async def _require_video(self, video_id: int) -> Video:
        video = await self._video_repo.get(video_id)
        if video is None:
            raise NotFoundError("Video", video_id)
        return video
