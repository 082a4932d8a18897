"""
Taken-by aggregator.
Keeps `Video.taken_by` equal to the number of active hosts holding the
video in an accepted or assigned state.
"""
import logging
from typing import Iterable, Optional, Sequence, Tuple

from app.models.interfaces import ReviewRepository, VideoRepository
from app.models.schemas import TAKEN_STATUSES, HostReview, Video
from app.services.registry import HostRoster

logger = logging.getLogger(__name__)

ReviewChange = Tuple[Optional[HostReview], HostReview]


def count_taken(reviews: Iterable[HostReview], host_ids: Iterable[int]) -> int:
    """Count rows of the given hosts whose status is accepted or assigned."""
    wanted = set(host_ids)
    return sum(
        1
        for review in reviews
        if review.host_id in wanted and review.status in TAKEN_STATUSES
    )


def status_changed(changes: Sequence[ReviewChange]) -> bool:
    """True if any change touches a status, not just notes or the aggregate."""
    for before, after in changes:
        previous = before.status if before is not None else None
        if previous != after.status:
            return True
    return False


class TakenByAggregator:
    """
    Sole writer of `Video.taken_by`.

    Runs as the second phase of a host write inside the same transaction.
    The count is always recomputed from the stored per-host rows, never from
    an in-memory delta, and writing the aggregate never counts as a status
    change, so recomputation cannot re-trigger itself.
    """

    def __init__(
        self,
        review_repo: ReviewRepository,
        video_repo: VideoRepository,
    ) -> None:
        self._review_repo = review_repo
        self._video_repo = video_repo

    async def compute(self, video_id: int, roster: HostRoster) -> int:
        reviews = await self._review_repo.for_video(video_id)
        return count_taken(reviews.values(), roster.host_ids)

    async def apply(
        self,
        video: Video,
        roster: HostRoster,
        changes: Sequence[ReviewChange],
    ) -> Video:
        """
        Return `video` with a recomputed taken-by count.

        Short-circuits when no status changed. The caller persists the video
        together with the rest of its transaction.

        Args:
            video: Video whose rows were just written
            roster: Hosts that count toward taken-by
            changes: (before, after) pairs of the rows written
        """
        if not status_changed(changes):
            return video

        taken = await self.compute(video.id, roster)
        if taken == video.taken_by:
            return video
        return video.model_copy(update={"taken_by": taken})

    async def refresh(self, video_id: int, roster: HostRoster) -> bool:
        """
        Recompute and persist the count for one video.
        Must run inside a transaction.

        Returns:
            True if the stored count was wrong and has been corrected
        """
        video = await self._video_repo.get(video_id)
        if video is None:
            return False

        taken = await self.compute(video_id, roster)
        if taken == video.taken_by:
            return False

        logger.info(
            f"taken_by corrected for video {video_id}: {video.taken_by} -> {taken}",
            extra={"video_id": video_id},
        )
        await self._video_repo.save(video.model_copy(update={"taken_by": taken}))
        return True
