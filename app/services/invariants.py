"""
Consistency checks over one video and its per-host rows.
"""
from typing import Dict, List

from app.models.schemas import HostReview, HostStatus, RelevanceGate, Video
from app.services.registry import HostRoster
from app.services.scoring import calculate_score
from app.services.taken_by import count_taken


def find_violations(
    video: Video,
    reviews: Dict[int, HostReview],
    roster: HostRoster,
) -> List[str]:
    """
    Describe every broken invariant of a video, empty when consistent.

    Checked: closed gates hold no host status, taken-by matches the active
    hosts' rows, external ids only accompany the assigned status, and the
    score matches its inputs.

    Args:
        video: Stored video
        reviews: Its rows keyed by host id
        roster: Hosts whose rows count
    """
    violations: List[str] = []
    gate = video.gate

    for host in roster:
        review = reviews.get(host.id)
        status = review.status if review is not None else None

        if gate is not RelevanceGate.REVIEWABLE and status is not None:
            violations.append(
                f"host {host.id} has status '{status.value}' "
                f"while the video is in the {gate.value} gate"
            )

    for host_id, review in reviews.items():
        if review.external_id is not None and review.status is not HostStatus.ASSIGNED:
            violations.append(
                f"host {host_id} has external id '{review.external_id}' "
                f"without the assigned status"
            )

    expected_taken = count_taken(reviews.values(), roster.host_ids)
    if video.taken_by != expected_taken:
        violations.append(
            f"taken_by is {video.taken_by}, expected {expected_taken}"
        )

    expected_score = calculate_score(video.likes_count, video.relevance_rating)
    if video.score != expected_score:
        violations.append(f"score is {video.score}, expected {expected_score}")

    return violations
