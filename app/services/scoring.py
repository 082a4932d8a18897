"""
Score derivation from likes and relevance rating.
"""
from typing import Optional

from app.models.schemas import Video


def calculate_score(likes_count: Optional[int], relevance_rating: int) -> Optional[int]:
    """
    score = likes x rating once the video has been rated, else undefined.

    A rating of 0 (trash) still yields a defined score of 0.
    """
    if relevance_rating < 0:
        return None
    return (likes_count or 0) * relevance_rating


class ScoreCalculator:
    """Sole writer of `Video.score`."""

    def refresh(self, video: Video) -> Video:
        """Return the video with its score recomputed from current inputs."""
        score = calculate_score(video.likes_count, video.relevance_rating)
        if score == video.score:
            return video
        return video.model_copy(update={"score": score})
