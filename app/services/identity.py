"""
Identity resolver.
Recognizes the same content behind different URLs by extracting a
platform-specific canonical code.
"""
import logging
import re
from typing import List, Optional, Pattern, Tuple
from urllib.parse import urlparse

from app.core.exceptions import InvalidInputError
from app.models.interfaces import VideoRepository
from app.models.schemas import DuplicateCheckResponse, Video

logger = logging.getLogger(__name__)

CODE_CHARS = r"([a-zA-Z0-9_-]{11})"

YOUTUBE_PATTERNS: List[Pattern[str]] = [
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)" + CODE_CHARS),
    re.compile(r"youtube\.com/shorts/" + CODE_CHARS),
    re.compile(r"youtube\.com/embed/" + CODE_CHARS),
    re.compile(r"m\.youtube\.com/watch\?v=" + CODE_CHARS),
]

INSTAGRAM_PATTERNS: List[Pattern[str]] = [
    re.compile(r"instagram\.com/reel/" + CODE_CHARS),
    re.compile(r"instagram\.com/p/" + CODE_CHARS),
    re.compile(r"instagram\.com/stories/[^/]+/" + CODE_CHARS),
]

# Platform families are tried in order
PATTERN_FAMILIES: List[Tuple[str, List[Pattern[str]]]] = [
    ("youtube", YOUTUBE_PATTERNS),
    ("instagram", INSTAGRAM_PATTERNS),
]


def normalize_url(url: str) -> str:
    """
    Trim and validate a submitted URL.

    Raises:
        InvalidInputError: not an absolute http(s) URL
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("URL is required", details={"url": url})

    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInputError(
            f"Malformed URL: {url}",
            details={"url": url},
        )
    return url


def extract_video_code(url: Optional[str]) -> Optional[str]:
    """
    Extract the 11-character canonical code for supported platforms.

    Returns None when no pattern matches; duplicate detection then falls
    back to exact URL equality.
    """
    if not url or not isinstance(url, str):
        return None

    for _platform, patterns in PATTERN_FAMILIES:
        for pattern in patterns:
            match = pattern.search(url)
            if match:
                return match.group(1)
    return None


class IdentityResolver:
    """Advisory duplicate detection over canonical codes and URLs."""

    def __init__(self, video_repo: VideoRepository) -> None:
        self._video_repo = video_repo

    def resolve(self, url: str) -> Tuple[str, Optional[str]]:
        """Return the normalized URL and its canonical code (if any)."""
        normalized = normalize_url(url)
        return normalized, extract_video_code(normalized)

    async def find_existing(self, url: str, video_code: Optional[str]) -> Optional[Video]:
        """Existing video with the same code, or with the same URL when code-less."""
        if video_code:
            return await self._video_repo.find_by_code(video_code)
        return await self._video_repo.find_by_url(url)

    async def check_duplicate(self, url: str) -> DuplicateCheckResponse:
        """
        Check whether a URL refers to content already submitted.

        The answer is advisory; the unique code index settles races at insert.
        """
        normalized, video_code = self.resolve(url)
        existing = await self.find_existing(normalized, video_code)

        if existing is None:
            return DuplicateCheckResponse(is_duplicate=False, video_code=video_code)

        logger.info(
            f"Duplicate detected: code={video_code}, existing_video={existing.id}",
            extra={"video_id": existing.id},
        )
        return DuplicateCheckResponse(
            is_duplicate=True,
            video_code=video_code,
            existing_url=existing.url,
            video_id=existing.id,
        )
