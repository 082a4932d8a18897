"""
Unit tests for URL identity resolution and duplicate detection.
"""
import pytest

from app.core.exceptions import DuplicateContentError, InvalidInputError
from app.services.identity import extract_video_code, normalize_url


class TestExtractVideoCode:
    @pytest.mark.parametrize(
        "url",
        [
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42s",
            "https://youtu.be/dQw4w9WgXcQ",
            "https://youtu.be/dQw4w9WgXcQ?si=abc",
            "https://www.youtube.com/shorts/dQw4w9WgXcQ",
            "https://www.youtube.com/embed/dQw4w9WgXcQ",
            "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
        ],
    )
    def test_youtube_shapes_share_one_code(self, url):
        """Test every YouTube URL shape reduces to the same code."""
        assert extract_video_code(url) == "dQw4w9WgXcQ"

    @pytest.mark.parametrize(
        "url",
        [
            "https://www.instagram.com/reel/C1a2B3c4D5e/",
            "https://www.instagram.com/p/C1a2B3c4D5e/?igsh=xyz",
            "https://www.instagram.com/stories/somebody/C1a2B3c4D5e/",
        ],
    )
    def test_instagram_shapes(self, url):
        """Test Instagram post and reel URLs."""
        assert extract_video_code(url) == "C1a2B3c4D5e"

    @pytest.mark.parametrize(
        "url",
        [
            "https://vimeo.com/123456",
            "https://example.com/watch?v=short",
            "",
            None,
        ],
    )
    def test_unsupported_urls_have_no_code(self, url):
        """Unknown platforms carry no canonical code."""
        assert extract_video_code(url) is None


class TestNormalizeUrl:
    def test_trims_whitespace(self):
        """Test surrounding whitespace is ignored."""
        assert normalize_url("  https://example.com/a  ") == "https://example.com/a"

    @pytest.mark.parametrize("url", ["", "   ", "not a url", "ftp://example.com/x", "https://"])
    def test_rejects_malformed(self, url):
        """Test malformed URLs are refused."""
        with pytest.raises(InvalidInputError):
            normalize_url(url)


class TestDuplicateDetection:
    @pytest.mark.asyncio
    async def test_same_code_different_query_is_duplicate(self, submit):
        """Test extra query params do not hide a duplicate."""
        first = await submit(url="https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=1s")

        with pytest.raises(DuplicateContentError) as exc_info:
            await submit(url="https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL123")

        assert exc_info.value.details["existing_url"] == first.url
        assert exc_info.value.details["existing_video_id"] == first.id
        assert "found via video code: dQw4w9WgXcQ" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_short_link_matches_watch_link(self, submit):
        """Test youtu.be link matches a watch URL."""
        await submit(url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")

        with pytest.raises(DuplicateContentError):
            await submit(url="https://youtu.be/dQw4w9WgXcQ")

    @pytest.mark.asyncio
    async def test_codeless_urls_compare_exactly(self, submit):
        """Codeless URLs only collide on the exact string."""
        await submit(url="https://vimeo.com/123456")
        await submit(url="https://vimeo.com/123456?autoplay=1")

        with pytest.raises(DuplicateContentError):
            await submit(url="https://vimeo.com/123456")

    @pytest.mark.asyncio
    async def test_check_duplicate_is_advisory(self, submit, review_service):
        """Test the duplicate check never writes."""
        result = await review_service.check_duplicate("https://youtu.be/dQw4w9WgXcQ")
        assert result.is_duplicate is False
        assert result.video_code == "dQw4w9WgXcQ"

        video = await submit()
        result = await review_service.check_duplicate("https://youtu.be/dQw4w9WgXcQ")

        assert result.is_duplicate is True
        assert result.video_id == video.id
        assert result.existing_url == video.url

    @pytest.mark.asyncio
    async def test_insert_race_surfaces_as_duplicate(self, submit, review_service):
        """Test a lost insert race is reported as a duplicate."""
        first = await submit()

        # Simulate a racer that passed the advisory check before `first` committed
        async def no_existing(url, code):
            return None

        review_service._identity.find_existing = no_existing

        with pytest.raises(DuplicateContentError) as exc_info:
            await submit(url="https://youtu.be/dQw4w9WgXcQ")

        assert exc_info.value.details["existing_video_id"] == first.id

    @pytest.mark.asyncio
    async def test_deleted_video_frees_its_code(self, submit, review_service):
        """Test deleting a video frees its code for resubmission."""
        video = await submit()
        await review_service.delete_video(video.id)

        again = await submit()

        assert again.id != video.id
        assert again.video_code == "dQw4w9WgXcQ"
