"""
Pytest configuration and fixtures.
"""
import pytest
from fastapi.testclient import TestClient

from app.api.dependencies import build_review_service, get_review_service
from app.config import Settings
from app.main import app
from app.models.schemas import VideoType

YOUTUBE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def settings():
    """Settings with two bootstrap hosts and four submitters."""
    return Settings(
        BOOTSTRAP_HOSTS=["Host 1", "Host 2"],
        DEFAULT_PEOPLE=["Alice Johnson", "Bob Smith", "Carol Davis", "David Wilson"],
        REFERENCE_HOST_ID=1,
        BULK_TRANSITION_MAX_ITEMS=5,
    )


@pytest.fixture
def review_service(settings):
    """Fully wired service over a fresh in-memory database."""
    return build_review_service(settings)


@pytest.fixture
def state_machine(review_service):
    return review_service._state_machine


@pytest.fixture
def schema_evolution(review_service):
    return review_service._schema_evolution


@pytest.fixture
def test_client(review_service):
    """
    TestClient fixture with dependency overrides.
    Every test gets its own isolated service.
    """
    app.dependency_overrides[get_review_service] = lambda: review_service

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def submit(review_service):
    """Submit a video with sensible defaults."""

    async def _submit(
        url=YOUTUBE_URL,
        likes_count=0,
        relevance_rating=-1,
        type=VideoType.GENERAL,
        person_id=1,
    ):
        return await review_service.submit_video(
            person_id=person_id,
            url=url,
            type=type,
            likes_count=likes_count,
            relevance_rating=relevance_rating,
        )

    return _submit


@pytest.fixture
def statuses(review_service):
    """Current status per host for a video, None when unset."""

    async def _statuses(video_id):
        detail = await review_service.get_video(video_id)
        return {review.host_id: review.status for review in detail.reviews}

    return _statuses

