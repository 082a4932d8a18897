"""
Videos API router.
Submission, triage and per-host review endpoints under /v1/videos.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.dependencies import get_review_service
from app.config import get_settings
from app.models.schemas import (
    BulkTransitionRequest,
    BulkTransitionResponse,
    ConsistencyReport,
    DuplicateCheckResponse,
    ErrorResponse,
    HostNoteRequest,
    HostReview,
    HostTransitionRequest,
    ReconcileResponse,
    RelevanceGate,
    RelevanceUpdateRequest,
    ReviewCounts,
    StatusHistory,
    SubmitVideoRequest,
    SubmitVideoResponse,
    TransitionResult,
    Video,
    VideoDetail,
    VideoListResponse,
    VideoTypeUpdateRequest,
)
from app.services.review import ReviewService

router = APIRouter(prefix="/v1/videos", tags=["videos"])


@router.post(
    "",
    response_model=SubmitVideoResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Video",
    description="""
    Submit a video topic for review.

    The URL is reduced to a canonical content code where the platform is
    recognized (YouTube, Instagram), so the same content behind a different
    URL shape is rejected as a duplicate.
    """,
    responses={
        201: {"description": "Video created"},
        400: {
            "model": ErrorResponse,
            "description": "Malformed URL, unknown submitter or rating",
        },
        409: {
            "model": ErrorResponse,
            "description": "Content already submitted",
        },
    },
)
async def submit_video(
    payload: SubmitVideoRequest,
    service: ReviewService = Depends(get_review_service),
) -> SubmitVideoResponse:
    video = await service.submit_video(
        person_id=payload.person_id,
        url=payload.url,
        type=payload.type,
        likes_count=payload.likes_count,
        pitch=payload.pitch,
        relevance_rating=payload.relevance_rating,
    )
    return SubmitVideoResponse(id=video.id, video_code=video.video_code)


@router.get(
    "",
    response_model=VideoListResponse,
    summary="List Videos",
)
async def list_videos(
    gate: Optional[RelevanceGate] = Query(
        default=None,
        description="Only videos in this relevance gate",
    ),
    limit: Optional[int] = Query(default=None, ge=1, description="Page size"),
    offset: int = Query(default=0, ge=0),
    service: ReviewService = Depends(get_review_service),
) -> VideoListResponse:
    """Videos in queue order: trending first, then score, then likes."""
    settings = get_settings()

    # Enforce limit from settings
    effective_limit = min(limit or settings.DEFAULT_LIST_LIMIT, settings.MAX_LIST_LIMIT)
    return await service.list_by_gate(gate=gate, limit=effective_limit, offset=offset)


@router.get("/counts", response_model=ReviewCounts, summary="Queue Counts")
async def get_counts(
    service: ReviewService = Depends(get_review_service),
) -> ReviewCounts:
    return await service.get_counts()


@router.get(
    "/check-duplicate",
    response_model=DuplicateCheckResponse,
    summary="Check Duplicate",
)
async def check_duplicate(
    url: str = Query(..., min_length=1, description="Candidate URL"),
    service: ReviewService = Depends(get_review_service),
) -> DuplicateCheckResponse:
    """Advisory lookup; submission re-checks against the unique code index."""
    return await service.check_duplicate(url)


@router.post(
    "/bulk-status",
    response_model=BulkTransitionResponse,
    summary="Bulk Host Transitions",
)
async def bulk_transition(
    payload: BulkTransitionRequest,
    service: ReviewService = Depends(get_review_service),
) -> BulkTransitionResponse:
    """Each entry succeeds or fails on its own."""
    return await service.bulk_transition(payload.items)


@router.post(
    "/reconcile-taken-by",
    response_model=ReconcileResponse,
    summary="Reconcile Taken-By Counts",
)
async def reconcile_taken_by(
    service: ReviewService = Depends(get_review_service),
) -> ReconcileResponse:
    return await service.reconcile_taken_by()


@router.get("/{video_id}", response_model=VideoDetail, summary="Get Video")
async def get_video(
    video_id: int,
    service: ReviewService = Depends(get_review_service),
) -> VideoDetail:
    return await service.get_video(video_id)


@router.delete(
    "/{video_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Video",
)
async def delete_video(
    video_id: int,
    service: ReviewService = Depends(get_review_service),
) -> Response:
    await service.delete_video(video_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/{video_id}/relevance",
    response_model=Video,
    summary="Set Relevance Rating",
    description="""
    Move a video between gates.

    - `-1`: awaiting triage
    - `0`: trash
    - `1..3`: reviewable; every active host starts at pending
    """,
)
async def set_relevance(
    video_id: int,
    payload: RelevanceUpdateRequest,
    service: ReviewService = Depends(get_review_service),
) -> Video:
    return await service.set_relevance(video_id, payload.relevance_rating)


@router.put("/{video_id}/type", response_model=Video, summary="Set Video Type")
async def update_video_type(
    video_id: int,
    payload: VideoTypeUpdateRequest,
    service: ReviewService = Depends(get_review_service),
) -> Video:
    return await service.update_video_type(video_id, payload.type)


@router.put(
    "/{video_id}/hosts/{host_id}/status",
    response_model=TransitionResult,
    summary="Transition Host Status",
    responses={
        404: {
            "model": ErrorResponse,
            "description": "Unknown video or inactive host",
        },
        409: {
            "model": ErrorResponse,
            "description": "Transition not allowed from the current state",
        },
    },
)
async def transition_host(
    video_id: int,
    host_id: int,
    payload: HostTransitionRequest,
    service: ReviewService = Depends(get_review_service),
) -> TransitionResult:
    return await service.transition_host(
        video_id,
        host_id,
        payload.status,
        note=payload.note,
        external_id=payload.external_id,
    )


@router.put(
    "/{video_id}/hosts/{host_id}/note",
    response_model=HostReview,
    summary="Set Host Note",
)
async def update_host_note(
    video_id: int,
    host_id: int,
    payload: HostNoteRequest,
    service: ReviewService = Depends(get_review_service),
) -> HostReview:
    return await service.update_host_note(video_id, host_id, payload.note)


@router.get(
    "/{video_id}/status-history",
    response_model=StatusHistory,
    summary="Host Status History",
)
async def get_status_history(
    video_id: int,
    service: ReviewService = Depends(get_review_service),
) -> StatusHistory:
    return await service.get_status_history(video_id)


@router.get(
    "/{video_id}/consistency",
    response_model=ConsistencyReport,
    summary="Check Video Consistency",
)
async def check_consistency(
    video_id: int,
    service: ReviewService = Depends(get_review_service),
) -> ConsistencyReport:
    return await service.check_consistency(video_id)
