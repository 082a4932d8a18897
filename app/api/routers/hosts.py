"""
Hosts API router.
Roster inspection and runtime host management under /v1/hosts.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.dependencies import get_review_service
from app.config import get_settings
from app.models.schemas import (
    ErrorResponse,
    Host,
    HostListResponse,
    HostStatus,
    ProvisioningReport,
    RegisterHostRequest,
    VideoListResponse,
)
from app.services.review import ReviewService

router = APIRouter(prefix="/v1/hosts", tags=["hosts"])


@router.get("", response_model=HostListResponse, summary="List Hosts")
async def list_hosts(
    include_inactive: bool = Query(default=False),
    service: ReviewService = Depends(get_review_service),
) -> HostListResponse:
    return await service.list_hosts(include_inactive=include_inactive)


@router.post(
    "",
    response_model=ProvisioningReport,
    status_code=status.HTTP_201_CREATED,
    summary="Register Host",
    description="""
    Add a reviewing host without downtime.

    Its per-video fields are provisioned and its pending queue is seeded
    from the reference host before it becomes visible. A failed run returns
    503 and is completed by repeating the same request.
    """,
    responses={
        201: {"description": "Host provisioned (or already provisioned)"},
        409: {
            "model": ErrorResponse,
            "description": "Field binding collides with an existing field",
        },
        503: {
            "model": ErrorResponse,
            "description": "Provisioning failed; retry is safe",
        },
    },
)
async def register_host(
    payload: RegisterHostRequest,
    service: ReviewService = Depends(get_review_service),
) -> ProvisioningReport:
    return await service.register_host(
        payload.name,
        host_id=payload.host_id,
        bindings=payload.bindings,
    )


@router.delete("/{host_id}", response_model=Host, summary="Deactivate Host")
async def deactivate_host(
    host_id: int,
    service: ReviewService = Depends(get_review_service),
) -> Host:
    """Soft delete: the host leaves the roster, its history is kept."""
    return await service.deactivate_host(host_id)


@router.get(
    "/{host_id}/videos",
    response_model=VideoListResponse,
    summary="Host Queue",
)
async def list_host_videos(
    host_id: int,
    status: HostStatus = Query(default=HostStatus.PENDING),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    service: ReviewService = Depends(get_review_service),
) -> VideoListResponse:
    settings = get_settings()
    effective_limit = min(limit or settings.DEFAULT_LIST_LIMIT, settings.MAX_LIST_LIMIT)
    return await service.list_by_host_status(
        host_id, status, limit=effective_limit, offset=offset
    )
