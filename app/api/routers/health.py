"""
Health check router for observability.
"""
from fastapi import APIRouter, Depends

from app.api.dependencies import get_review_service
from app.services.review import ReviewService

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health Check")
async def health_check() -> dict:
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/ready", summary="Readiness Check")
async def readiness_check(
    service: ReviewService = Depends(get_review_service),
) -> dict:
    """
    Readiness check for Kubernetes.
    Returns the published host roster.
    """
    roster = service.roster

    return {
        "status": "ready",
        "roster": {
            "version": roster.version,
            "active_hosts": len(roster),
            "host_ids": list(roster.host_ids),
        },
    }
