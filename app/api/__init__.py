"""API package - FastAPI routes and dependencies."""
from .dependencies import get_review_service
from .routers import health_router, hosts_router, videos_router

__all__ = ["get_review_service", "health_router", "hosts_router", "videos_router"]
