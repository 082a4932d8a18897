"""API routers package."""
from .health import router as health_router
from .hosts import router as hosts_router
from .videos import router as videos_router

__all__ = ["health_router", "hosts_router", "videos_router"]
