"""
Centralized configuration using Pydantic BaseSettings.
All environment variables are loaded here - no hardcoded values.
"""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Video Review API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Telemetry
    ENABLE_OTEL: bool = False  # Default to False to prevent gRPC errors in dev
    ENABLE_PROMETHEUS: bool = True

    # Hosts present at first start (ids 1..n in order)
    BOOTSTRAP_HOSTS: List[str] = ["Host 1", "Host 2"]

    # Submitters seeded into the attribution table
    DEFAULT_PEOPLE: List[str] = [
        "Alice Johnson",
        "Bob Smith",
        "Carol Davis",
        "David Wilson",
    ]

    # Host whose pending queue seeds a newly registered host
    REFERENCE_HOST_ID: int = 1

    # Bulk operations
    BULK_TRANSITION_MAX_ITEMS: int = 200

    # Pagination
    DEFAULT_LIST_LIMIT: int = 50
    MAX_LIST_LIMIT: int = 200

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance - singleton pattern."""
    return Settings()
