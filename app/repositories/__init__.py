"""Repository implementations package."""
from .memory import (
    InMemoryDatabase,
    InMemoryHostRepository,
    InMemoryPersonRepository,
    InMemoryReviewRepository,
    InMemoryVideoRepository,
)

__all__ = [
    "InMemoryDatabase",
    "InMemoryHostRepository",
    "InMemoryPersonRepository",
    "InMemoryReviewRepository",
    "InMemoryVideoRepository",
]
