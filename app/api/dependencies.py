"""
Dependency injection container.
Creates and wires all application components.
Uses FastAPI's dependency injection system.
"""
from functools import lru_cache
from typing import List, Optional

from app.config import Settings, get_settings
from app.core.locking import KeyedLock
from app.models.schemas import Host, HostBindings
from app.repositories.memory import (
    InMemoryDatabase,
    InMemoryHostRepository,
    InMemoryPersonRepository,
    InMemoryReviewRepository,
    InMemoryVideoRepository,
)
from app.services.identity import IdentityResolver
from app.services.registry import HostRegistry
from app.services.review import ReviewService
from app.services.schema_evolution import SchemaEvolutionService
from app.services.scoring import ScoreCalculator
from app.services.state_machine import ReviewStateMachine
from app.services.taken_by import TakenByAggregator


# =============================================================================
# Wiring
# =============================================================================


def bootstrap_hosts(settings: Settings) -> List[Host]:
    """Hosts that exist from first start, ids assigned in configured order."""
    return [
        Host(
            id=host_id,
            name=name,
            bindings=HostBindings.default_for(host_id),
            provisioned=True,
        )
        for host_id, name in enumerate(settings.BOOTSTRAP_HOSTS, start=1)
    ]


def build_review_service(settings: Optional[Settings] = None) -> ReviewService:
    """
    Assemble a complete, isolated review service over a fresh database.
    Used for the application singleton and for tests.
    """
    settings = settings or get_settings()
    db = InMemoryDatabase()
    hosts = bootstrap_hosts(settings)

    video_repo = InMemoryVideoRepository(db)
    review_repo = InMemoryReviewRepository(db)
    host_repo = InMemoryHostRepository(db, seed_hosts=hosts)
    person_repo = InMemoryPersonRepository(db, seed_names=settings.DEFAULT_PEOPLE)

    registry = HostRegistry(host_repo, initial_hosts=hosts)
    aggregator = TakenByAggregator(review_repo, video_repo)
    state_machine = ReviewStateMachine(
        db=db,
        video_repo=video_repo,
        review_repo=review_repo,
        aggregator=aggregator,
        score_calculator=ScoreCalculator(),
        locks=KeyedLock(),
    )
    registry.subscribe(state_machine.load_roster)

    schema_evolution = SchemaEvolutionService(
        db=db,
        host_repo=host_repo,
        review_repo=review_repo,
        video_repo=video_repo,
        registry=registry,
        reference_host_id=settings.REFERENCE_HOST_ID,
    )

    return ReviewService(
        db=db,
        video_repo=video_repo,
        review_repo=review_repo,
        person_repo=person_repo,
        registry=registry,
        state_machine=state_machine,
        schema_evolution=schema_evolution,
        identity=IdentityResolver(video_repo),
        aggregator=aggregator,
        bulk_max_items=settings.BULK_TRANSITION_MAX_ITEMS,
    )


# =============================================================================
# Singleton Instances (Application Lifetime)
# =============================================================================


@lru_cache()
def get_review_service() -> ReviewService:
    """
    Get singleton review service with all dependencies wired.
    This is the entry point for every video and host endpoint.
    """
    return build_review_service(get_settings())


# =============================================================================
# Cleanup Functions
# =============================================================================


def clear_caches() -> None:
    """Clear all cached singleton instances (for testing)."""
    get_review_service.cache_clear()
