"""Services package - business logic layer."""
from .identity import IdentityResolver, extract_video_code, normalize_url
from .registry import HostRegistry, HostRoster
from .review import ReviewService
from .schema_evolution import RESERVED_FIELDS, SchemaEvolutionService
from .scoring import ScoreCalculator, calculate_score
from .state_machine import ALLOWED_TRANSITIONS, ReviewStateMachine, transition_error
from .taken_by import TakenByAggregator, count_taken
from .timestamps import StatusTimestampTracker

__all__ = [
    "ALLOWED_TRANSITIONS",
    "HostRegistry",
    "HostRoster",
    "IdentityResolver",
    "RESERVED_FIELDS",
    "ReviewService",
    "ReviewStateMachine",
    "SchemaEvolutionService",
    "ScoreCalculator",
    "StatusTimestampTracker",
    "TakenByAggregator",
    "calculate_score",
    "count_taken",
    "extract_video_code",
    "normalize_url",
    "transition_error",
]
