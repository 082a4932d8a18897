"""Core infrastructure components."""
from .exceptions import (
    AppException,
    DuplicateContentError,
    FieldCollisionError,
    IllegalTransitionError,
    InvalidInputError,
    InvalidRatingError,
    NotFoundError,
    ProvisioningFailedError,
    UniqueConstraintError,
    UnknownHostError,
)
from .locking import KeyedLock

__all__ = [
    "AppException",
    "DuplicateContentError",
    "FieldCollisionError",
    "IllegalTransitionError",
    "InvalidInputError",
    "InvalidRatingError",
    "KeyedLock",
    "NotFoundError",
    "ProvisioningFailedError",
    "UniqueConstraintError",
    "UnknownHostError",
]
