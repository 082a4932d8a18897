"""
Custom exception hierarchy for centralized error handling.
All exceptions map to appropriate HTTP status codes.
"""
from typing import Any, Dict, Iterable, Optional


class AppException(Exception):
    """Base exception for all application errors."""

    # Only transient storage failures are worth a caller-driven retry
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API response format."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
                "retryable": self.retryable,
            }
        }


class InvalidInputError(AppException):
    """Malformed input: bad URL, out-of-range value, unknown enum member."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: str = "INVALID_INPUT",
    ) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code=error_code,
            details=details,
        )


class InvalidRatingError(InvalidInputError):
    """Relevance rating outside the accepted set."""

    def __init__(self, rating: Any, allowed: Iterable[int]) -> None:
        allowed = list(allowed)
        super().__init__(
            message=f"Invalid relevance rating: {rating}. Allowed: {allowed}",
            details={"rating": rating, "allowed": allowed},
            error_code="INVALID_RATING",
        )


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any) -> None:
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier},
        )


class UnknownHostError(AppException):
    """Host id does not refer to an active host."""

    def __init__(self, host_id: Any) -> None:
        super().__init__(
            message=f"Unknown or inactive host: {host_id}",
            status_code=404,
            error_code="UNKNOWN_HOST",
            details={"host_id": host_id},
        )


class DuplicateContentError(AppException):
    """A video with the same canonical code (or URL) already exists."""

    def __init__(
        self,
        existing_url: str,
        existing_video_id: Optional[int] = None,
        video_code: Optional[str] = None,
    ) -> None:
        if video_code:
            message = (
                "This video already exists in the system "
                f"(found via video code: {video_code}). Existing URL: {existing_url}"
            )
        else:
            message = f"A video with this URL already exists: {existing_url}"
        super().__init__(
            message=message,
            status_code=409,
            error_code="DUPLICATE_CONTENT",
            details={
                "existing_url": existing_url,
                "existing_video_id": existing_video_id,
                "video_code": video_code,
            },
        )


class IllegalTransitionError(AppException):
    """Requested host status change is not reachable from the current state."""

    def __init__(
        self,
        video_id: int,
        host_id: int,
        current: Optional[str],
        attempted: Optional[str],
        reason: str,
    ) -> None:
        super().__init__(
            message=(
                f"Illegal transition for video {video_id}, host {host_id}: "
                f"{current or 'unset'} -> {attempted or 'unset'} ({reason})"
            ),
            status_code=409,
            error_code="ILLEGAL_TRANSITION",
            details={
                "video_id": video_id,
                "host_id": host_id,
                "current": current,
                "attempted": attempted,
                "reason": reason,
            },
        )


class FieldCollisionError(AppException):
    """Host field binding clashes with a reserved or already-owned field."""

    def __init__(self, field: str, owner: Optional[Any] = None) -> None:
        owned_by = "reserved" if owner is None else f"host {owner}"
        super().__init__(
            message=f"Field '{field}' is already in use ({owned_by})",
            status_code=409,
            error_code="FIELD_COLLISION",
            details={"field": field, "owner": owner},
        )


class ProvisioningFailedError(AppException):
    """Schema extension for a new host failed; safe to retry."""

    retryable = True

    def __init__(self, host_id: int, step: str, reason: str) -> None:
        super().__init__(
            message=f"Provisioning of host {host_id} failed at {step}: {reason}",
            status_code=503,
            error_code="PROVISIONING_FAILED",
            details={"host_id": host_id, "step": step, "reason": reason},
        )


class UniqueConstraintError(AppException):
    """Storage-level uniqueness violation."""

    def __init__(self, constraint: str, value: Any) -> None:
        super().__init__(
            message=f"Unique constraint violated: {constraint}={value}",
            status_code=409,
            error_code="UNIQUE_VIOLATION",
            details={"constraint": constraint, "value": value},
        )
