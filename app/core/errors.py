"""
Domain error taxonomy for scheduling, auto-confirmation and calendar sync.

Services raise these; routes translate them with ``to_http_exception`` (or
let the application-level handler do it) so HTTP concerns stay out of the
service layer.
"""

from typing import Optional

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for every error the scheduling core raises on purpose."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Scheduling error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class InvalidInputError(SchedulingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class InvalidStateError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Invalid state for this operation"


class ConflictError(SchedulingError):
    """The slot was free at check time but was taken before commit."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Slot is no longer available"


class SyncInProgressError(ConflictError):
    default_message = "A calendar sync is already running for this business"


class NotConfiguredError(SchedulingError):
    status_code = status.HTTP_412_PRECONDITION_FAILED
    default_message = "Calendar is not configured for this business"


class UpstreamFailureError(SchedulingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "External calendar provider error"


class OAuthError(UpstreamFailureError):
    default_message = "OAuth token exchange failed"


def to_http_exception(exc: SchedulingError) -> HTTPException:
    """Map a domain error onto an HTTPException with its status code."""
    return HTTPException(status_code=exc.status_code, detail=exc.message)
