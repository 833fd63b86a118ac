from typing import Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "INTERNAL"
    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code or self.default_status_code

    @property
    def detail(self) -> dict:
        """Tagged error body surfaced to clients verbatim."""
        return {"error": self.code, "message": self.message, "retryable": self.retryable}


class NotFound(ServiceError):
    code = "NOT_FOUND"
    default_status_code = status.HTTP_404_NOT_FOUND


class InvalidArgument(ServiceError):
    code = "INVALID_ARGUMENT"
    default_status_code = status.HTTP_400_BAD_REQUEST


class PreconditionFailed(ServiceError):
    """A payment-gated operation was attempted before its precondition holds."""

    code = "PRECONDITION_FAILED"
    default_status_code = status.HTTP_412_PRECONDITION_FAILED


class Conflict(ServiceError):
    code = "CONFLICT"
    default_status_code = status.HTTP_409_CONFLICT


class VerificationFailed(ServiceError):
    code = "VERIFICATION_FAILED"
    default_status_code = status.HTTP_400_BAD_REQUEST


class UpstreamUnavailable(ServiceError):
    """Payment gateway or meeting provider failure. Safe to retry."""

    code = "UPSTREAM_UNAVAILABLE"
    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
