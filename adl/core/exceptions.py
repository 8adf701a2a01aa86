"""
ADL Contributions - Error Taxonomy
Exceptions raised by the contribution pipeline and mapped to HTTP responses.
"""

from typing import Optional


class SubmissionError(Exception):
    """Base class for errors surfaced to submitters."""

    status_code: int = 500
    code: Optional[str] = None
    retryable: bool = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.code:
            body["code"] = self.code
        return body


class ValidationError(SubmissionError):
    """Client-fixable payload problem."""
    status_code = 400


class FraudCheckError(SubmissionError):
    """Location evidence rejected (geofence, GPS mismatch, no GPS)."""
    status_code = 400
    code = "location_rejected"


class AuthenticationError(SubmissionError):
    status_code = 401


class AuthorizationError(SubmissionError):
    status_code = 403


class NotFoundError(SubmissionError):
    status_code = 404


class PhotoStorageError(SubmissionError):
    """Upstream photo store failure."""
    status_code = 500


class StorageUnavailableError(SubmissionError):
    """Event store unreachable or timed out."""
    status_code = 503
    code = "storage_unavailable"
    retryable = True

    def __init__(self, message: str = "Storage service temporarily unavailable"):
        super().__init__(message)
