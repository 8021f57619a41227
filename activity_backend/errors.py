"""
Error types raised by the service layer.
The HTTP layer maps them to `{error, details}` responses in main.py.
"""
from typing import Any, Optional


class ActivityServiceError(Exception):
    """Base exception for service errors."""

    status_code = 500

    def __init__(self, message: str, details: Any = None):
        self.message = message
        self.details = details
        super().__init__(f"{message}: {details}" if details is not None else message)


class CredentialRefreshFailure(ActivityServiceError):
    """Raised when the Strava token exchange is rejected or unreachable."""


class RemoteCallFailure(ActivityServiceError):
    """Raised on a non-2xx response or transport error from the activity API.

    Attributes:
        status: HTTP status code, or None for transport errors
        body: Response body text (or the transport error message)
    """

    def __init__(self, status: Optional[int], body: str, message: str = "Strava request failed"):
        self.status = status
        self.body = body
        super().__init__(message, {"status": status, "body": body})


class DatasetNotFound(ActivityServiceError):
    """Raised when analysis is requested before any dataset was saved."""

    status_code = 404
