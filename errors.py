"""
Error types raised by the store client, the report gateway and the sensor feed.

Each class carries the HTTP status the API layer answers with.
"""
from typing import Optional


class GatewayError(Exception):
    status_code = 500


class ValidationError(GatewayError):
    """A submission is missing a required field."""
    status_code = 400


class NotFoundError(GatewayError):
    status_code = 404


class UpstreamError(GatewayError):
    """The external store or geocoder was unreachable, rate limited or returned garbage."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ConflictError(UpstreamError):
    """A conditional write was rejected because the location changed underneath it."""


class UpdateError(GatewayError):
    pass


class ReportNotFoundError(NotFoundError, UpdateError):
    """Raised by patch operations on an identifier the store does not hold."""


class DeleteError(GatewayError):
    pass
