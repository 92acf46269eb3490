"""Error taxonomy raised by the identity layer and the bug engine.

Every error is terminal for the request that triggered it. The HTTP layer maps
each class to a status code through :attr:`TrackerError.status_code`.
"""

from __future__ import annotations

from typing import Dict, Optional


class TrackerError(Exception):
    """Base class for all expected failures."""

    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0])


class ValidationError(TrackerError, ValueError):
    """Input is malformed or incomplete; ``fields`` maps field names to problems."""

    status_code = 400
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, fields: Optional[Dict[str, str]] = None) -> None:
        self.fields: Dict[str, str] = dict(fields or {})
        if message is None and self.fields:
            message = "Invalid or missing fields: " + ", ".join(sorted(self.fields))
        super().__init__(message)


class DuplicateEmail(TrackerError):
    status_code = 400
    default_message = "A user with that email already exists"


class InvalidCredentials(TrackerError):
    status_code = 401
    default_message = "Invalid email or password"


class InvalidToken(TrackerError):
    status_code = 401
    default_message = "Invalid authentication token"


class ExpiredToken(InvalidToken):
    default_message = "Authentication token has expired"


class NotFound(TrackerError):
    status_code = 404
    default_message = "Resource not found"


class Forbidden(TrackerError, PermissionError):
    status_code = 403
    default_message = "Not authorized to perform this action"


class ServiceUnavailable(TrackerError):
    status_code = 503
    default_message = "The data store is currently unavailable"


__all__ = [
    "DuplicateEmail",
    "ExpiredToken",
    "Forbidden",
    "InvalidCredentials",
    "InvalidToken",
    "NotFound",
    "ServiceUnavailable",
    "TrackerError",
    "ValidationError",
]
