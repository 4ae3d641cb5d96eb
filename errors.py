"""
Errors raised by the repositories, reports and database helpers.

The HTTP layer maps each kind to a status code; callers using the
repositories directly catch them by type.
"""

from typing import Any, Dict, List, Optional


class StoreError(Exception):
    """Base class for every error this service raises on purpose."""

    status_code = 500

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"detail": self.message}
        if self.details:
            out["errors"] = self.details
        return out


class ValidationError(StoreError):
    """Missing or malformed field, or a unique field already taken."""

    status_code = 400


class NotFoundError(StoreError):
    status_code = 404


class StoreConnectionError(StoreError):
    """The database could not be reached after retrying."""

    status_code = 503


class EmptyResultError(StoreError):
    """An aggregate was asked for over zero documents."""

    status_code = 404
