"""
Domain error taxonomy.

Every error carries the HTTP status it maps to; the API layer translates
them into ``{"message": ...}`` responses in one exception handler.
"""

from __future__ import annotations


class FleetError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FleetError):
    """Malformed or missing input for an operation."""

    status_code = 400


class AuthenticationRequired(FleetError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDenied(FleetError):
    """Authenticated, but not allowed to perform this action."""

    status_code = 403


class NotFound(FleetError):
    status_code = 404


class InvalidStateTransition(FleetError):
    """Raised when a status change violates the state machine."""

    status_code = 400


class CapacityExceeded(FleetError):
    status_code = 400

    def __init__(self, available: int):
        super().__init__(f"Only {available} seats available")
        self.available = available


class SessionInvalidated(FleetError):
    """The request's session was superseded by a newer login."""

    status_code = 440
    reason = "logged_in_elsewhere"
    notification = (
        "Your session has been terminated because your account was "
        "logged in from another location."
    )

    def __init__(self, message: str = "Session expired"):
        super().__init__(message)


class ResourceBusy(FleetError):
    """Another request holds the lock on this resource; the client may retry."""

    status_code = 409
