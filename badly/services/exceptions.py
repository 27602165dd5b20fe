"""
Domain errors raised by the session and user services.

All of them carry a message meant to be shown to the user as-is. They subclass
ValueError so callers that only care about "rejected input" can catch that.
"""


class BadlyError(ValueError):
    """Base class for rejected domain operations."""


class SessionValidationError(BadlyError):
    """Malformed or out-of-range input (dates, numbers, enum membership, lengths)."""


class SessionConflictError(BadlyError):
    """Uniqueness, capacity, duplicate membership or collection-size violation."""


class PermissionDeniedError(BadlyError):
    """The actor lacks the role required for the operation."""


class SessionNotFoundError(BadlyError):
    """The referenced session id is not in the current collection."""


class AuthenticationError(BadlyError):
    """Unknown user or wrong credentials."""


class UserValidationError(BadlyError):
    """Malformed account or push subscription input, or account limits reached."""
