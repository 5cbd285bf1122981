"""Domain errors raised by the access-control services.

Expected user-facing outcomes (wrong secret, throttled) are returned as
structured results by the gate, and uniqueness races are converged on inside
the services; these exceptions cover the cases a caller has to branch on.
"""

from __future__ import annotations


class SecurityError(Exception):
    """Base class for access-control failures."""


class NotFound(SecurityError):
    """No resource secret, lockout or enrollment for the given id."""


class PermissionDenied(SecurityError):
    """Caller is not allowed to perform the operation."""


class StoreUnavailable(SecurityError):
    """The backing store (or hashing collaborator) timed out or errored.

    Security checks that hit this must deny rather than allow.
    """
