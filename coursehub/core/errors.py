from __future__ import annotations


class CourseHubError(Exception):
    """Base error for coursehub."""


class AuthenticationError(CourseHubError):
    """Missing or invalid credentials."""


class AuthorizationError(CourseHubError):
    """Policy evaluation denied the action."""

    def __init__(self, reason: str, *, action: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.action = action


class OwnershipViolationError(CourseHubError):
    """Actor tried to mutate a record owned by another user."""


class NotFoundError(CourseHubError):
    """Target resource does not exist (or is not visible to the actor)."""


class TransientDependencyError(CourseHubError):
    """Repository, lookup or cache backend failure."""


class DatabaseError(TransientDependencyError):
    """Database layer failure."""


class CacheBackendError(TransientDependencyError):
    """Cache backend unavailable or misbehaving."""
