"""Exceptions shared across the lifecycle core."""
from typing import Optional


class MediaTierError(Exception):
    """Base error for mediatier."""


class PathAuthorizationError(PermissionError):
    """A path escapes the configured media library root.

    Never retried and never silently ignored: callers surface it.
    """

    def __init__(self, path: str, root: str):
        super().__init__(f"Path '{path}' is outside the allowed media directory '{root}'")
        self.path = path
        self.root = root


class InvalidTransitionError(MediaTierError):
    """A manual transition was requested from a state that does not allow it."""


class MediaItemNotFoundError(MediaTierError):
    """No tracked item with the given id."""


class GateReentryError(RuntimeError):
    """The execution gate was requested again by the owner already holding it."""


class ServiceError(MediaTierError):
    """An upstream service call failed (network, timeout, non-2xx)."""

    def __init__(self, service: str, message: str, cause: Optional[Exception] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.cause = cause
