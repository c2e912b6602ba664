"""Exception types for the triple-helix engine."""

from __future__ import annotations


class HelixError(Exception):
    """Base class for engine errors."""
    pass


class InvalidTubeStateError(HelixError):
    """Raised when a tube handed to the engine has no position-0 entry."""

    def __init__(
        self,
        message: str,
        *,
        tube_number: int | None = None,
        thread_id: str | None = None,
    ):
        super().__init__(message)
        self.tube_number = tube_number
        self.thread_id = thread_id


class NoContentError(HelixError):
    """Raised when the active tube has nothing to show."""
    pass


class WriteRejectedError(HelixError):
    """Raised by a write strategy when the store refused the write."""
    pass


class MigrationError(HelixError):
    """Raised when anonymous -> authenticated migration fails and is rolled back."""

    def __init__(self, message: str, *, table: str | None = None):
        super().__init__(message)
        self.table = table


class InvalidIdentityError(HelixError):
    """Raised when a session token is missing, malformed, or forged."""
    pass
