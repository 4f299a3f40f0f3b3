from collections.abc import Sequence


class SessionStoreError(Exception):
    """Base class for session store errors."""


class NotFoundError(SessionStoreError):
    """Raised when no record matches the requested key."""

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class SessionNotFoundError(NotFoundError):
    """Raised when a session lookup by id or secret matches nothing."""

    def __init__(self, message: str = "Session not found") -> None:
        super().__init__(message)


class DuplicateKeyError(SessionStoreError):
    """Raised when an insert violates the unique id or secret constraint."""

    def __init__(self, message: str = "Session with the same id or secret already exists") -> None:
        super().__init__(message)


class BackingStoreError(SessionStoreError):
    """Raised for any lower-level database failure.

    The driver exception is always available as ``__cause__``.
    """


class OperationTimeoutError(BackingStoreError, TimeoutError):
    """Raised when the configured operation deadline expires."""

    def __init__(self, message: str = "Database operation timed out") -> None:
        super().__init__(message)


class ValidationError(SessionStoreError):
    """Raised when an argument cannot be used as given."""


class PartialWriteError(ExceptionGroup):
    """Raised when one or more of several independent writes fail.

    Writes that succeeded are not rolled back. Inspect ``exceptions`` or use
    ``except*`` to find out which side failed.
    """

    def derive(self, excs: Sequence[Exception]) -> "PartialWriteError":
        return PartialWriteError(self.message, excs)
