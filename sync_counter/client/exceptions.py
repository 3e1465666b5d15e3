"""Client-side error taxonomy.

TransientNetworkError  -> queue the change, retry later
CounterNotFoundError   -> surface to the user, never retried
InvalidInputError      -> surface to the user, never queued
"""


class SyncCounterError(Exception):
    """Base class for client errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(SyncCounterError):
    pass


class CounterNotFoundError(SyncCounterError):
    pass


class InvalidInputError(SyncCounterError):
    pass
