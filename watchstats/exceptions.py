"""
Exceptions raised by the session consolidation and concurrency code.
"""


class WatchStatsError(Exception):
    """Base exception for watchstats."""
    pass


class InvalidSessionError(WatchStatsError, ValueError):
    """A session report that cannot be admitted (e.g. stop before start)."""
    pass


class SessionStoreError(WatchStatsError):
    """Storage access failed; any open batch was rolled back."""
    pass


class BatchCancelledError(WatchStatsError):
    """
    A batch insert was cancelled before it finished.

    Nothing from the batch was committed, so the caller can retry it as a whole.
    """

    def __init__(self, message: str = "Batch insert cancelled", processed: int = 0):
        super().__init__(message)
        self.processed = processed
