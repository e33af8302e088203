"""
Exception hierarchy for the timetable watcher.

Fetch errors propagate to the polling service; cache and notification
errors are recovered where they occur; impact edge cases never leave the
classifier.
"""

from pathlib import Path
from typing import Optional, Union


class TimetableWatchError(Exception):
    """Base class for all watcher errors."""


class FetchError(TimetableWatchError):
    """Network, authentication or payload failure while fetching a week."""

    def __init__(self, message: str, week: Optional[int] = None):
        super().__init__(message)
        self.week = week


class CacheCorruptError(TimetableWatchError):
    """The persisted snapshot file cannot be read or parsed."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.path = path


class NotificationDeliveryError(TimetableWatchError):
    """A provider rejected a message or could not be reached."""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ImpactClassificationEdgeCase(TimetableWatchError):
    """Neighbour data around a cancellation is missing or unusable."""
