"""Exception types raised by NoticeWatcher components."""

from __future__ import annotations


class NoticeWatcherError(Exception):
    """Base class for all NoticeWatcher failures."""


class SourceUnavailable(NoticeWatcherError):
    """A route catalog or per-route notice listing could not be fetched."""


class DownloadFailed(NoticeWatcherError):
    """A notice document could not be retrieved or written."""


class StorageFailure(NoticeWatcherError):
    """Reading or writing persisted notice state failed."""


__all__ = [
    "DownloadFailed",
    "NoticeWatcherError",
    "SourceUnavailable",
    "StorageFailure",
]
