"""NoticeWatcher package initialization."""

from .db import Database
from .errors import DownloadFailed, NoticeWatcherError, SourceUnavailable, StorageFailure
from .fetcher import DocumentFetcher
from .models import (
    CycleSummary,
    NormalizedNotice,
    NoticeRecord,
    Operator,
    OperatorCode,
    ReconcileSummary,
    RouteRef,
)
from .reconciler import NoticeReconciler
from .runner import NoticeWatcherRunner
from .sources import CTBAdapter, KMBAdapter, SourceAdapter, build_adapters

__all__ = [
    "CTBAdapter",
    "CycleSummary",
    "Database",
    "DocumentFetcher",
    "DownloadFailed",
    "KMBAdapter",
    "NormalizedNotice",
    "NoticeReconciler",
    "NoticeRecord",
    "NoticeWatcherError",
    "NoticeWatcherRunner",
    "Operator",
    "OperatorCode",
    "ReconcileSummary",
    "RouteRef",
    "SourceAdapter",
    "SourceUnavailable",
    "StorageFailure",
    "build_adapters",
]
