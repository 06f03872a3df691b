"""Core execution workflow for NoticeWatcher."""

from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Sequence

from .db import Database
from .errors import StorageFailure
from .fetcher import DocumentFetcher
from .models import CycleSummary, ReconcileSummary
from .reconciler import NoticeReconciler
from .schedule import cycle_timestamp
from .sources import SourceAdapter

logger = logging.getLogger(__name__)


@dataclass
class NoticeWatcherRunner:
    """Coordinates reconciliation passes for every configured operator.

    Each operator pass gets its own DocumentFetcher from ``fetcher_factory``
    so HTTP sessions are never shared between worker threads.
    """

    database: Database
    adapters: Sequence[SourceAdapter]
    fetcher_factory: Callable[[], DocumentFetcher]
    route_caps: Mapping[str, Optional[int]] = field(default_factory=dict)
    max_workers: int = 2
    timezone: str = "Asia/Hong_Kong"

    def init(self) -> None:
        """Initialize required persistence structures."""
        logger.info("Initializing database at %s", self.database.path)
        self.database.initialize()

    def run(self, now: dt.datetime | None = None, dry_run: bool = False) -> CycleSummary:
        """Execute one cycle; operator failures are logged and never propagate."""
        if now is None:
            now = cycle_timestamp(self.timezone)
        executed_at = now.isoformat()
        logger.info(
            "Starting cycle at %s for %s",
            executed_at,
            ", ".join(adapter.operator.code.value for adapter in self.adapters),
        )
        summaries: Dict[str, ReconcileSummary] = {}
        errors: Dict[str, str] = {}
        workers = max(1, min(self.max_workers, len(self.adapters)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="operator") as pool:
            futures = {}
            for adapter in self.adapters:
                code = adapter.operator.code.value
                reconciler = NoticeReconciler(
                    database=self.database, fetcher=self.fetcher_factory()
                )
                futures[code] = pool.submit(
                    reconciler.reconcile,
                    adapter,
                    now,
                    self.route_caps.get(code),
                    dry_run,
                )
            for code, future in futures.items():
                try:
                    summaries[code] = future.result()
                except Exception as exc:  # noqa: BLE001
                    logger.exception("%s: reconciliation pass failed", code)
                    errors[code] = f"{type(exc).__name__}: {exc}"

        if dry_run:
            status = "dry_run"
        elif not errors:
            status = "success"
        elif summaries:
            status = "partial"
        else:
            status = "error"

        summary = CycleSummary(
            executed_at=executed_at,
            status=status,
            operator_summaries=summaries,
            operator_errors=errors,
        )
        note = _format_note(summary, prefix="dry-run " if dry_run else "")
        try:
            self.database.add_run(executed_at=executed_at, status=status, notes=note)
        except StorageFailure:
            logger.exception("Failed to record run ledger entry for %s", executed_at)
        logger.info("Cycle %s finished with status %s: %s", executed_at, status, note)
        return summary


def _format_note(summary: CycleSummary, prefix: str = "") -> str:
    """Render a concise run note summarizing each operator's outcome."""
    parts = []
    for code, result in sorted(summary.operator_summaries.items()):
        parts.append(
            f"{code}(+{len(result.added)} / -{len(result.retired)} / "
            f"={len(result.refreshed) + len(result.reappeared)} / !{len(result.failures)})"
        )
    for code, error in sorted(summary.operator_errors.items()):
        parts.append(f"{code}(failed: {error})")
    return prefix + " ".join(parts)
