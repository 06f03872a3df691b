"""Reconcile an operator's advertised notices against persisted state."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional, Set

from .db import Database
from .errors import DownloadFailed, SourceUnavailable, StorageFailure
from .fetcher import DocumentFetcher
from .models import NormalizedNotice, NoticeFailure, NoticeKey, ReconcileSummary
from .sources import SourceAdapter

logger = logging.getLogger(__name__)


@dataclass
class NoticeReconciler:
    """Runs one fetch-compare-apply pass for a single operator."""

    database: Database
    fetcher: DocumentFetcher

    def reconcile(
        self,
        adapter: SourceAdapter,
        now: dt.datetime,
        max_routes: Optional[int] = None,
        dry_run: bool = False,
    ) -> ReconcileSummary:
        """Bring stored notice state for ``adapter``'s operator in line with the source.

        Notices not yet recorded are downloaded and inserted, known ones are
        touched, and previously active notices the scan no longer reports are
        retired. Retirement only considers routes that were scanned completely:
        routes beyond ``max_routes`` and routes whose listing failed keep their
        state until a later pass covers them.

        Raises SourceUnavailable if the route catalog cannot be fetched and
        StorageFailure if the active-set snapshot cannot be read.
        """
        code = adapter.operator.code.value
        executed_at = now.isoformat()
        summary = ReconcileSummary(operator_code=code, executed_at=executed_at)

        routes = adapter.list_routes()
        previously_active = self.database.active_notice_keys(code)
        logger.info(
            "%s: %d routes in catalog, %d active notices on record",
            code,
            len(routes),
            len(previously_active),
        )

        skipped_routes: Set[str] = set()
        if max_routes and len(routes) > max_routes:
            summary.routes_skipped = len(routes) - max_routes
            logger.info(
                "%s: route cap %d applied, skipping %d routes this run",
                code,
                max_routes,
                summary.routes_skipped,
            )
            skipped_routes = {route_ref.route for route_ref in routes[max_routes:]}
            routes = routes[:max_routes]

        seen: Set[NoticeKey] = set()
        scanned_routes: Set[str] = set()
        failed_routes: Set[str] = set()

        for route_ref in routes:
            route = route_ref.route
            scanned_routes.add(route)
            try:
                notices = adapter.list_notices(route_ref)
            except SourceUnavailable as exc:
                logger.warning("%s: notice fetch failed for route %s: %s", code, route_ref.key, exc)
                failed_routes.add(route)
                summary.routes_failed.append(route_ref.key)
                summary.failures.append(NoticeFailure(route=route, notice_id=None, reason=str(exc)))
                continue

            summary.routes_scanned += 1
            logger.debug("%s: route %s advertises %d notices", code, route_ref.key, len(notices))

            for notice in notices:
                key = (route, notice.notice_id)
                seen.add(key)
                try:
                    self._apply(code, route, notice, now, summary, dry_run)
                except (DownloadFailed, StorageFailure) as exc:
                    logger.error(
                        "%s: could not record notice %s on route %s: %s",
                        code,
                        notice.notice_id,
                        route,
                        exc,
                    )
                    summary.failures.append(
                        NoticeFailure(route=route, notice_id=notice.notice_id, reason=str(exc))
                    )

        # A route stored under several directions is covered only if every
        # direction was listed in this pass.
        covered = scanned_routes - failed_routes - skipped_routes
        for route, notice_id in sorted(previously_active - seen):
            if route not in covered:
                continue
            logger.info("%s: notice %s on route %s is no longer advertised", code, notice_id, route)
            if dry_run:
                summary.retired.append((route, notice_id))
                continue
            try:
                if self.database.retire(code, route, notice_id, now):
                    summary.retired.append((route, notice_id))
            except StorageFailure as exc:
                logger.error(
                    "%s: could not retire notice %s on route %s: %s", code, notice_id, route, exc
                )
                summary.failures.append(
                    NoticeFailure(route=route, notice_id=notice_id, reason=str(exc))
                )

        logger.info(
            "%s: +%d new / =%d seen / ^%d reappeared / -%d retired / !%d failures",
            code,
            len(summary.added),
            len(summary.refreshed),
            len(summary.reappeared),
            len(summary.retired),
            len(summary.failures),
        )
        return summary

    def _apply(
        self,
        code: str,
        route: str,
        notice: NormalizedNotice,
        now: dt.datetime,
        summary: ReconcileSummary,
        dry_run: bool,
    ) -> None:
        key = (route, notice.notice_id)
        if key in summary.added:
            return
        if not self.database.exists(code, route, notice.notice_id):
            logger.info("%s: new notice found: %s - %s", code, route, notice.notice_id)
            if not dry_run:
                path = self.fetcher.download(notice.document_url, code, route, notice.notice_id, now)
                self.database.insert(code, route, notice, now, document_path=path)
            summary.added.append(key)
            return

        if dry_run:
            summary.refreshed.append(key)
            return
        if self.database.touch(code, route, notice.notice_id, now):
            logger.info("%s: notice %s on route %s reappeared", code, notice.notice_id, route)
            summary.reappeared.append(key)
        else:
            summary.refreshed.append(key)
