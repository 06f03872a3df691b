"""CLI entrypoint for the NoticeWatcher agent."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from noticewatcher.config import load_config
from noticewatcher.db import Database, resolve_sqlite_path
from noticewatcher.fetcher import DocumentFetcher
from noticewatcher.runner import NoticeWatcherRunner
from noticewatcher.schedule import cycle_due, cycle_timestamp
from noticewatcher.sources import build_adapters

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Transit notice monitoring agent")
    parser.add_argument("--init", action="store_true", help="initialize storage and exit")
    parser.add_argument(
        "--run",
        action="store_true",
        help="execute one monitoring cycle if none has succeeded since today's run hour",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="run even if a cycle already succeeded today",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="fetch and compare notices without downloading or persisting anything",
    )
    parser.add_argument(
        "--operator",
        action="append",
        metavar="CODE",
        help="limit the cycle to this operator (repeatable; overrides WATCH_OPERATORS)",
    )
    parser.add_argument(
        "--export-json",
        type=Path,
        metavar="PATH",
        help="write the notice state as nested JSON after any run",
    )
    parser.add_argument(
        "--export-xlsx",
        type=Path,
        metavar="PATH",
        help="write the notice inventory as an Excel workbook after any run",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_config()
    database = Database(path=resolve_sqlite_path(config.database_url))
    operators = [code.upper() for code in args.operator] if args.operator else config.operators
    runner = NoticeWatcherRunner(
        database=database,
        adapters=build_adapters(operators, timeout=config.request_timeout),
        fetcher_factory=lambda: DocumentFetcher(
            root=Path(config.document_root), timeout=config.request_timeout
        ),
        route_caps={code: config.route_cap(code) for code in operators},
        max_workers=config.max_workers,
        timezone=config.timezone,
    )

    if args.init:
        runner.init()
        return 0

    if not (args.run or args.export_json or args.export_xlsx):
        parser.print_help()
        return 1

    runner.init()
    exit_code = 0
    if args.run:
        now = cycle_timestamp(config.timezone)
        last_run = database.last_successful_run()
        if not args.force and not args.dry_run and not cycle_due(last_run, now, config.run_hour):
            logger.info(
                "Already ran at %s since today's %02d:00 %s run; skipping",
                last_run,
                config.run_hour,
                config.timezone,
            )
        else:
            summary = runner.run(now=now, dry_run=args.dry_run)
            for code, route, notice_id in summary.added:
                logger.info("New notice: %s | route %s | %s", code, route, notice_id)
            if not summary.added:
                logger.info("No new notices detected in this run.")
            if summary.operator_errors:
                exit_code = 2

    if args.export_json:
        args.export_json.parent.mkdir(parents=True, exist_ok=True)
        args.export_json.write_text(
            json.dumps(database.export_state(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info("Exported notice state to %s", args.export_json)

    if args.export_xlsx:
        database.export_notices_to_xlsx(args.export_xlsx)
        logger.info("Exported notice inventory to %s", args.export_xlsx)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
