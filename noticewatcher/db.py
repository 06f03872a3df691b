"""SQLite-backed notice store and run ledger."""

from __future__ import annotations

import datetime as dt
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Set, Tuple

from openpyxl import Workbook

from .errors import StorageFailure
from .models import NormalizedNotice, NoticeKey, NoticeRecord


SQLITE_PREFIX = "sqlite://"

XLSX_COLUMNS = (
    "operator_code",
    "route",
    "notice_id",
    "is_active",
    "discovered_at",
    "last_seen_at",
    "document_url",
    "document_path",
)


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


def _timestamp(value: dt.datetime | str) -> str:
    if isinstance(value, dt.datetime):
        return value.isoformat()
    return value


@dataclass
class Database:
    """Thin wrapper around sqlite3 for notice state and run history.

    Every mutation runs in its own transaction. Writes are serialised through
    one lock so operator passes running in parallel threads never interleave
    their read-modify-write steps.
    """

    path: Path
    _write_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, timeout=30)
        except (OSError, sqlite3.Error) as exc:
            raise StorageFailure(f"cannot open {self.path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageFailure(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def _writer(self) -> Iterator[sqlite3.Connection]:
        with self._write_lock, self.connect() as conn:
            yield conn

    def initialize(self) -> None:
        with self._writer() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    executed_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    notes TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notices (
                    operator_code TEXT NOT NULL,
                    route TEXT NOT NULL,
                    notice_id TEXT NOT NULL,
                    document_url TEXT NOT NULL,
                    document_path TEXT NOT NULL DEFAULT '',
                    discovered_at TEXT NOT NULL,
                    last_seen_at TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY(operator_code, route, notice_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS notice_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operator_code TEXT NOT NULL,
                    route TEXT NOT NULL,
                    notice_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    FOREIGN KEY(operator_code, route, notice_id)
                        REFERENCES notices(operator_code, route, notice_id)
                )
                """
            )
            columns = {row[1] for row in conn.execute("PRAGMA table_info(notices)")}
            if "document_path" not in columns:
                conn.execute(
                    "ALTER TABLE notices ADD COLUMN document_path TEXT NOT NULL DEFAULT ''"
                )

    def add_run(self, executed_at: str, status: str, notes: str | None) -> None:
        with self._writer() as conn:
            conn.execute(
                "INSERT INTO runs (executed_at, status, notes) VALUES (?, ?, ?)",
                (executed_at, status, notes),
            )

    def recent_runs(self, limit: int = 10) -> Iterable[Tuple[str, str, str | None]]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT executed_at, status, notes FROM runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            yield from cursor.fetchall()

    def last_successful_run(self) -> Optional[str]:
        """Timestamp of the last fully successful cycle, or None if never run."""
        if not self.path.exists():
            return None
        with self.connect() as conn:
            row = conn.execute(
                "SELECT executed_at FROM runs WHERE status = 'success' ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return row[0] if row else None

    def active_notice_keys(self, operator_code: str) -> Set[NoticeKey]:
        with self.connect() as conn:
            cursor = conn.execute(
                "SELECT route, notice_id FROM notices WHERE operator_code = ? AND active = 1",
                (operator_code,),
            )
            return {(row[0], row[1]) for row in cursor.fetchall()}

    def exists(self, operator_code: str, route: str, notice_id: str) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM notices
                WHERE operator_code = ? AND route = ? AND notice_id = ?
                """,
                (operator_code, route, notice_id),
            ).fetchone()
        return row is not None

    def insert(
        self,
        operator_code: str,
        route: str,
        notice: NormalizedNotice,
        observed_at: dt.datetime | str,
        document_path: Path | str = "",
    ) -> None:
        """Record a brand-new notice whose document has already been stored."""
        observed = _timestamp(observed_at)
        with self._writer() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO notices (
                        operator_code, route, notice_id, document_url, document_path,
                        discovered_at, last_seen_at, active
                    )
                    VALUES (?, ?, ?, ?, ?, ?, NULL, 1)
                    """,
                    (
                        operator_code,
                        route,
                        notice.notice_id,
                        notice.document_url,
                        str(document_path),
                        observed,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise StorageFailure(
                    f"notice {operator_code}/{route}/{notice.notice_id} already recorded"
                ) from exc
            _log_event(conn, operator_code, route, notice.notice_id, "discovered", observed)

    def touch(
        self,
        operator_code: str,
        route: str,
        notice_id: str,
        observed_at: dt.datetime | str,
    ) -> bool:
        """Mark a known notice as seen; return True if it was inactive before."""
        observed = _timestamp(observed_at)
        with self._writer() as conn:
            row = conn.execute(
                """
                SELECT active FROM notices
                WHERE operator_code = ? AND route = ? AND notice_id = ?
                """,
                (operator_code, route, notice_id),
            ).fetchone()
            if row is None:
                raise StorageFailure(
                    f"notice {operator_code}/{route}/{notice_id} is not recorded"
                )
            conn.execute(
                """
                UPDATE notices
                SET last_seen_at = ?, active = 1
                WHERE operator_code = ? AND route = ? AND notice_id = ?
                """,
                (observed, operator_code, route, notice_id),
            )
            reappeared = not row[0]
            if reappeared:
                _log_event(conn, operator_code, route, notice_id, "reappeared", observed)
            return reappeared

    def retire(
        self,
        operator_code: str,
        route: str,
        notice_id: str,
        occurred_at: dt.datetime | str,
    ) -> bool:
        """Mark a notice inactive; return True if its state changed."""
        with self._writer() as conn:
            cursor = conn.execute(
                """
                UPDATE notices
                SET active = 0
                WHERE operator_code = ? AND route = ? AND notice_id = ? AND active = 1
                """,
                (operator_code, route, notice_id),
            )
            changed = cursor.rowcount > 0
            if changed:
                _log_event(
                    conn, operator_code, route, notice_id, "retired", _timestamp(occurred_at)
                )
            return changed

    def fetch_notices(
        self,
        operator_code: str | None = None,
        active_only: bool = False,
    ) -> Dict[Tuple[str, str, str], NoticeRecord]:
        """Return notices keyed by (operator_code, route, notice_id)."""
        query = """
            SELECT operator_code, route, notice_id, document_url, active,
                   discovered_at, last_seen_at, document_path
            FROM notices
        """
        params: tuple = ()
        conditions = []
        if operator_code:
            conditions.append("operator_code = ?")
            params += (operator_code,)
        if active_only:
            conditions.append("active = 1")
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY operator_code, route, notice_id"

        with self.connect() as conn:
            records = {}
            for row in conn.execute(query, params).fetchall():
                record = NoticeRecord(
                    operator_code=row[0],
                    route=row[1],
                    notice_id=row[2],
                    document_url=row[3],
                    is_active=bool(row[4]),
                    discovered_at=row[5],
                    last_seen_at=row[6],
                    document_path=row[7] or "",
                )
                records[(record.operator_code, record.route, record.notice_id)] = record
            return records

    def notice_events(self, operator_code: str | None = None) -> list[Tuple[str, str, str, str]]:
        query = "SELECT route, notice_id, event_type, occurred_at FROM notice_events"
        params: tuple = ()
        if operator_code:
            query += " WHERE operator_code = ?"
            params = (operator_code,)
        query += " ORDER BY id"
        with self.connect() as conn:
            return conn.execute(query, params).fetchall()

    def export_state(self) -> Dict[str, Dict[str, Dict[str, dict]]]:
        """Render all notices as operator -> route -> notice id -> fields."""
        if not self.path.exists():
            return {}
        state: Dict[str, Dict[str, Dict[str, dict]]] = {}
        for record in self.fetch_notices().values():
            entry = {
                "id": record.notice_id,
                "documentUrl": record.document_url,
                "route": record.route,
                "isActive": record.is_active,
                "discoveredAt": record.discovered_at,
            }
            if record.last_seen_at:
                entry["lastSeenAt"] = record.last_seen_at
            routes = state.setdefault(record.operator_code, {})
            routes.setdefault(record.route, {})[record.notice_id] = entry
        return state

    def export_notices_to_xlsx(self, path: Path) -> None:
        """Write the full notice inventory to an Excel workbook."""
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = "notices"
        worksheet.append(list(XLSX_COLUMNS))
        for record in self.fetch_notices().values():
            worksheet.append(
                [
                    record.operator_code,
                    record.route,
                    record.notice_id,
                    "active" if record.is_active else "inactive",
                    record.discovered_at,
                    record.last_seen_at or "",
                    record.document_url,
                    record.document_path,
                ]
            )
        path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(path)


def _log_event(
    conn: sqlite3.Connection,
    operator_code: str,
    route: str,
    notice_id: str,
    event_type: str,
    occurred_at: str,
) -> None:
    conn.execute(
        """
        INSERT INTO notice_events (operator_code, route, notice_id, event_type, occurred_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (operator_code, route, notice_id, event_type, occurred_at),
    )
