import datetime as dt

import pytest
from openpyxl import load_workbook

from noticewatcher.db import Database, resolve_sqlite_path
from noticewatcher.errors import StorageFailure
from noticewatcher.models import NormalizedNotice

FIRST = dt.datetime(2025, 1, 1, 6, 0, tzinfo=dt.timezone(dt.timedelta(hours=8)))
SECOND = FIRST + dt.timedelta(days=1)


def make_notice(notice_id: str = "N1") -> NormalizedNotice:
    return NormalizedNotice(notice_id=notice_id, document_url=f"https://example.com/{notice_id}.pdf")


def build_database(tmp_path) -> Database:
    db = Database(path=tmp_path / "nested" / "notices.db")
    db.initialize()
    return db


def test_resolve_sqlite_path_handles_relative(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = resolve_sqlite_path("sqlite:///./relative.db")
    assert path == tmp_path / "relative.db"


def test_resolve_sqlite_path_rejects_empty():
    with pytest.raises(ValueError):
        resolve_sqlite_path("")


def test_database_initializes_schema_and_parent_dirs(tmp_path):
    db = build_database(tmp_path)
    assert db.path.exists()
    assert db.path.stat().st_size > 0
    # Running twice is harmless.
    db.initialize()


def test_insert_exists_and_active_keys(tmp_path):
    db = build_database(tmp_path)
    assert db.exists("KMB", "1A", "N1") is False

    db.insert("KMB", "1A", make_notice(), FIRST, document_path="/docs/N1.pdf")

    assert db.exists("KMB", "1A", "N1") is True
    assert db.exists("CTB", "1A", "N1") is False
    assert db.active_notice_keys("KMB") == {("1A", "N1")}
    assert db.active_notice_keys("CTB") == set()

    record = db.fetch_notices()[("KMB", "1A", "N1")]
    assert record.discovered_at == FIRST.isoformat()
    assert record.last_seen_at is None
    assert record.document_path == "/docs/N1.pdf"


def test_insert_existing_key_raises_storage_failure(tmp_path):
    db = build_database(tmp_path)
    db.insert("KMB", "1A", make_notice(), FIRST)

    with pytest.raises(StorageFailure):
        db.insert("KMB", "1A", make_notice(), SECOND)

    assert db.fetch_notices()[("KMB", "1A", "N1")].discovered_at == FIRST.isoformat()


def test_touch_is_idempotent(tmp_path):
    db = build_database(tmp_path)
    db.insert("KMB", "1A", make_notice(), FIRST)

    assert db.touch("KMB", "1A", "N1", SECOND) is False
    snapshot = db.fetch_notices()
    assert db.touch("KMB", "1A", "N1", SECOND) is False

    assert db.fetch_notices() == snapshot
    assert snapshot[("KMB", "1A", "N1")].last_seen_at == SECOND.isoformat()


def test_touch_unknown_notice_raises(tmp_path):
    db = build_database(tmp_path)
    with pytest.raises(StorageFailure):
        db.touch("KMB", "1A", "missing", FIRST)


def test_retire_and_reactivate(tmp_path):
    db = build_database(tmp_path)
    db.insert("CTB", "8", make_notice("a.pdf"), FIRST)

    assert db.retire("CTB", "8", "a.pdf", SECOND) is True
    assert db.retire("CTB", "8", "a.pdf", SECOND) is False
    assert db.active_notice_keys("CTB") == set()
    assert db.exists("CTB", "8", "a.pdf") is True

    assert db.touch("CTB", "8", "a.pdf", SECOND) is True
    record = db.fetch_notices(operator_code="CTB", active_only=True)[("CTB", "8", "a.pdf")]
    assert record.is_active is True
    assert record.discovered_at == FIRST.isoformat()

    events = [event_type for _, _, event_type, _ in db.notice_events("CTB")]
    assert events == ["discovered", "retired", "reappeared"]


def test_export_state_matches_nested_layout(tmp_path):
    db = build_database(tmp_path)
    db.insert("KMB", "1A", make_notice("N1"), FIRST)
    db.insert("KMB", "2", make_notice("N2"), FIRST)
    db.touch("KMB", "2", "N2", SECOND)
    db.retire("KMB", "1A", "N1", SECOND)

    state = db.export_state()

    assert state == {
        "KMB": {
            "1A": {
                "N1": {
                    "id": "N1",
                    "documentUrl": "https://example.com/N1.pdf",
                    "route": "1A",
                    "isActive": False,
                    "discoveredAt": FIRST.isoformat(),
                }
            },
            "2": {
                "N2": {
                    "id": "N2",
                    "documentUrl": "https://example.com/N2.pdf",
                    "route": "2",
                    "isActive": True,
                    "discoveredAt": FIRST.isoformat(),
                    "lastSeenAt": SECOND.isoformat(),
                }
            },
        }
    }


def test_missing_database_reads_as_empty_state(tmp_path):
    db = Database(path=tmp_path / "absent.db")
    assert db.export_state() == {}
    assert db.last_successful_run() is None
    assert not db.path.exists()


def test_run_ledger_tracks_last_success(tmp_path):
    db = build_database(tmp_path)
    assert db.last_successful_run() is None

    db.add_run("2025-01-01T06:00:00+08:00", "success", "KMB(+1 / -0 / =0 / !0)")
    db.add_run("2025-01-02T06:00:00+08:00", "partial", "CTB(failed: boom)")

    assert db.last_successful_run() == "2025-01-01T06:00:00+08:00"
    runs = list(db.recent_runs())
    assert [status for _, status, _ in runs] == ["partial", "success"]


def test_unicode_notice_ids_are_preserved(tmp_path):
    db = build_database(tmp_path)
    db.insert("CTB", "962X", make_notice("通告-01.pdf"), FIRST)
    assert ("962X", "通告-01.pdf") in db.active_notice_keys("CTB")


def test_export_notices_to_xlsx(tmp_path):
    db = build_database(tmp_path)
    db.insert("KMB", "1A", make_notice("N1"), FIRST, document_path="/docs/N1.pdf")

    export_path = tmp_path / "out" / "notices.xlsx"
    db.export_notices_to_xlsx(export_path)

    workbook = load_workbook(export_path)
    worksheet = workbook.active
    headers = [cell.value for cell in next(worksheet.iter_rows(min_row=1, max_row=1))]
    assert headers[:3] == ["operator_code", "route", "notice_id"]
    row = [cell.value for cell in next(worksheet.iter_rows(min_row=2, max_row=2))]
    assert row[:4] == ["KMB", "1A", "N1", "active"]
    assert row[-1] == "/docs/N1.pdf"


def test_retire_requires_cycle_timestamp(tmp_path):
    db = build_database(tmp_path)
    db.insert("KMB", "1A", make_notice(), FIRST)

    with pytest.raises(TypeError):
        db.retire("KMB", "1A", "N1")

    db.retire("KMB", "1A", "N1", SECOND)
    events = db.notice_events("KMB")
    assert events[-1][2:] == ("retired", SECOND.isoformat())
