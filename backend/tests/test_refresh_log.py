"""
backend/tests/test_refresh_log.py

Purpose:
    Refresh record persistence: in-process history ordering and tolerance of
    database write failures.
"""

from __future__ import annotations

import json

import pytest

from database.refresh_log import RefreshLog, RefreshRecord


class RecordingDB:
    def __init__(self):
        self.rows = []
        self.meta = []

    def insert_refresh_log(self, row):
        self.rows.append(row)

    def upsert_last_refresh(self, summary):
        self.meta.append(json.dumps(summary))


class BrokenDB(RecordingDB):
    def insert_refresh_log(self, row):
        raise RuntimeError("relation refresh_logs does not exist")


@pytest.mark.asyncio
async def test_records_are_persisted_and_mirrored() -> None:
    db = RecordingDB()
    log = RefreshLog(db)

    record = RefreshRecord(type="live", state="live-match", details={"gameweek_id": 4})
    await log.record(record)

    assert db.rows == [record.to_row()]
    assert db.rows[0]["created_at"] == record.created_at
    assert json.loads(db.meta[0]) == {"timestamp": record.created_at, "type": "live", "state": "live-match"}


@pytest.mark.asyncio
async def test_write_failure_does_not_raise() -> None:
    log = RefreshLog(BrokenDB())

    await log.record(RefreshRecord(type="regular", state="regular"))

    assert log.recent()[0].type == "regular"


@pytest.mark.asyncio
async def test_recent_is_newest_first_and_bounded() -> None:
    log = RefreshLog(history_size=3)
    for tier in ("live", "post-match", "pre-deadline", "regular"):
        await log.record(RefreshRecord(type=tier, state="ok"))

    assert [r.type for r in log.recent()] == ["regular", "pre-deadline", "post-match"]
    assert [r.type for r in log.recent(limit=1)] == ["regular"]
