import os
import sys
import datetime
import sqlite3

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Database, WorkoutRepository
from workout_store import StoreAuthError, StoreError, WorkoutRecord, WorkoutStore


def _seed(db_file: str) -> WorkoutRepository:
    repo = WorkoutRepository(db_file)
    repo.create("alice", datetime.datetime(2024, 1, 1, 7, 30), calories=300)
    repo.create("alice", datetime.datetime(2024, 1, 3, 18, 0), calories=200)
    repo.create("bob", datetime.datetime(2024, 1, 2, 9, 0), calories=999)
    return repo


@pytest.mark.asyncio
async def test_fetch_all_newest_first(tmp_path):
    db_file = str(tmp_path / "store.db")
    _seed(db_file)
    records = await WorkoutStore(db_file, "alice").fetch_all()
    assert [r.timestamp.day for r in records] == [3, 1]
    assert records[0].calories == 200
    assert records[0].distance_miles is None


@pytest.mark.asyncio
async def test_fetch_all_since(tmp_path):
    db_file = str(tmp_path / "store.db")
    _seed(db_file)
    records = await WorkoutStore(db_file, "alice").fetch_all(
        datetime.datetime(2024, 1, 2)
    )
    assert [r.calories for r in records] == [200]


@pytest.mark.asyncio
async def test_fetch_all_requires_username(tmp_path):
    store = WorkoutStore(str(tmp_path / "store.db"), "")
    with pytest.raises(StoreAuthError):
        await store.fetch_all()


class BrokenRepository:
    async def fetch_for_user(self, username, since=None):
        raise sqlite3.OperationalError("database is locked")


@pytest.mark.asyncio
async def test_fetch_all_wraps_database_errors(tmp_path):
    store = WorkoutStore(str(tmp_path / "store.db"), "alice", BrokenRepository())
    with pytest.raises(StoreError, match="database is locked"):
        await store.fetch_all()


def test_save_fills_defaults(tmp_path):
    repo = WorkoutRepository(str(tmp_path / "store.db"))
    extraction = {"calories": 250, "avgHeartRate": 141, "elapsedTimeSeconds": None}
    wid = repo.save("alice", extraction, datetime.datetime(2024, 1, 5, 12, 0))
    record = WorkoutRecord.from_row(repo.fetch_detail(wid))
    assert record.timestamp == datetime.datetime(2024, 1, 5, 12, 0)
    assert record.calories == 250
    assert record.elapsed_time_seconds == 0
    assert record.distance_miles == 0
    assert record.avg_speed_mph == 0
    assert record.distance_climbed_feet is None
    assert record.avg_pace_seconds_per_mile is None
    assert record.avg_heart_rate == 141
    assert repo.fetch_raw_extraction(wid) == extraction


def test_create_requires_username(tmp_path):
    repo = WorkoutRepository(str(tmp_path / "store.db"))
    with pytest.raises(ValueError):
        repo.create("", datetime.datetime(2024, 1, 1))


def test_timezone_is_dropped(tmp_path):
    repo = WorkoutRepository(str(tmp_path / "store.db"))
    aware = datetime.datetime(
        2024, 1, 3, 23, 30, tzinfo=datetime.timezone(datetime.timedelta(hours=-5))
    )
    wid = repo.create("alice", aware, calories=1)
    record = WorkoutRecord.from_row(repo.fetch_detail(wid))
    assert record.timestamp == datetime.datetime(2024, 1, 3, 23, 30)


def test_delete_and_usernames(tmp_path):
    repo = _seed(str(tmp_path / "store.db"))
    assert repo.usernames() == ["alice", "bob"]
    repo.delete(3)
    assert repo.usernames() == ["alice"]
    with pytest.raises(ValueError):
        repo.delete(3)


def test_schema_migration_adds_columns(tmp_path):
    db_file = str(tmp_path / "old.db")
    conn = sqlite3.connect(db_file)
    conn.execute(
        "CREATE TABLE workouts (id INTEGER PRIMARY KEY AUTOINCREMENT, username TEXT, timestamp TEXT, calories REAL)"
    )
    conn.execute("CREATE TABLE workouts_old (id INTEGER)")
    conn.execute(
        "INSERT INTO workouts (username, timestamp, calories) VALUES ('alice', '2024-01-01T12:00:00', 300)"
    )
    conn.commit()
    conn.close()

    Database(db_file)

    conn = sqlite3.connect(db_file)
    cur = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='workouts_old'"
    )
    assert cur.fetchone() is None
    cols = [row[1] for row in conn.execute("PRAGMA table_info(workouts)")]
    assert "raw_extraction" in cols
    row = conn.execute("SELECT calories, created_at FROM workouts").fetchone()
    assert row == (300, "2024-01-01T12:00:00")
    conn.close()
