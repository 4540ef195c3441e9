import sqlite3
import aiosqlite
import datetime
import json
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional

from config import APP_VERSION, YamlConfig
from settings_schema import validate_settings


WORKOUT_COLUMNS = (
    "id",
    "timestamp",
    "elapsed_time_seconds",
    "calories",
    "distance_miles",
    "distance_climbed_feet",
    "avg_speed_mph",
    "avg_pace_seconds_per_mile",
    "avg_heart_rate",
)

WORKOUT_EXTRACTION_KEYS = (
    "elapsedTimeSeconds",
    "calories",
    "distanceMiles",
    "distanceClimbedFeet",
    "avgSpeedMph",
    "avgPaceSecondsPerMile",
    "avgHeartRate",
)

WorkoutRow = Tuple[
    int,
    str,
    Optional[float],
    Optional[float],
    Optional[float],
    Optional[float],
    Optional[float],
    Optional[float],
    Optional[float],
]


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    elapsed_time_seconds REAL,
                    calories REAL,
                    distance_miles REAL,
                    distance_climbed_feet REAL,
                    avg_speed_mph REAL,
                    avg_pace_seconds_per_mile REAL,
                    avg_heart_rate REAL,
                    raw_extraction TEXT,
                    created_at TEXT NOT NULL
                );""",
            [
                "id",
                "username",
                "timestamp",
                "elapsed_time_seconds",
                "calories",
                "distance_miles",
                "distance_climbed_feet",
                "avg_speed_mph",
                "avg_pace_seconds_per_mile",
                "avg_heart_rate",
                "raw_extraction",
                "created_at",
            ],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    def __init__(self, db_path: str = "workouts.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "created_at":
                        return "timestamp" if "timestamp" in existing_cols else "''"
                    if col == "username":
                        return "''"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _init_settings(self) -> None:
        defaults = {
            "username": "",
            "openai_api_key": "",
            "default_granularity": "daily",
            "default_metric": "calories",
            "history_range_days": "0",
            "app_version": APP_VERSION,
        }
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, value),
                )

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return rows

    async def _delete_all(self, table: str) -> None:
        await self.execute(f"DELETE FROM {table};")


def _timestamp_text(value: datetime.datetime) -> str:
    """Store timestamps as naive wall-clock ISO strings so they sort as text."""
    return value.replace(tzinfo=None, microsecond=0).isoformat()


def _user_query(since: Optional[datetime.datetime]) -> tuple[str, list]:
    query = f"SELECT {', '.join(WORKOUT_COLUMNS)} FROM workouts WHERE username = ?"
    params: list = []
    if since is not None:
        query += " AND timestamp >= ?"
        params.append(_timestamp_text(since))
    query += " ORDER BY timestamp DESC, id DESC;"
    return query, params


class AsyncWorkoutRepository(AsyncBaseRepository):
    """Async repository for reading a user's workout history."""

    async def fetch_for_user(
        self, username: str, since: Optional[datetime.datetime] = None
    ) -> List[WorkoutRow]:
        """Return ``username``'s workouts newest-first."""
        query, params = _user_query(since)
        return await self.fetch_all(query, tuple([username, *params]))

    async def delete(self, workout_id: int) -> None:
        await self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))


class WorkoutRepository(BaseRepository):
    """Repository for workout table operations."""

    # Fields filled with zero when the extraction could not read them.
    ZERO_DEFAULTS = (
        "elapsedTimeSeconds",
        "calories",
        "distanceMiles",
        "avgSpeedMph",
    )

    def create(
        self,
        username: str,
        timestamp: datetime.datetime,
        elapsed_time_seconds: float | None = None,
        calories: float | None = None,
        distance_miles: float | None = None,
        distance_climbed_feet: float | None = None,
        avg_speed_mph: float | None = None,
        avg_pace_seconds_per_mile: float | None = None,
        avg_heart_rate: float | None = None,
        raw_extraction: dict | None = None,
    ) -> int:
        if not username:
            raise ValueError("username required")
        return self.execute(
            "INSERT INTO workouts (username, timestamp, elapsed_time_seconds, calories, distance_miles, distance_climbed_feet, avg_speed_mph, avg_pace_seconds_per_mile, avg_heart_rate, raw_extraction, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
            (
                username,
                _timestamp_text(timestamp),
                elapsed_time_seconds,
                calories,
                distance_miles,
                distance_climbed_feet,
                avg_speed_mph,
                avg_pace_seconds_per_mile,
                avg_heart_rate,
                json.dumps(raw_extraction) if raw_extraction is not None else None,
                _timestamp_text(datetime.datetime.now()),
            ),
        )

    def save(
        self,
        username: str,
        extraction: dict,
        workout_date: datetime.datetime,
    ) -> int:
        """Persist a vision extraction as a workout on ``workout_date``."""
        values = {
            key: extraction.get(key) for key in WORKOUT_EXTRACTION_KEYS
        }
        for key in self.ZERO_DEFAULTS:
            if values[key] is None:
                values[key] = 0
        return self.create(
            username,
            workout_date,
            elapsed_time_seconds=values["elapsedTimeSeconds"],
            calories=values["calories"],
            distance_miles=values["distanceMiles"],
            distance_climbed_feet=values["distanceClimbedFeet"],
            avg_speed_mph=values["avgSpeedMph"],
            avg_pace_seconds_per_mile=values["avgPaceSecondsPerMile"],
            avg_heart_rate=values["avgHeartRate"],
            raw_extraction=extraction,
        )

    def fetch_for_user(
        self, username: str, since: Optional[datetime.datetime] = None
    ) -> List[WorkoutRow]:
        """Return ``username``'s workouts newest-first."""
        query, params = _user_query(since)
        return self.fetch_all(query, tuple([username, *params]))

    def fetch_detail(self, workout_id: int) -> Optional[WorkoutRow]:
        rows = self.fetch_all(
            f"SELECT {', '.join(WORKOUT_COLUMNS)} FROM workouts WHERE id = ?;",
            (workout_id,),
        )
        return rows[0] if rows else None

    def fetch_raw_extraction(self, workout_id: int) -> Optional[dict]:
        rows = self.fetch_all(
            "SELECT raw_extraction FROM workouts WHERE id = ?;", (workout_id,)
        )
        if not rows or rows[0][0] is None:
            return None
        return json.loads(rows[0][0])

    def usernames(self) -> list[str]:
        rows = self.fetch_all(
            "SELECT DISTINCT username FROM workouts ORDER BY username;"
        )
        return [r[0] for r in rows]

    def delete(self, workout_id: int) -> None:
        rows = self.fetch_all(
            "SELECT id FROM workouts WHERE id = ?;", (workout_id,)
        )
        if not rows:
            raise ValueError("workout not found")
        self.execute("DELETE FROM workouts WHERE id = ?;", (workout_id,))

    def delete_all(self) -> None:
        self._delete_all("workouts")


class SettingsRepository(BaseRepository):
    """Repository for general application settings synchronized with YAML."""

    INT_KEYS = {"history_range_days"}

    def __init__(
        self, db_path: str = "workouts.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _raw_all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        result: dict[str, int | str] = {}
        for k, v in rows:
            if k in self.INT_KEYS:
                try:
                    result[k] = int(float(v))
                    continue
                except ValueError:
                    pass
            result[k] = v
        return result

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self._raw_all_settings())

    def get_text(self, key: str, default: str) -> str:
        self._sync_from_yaml()
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def set_text(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(value))

    def update(self, values: dict) -> None:
        """Validate and store several settings at once."""
        merged = {**self._raw_all_settings(), **values}
        validate_settings(merged)
        for key, value in values.items():
            self.set_text(key, str(value))

    def all_settings(self) -> dict:
        self._sync_from_yaml()
        return self._raw_all_settings()

    def is_setup_complete(self) -> bool:
        """Return True once both a username and an API key are stored."""
        return bool(
            self.get_text("username", "") and self.get_text("openai_api_key", "")
        )
