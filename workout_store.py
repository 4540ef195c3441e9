from __future__ import annotations
import datetime
import logging
import sqlite3
from dataclasses import dataclass, asdict
from typing import List, Optional

from db import AsyncWorkoutRepository, WorkoutRow

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the workout store cannot be read."""


class StoreAuthError(StoreError):
    """Raised when no user is configured for the store."""


@dataclass(frozen=True)
class WorkoutRecord:
    """One logged cardio session. ``None`` means the value was not observed."""

    id: int
    timestamp: datetime.datetime
    elapsed_time_seconds: Optional[float] = None
    calories: Optional[float] = None
    distance_miles: Optional[float] = None
    distance_climbed_feet: Optional[float] = None
    avg_speed_mph: Optional[float] = None
    avg_pace_seconds_per_mile: Optional[float] = None
    avg_heart_rate: Optional[float] = None

    @classmethod
    def from_row(cls, row: WorkoutRow) -> "WorkoutRecord":
        wid, ts, *values = row
        return cls(
            int(wid),
            datetime.datetime.fromisoformat(ts),
            *[None if v is None else float(v) for v in values],
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class WorkoutStore:
    """Pull interface over the workout table for a single user."""

    def __init__(
        self,
        db_path: str,
        username: str,
        repository: AsyncWorkoutRepository | None = None,
    ) -> None:
        self.db_path = db_path
        self.username = username
        self._repository = repository

    def _repo(self) -> AsyncWorkoutRepository:
        if self._repository is None:
            self._repository = AsyncWorkoutRepository(self.db_path)
        return self._repository

    async def fetch_all(
        self, since: Optional[datetime.datetime] = None
    ) -> List[WorkoutRecord]:
        """Return the user's workouts newest-first, optionally from ``since``."""
        if not self.username:
            raise StoreAuthError("no username configured")
        try:
            rows = await self._repo().fetch_for_user(self.username, since)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"failed to load workouts: {e}") from e
        logger.debug("fetched %d workouts for %s", len(rows), self.username)
        return [WorkoutRecord.from_row(r) for r in rows]
