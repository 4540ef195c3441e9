from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Callable, Optional

from algorithms import UnitFormatter
from workout_store import WorkoutRecord


class Metric(enum.Enum):
    """Selectable chart measurements."""

    CALORIES = "calories"
    DISTANCE = "distance"
    DURATION = "duration"
    AVG_SPEED = "avg_speed"
    AVG_HEART_RATE = "avg_heart_rate"

    @classmethod
    def parse(cls, key: "str | Metric") -> "Metric":
        if isinstance(key, cls):
            return key
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown metric: {key}") from None

    @property
    def descriptor(self) -> "MetricDescriptor":
        return METRIC_DESCRIPTORS[self]


@dataclass(frozen=True)
class MetricDescriptor:
    label: str
    color: str
    extract: Callable[[WorkoutRecord], Optional[float]]
    format: Callable[[Optional[float]], str]
    y_label: str | None = None


def _minutes(record: WorkoutRecord) -> Optional[float]:
    if record.elapsed_time_seconds is None:
        return None
    return record.elapsed_time_seconds / 60


METRIC_DESCRIPTORS: dict[Metric, MetricDescriptor] = {
    Metric.CALORIES: MetricDescriptor(
        label="Calories",
        color="#f97316",
        extract=lambda w: w.calories,
        format=UnitFormatter.format_num,
    ),
    Metric.DISTANCE: MetricDescriptor(
        label="Distance (mi)",
        color="#4f8cff",
        extract=lambda w: w.distance_miles,
        format=lambda v: UnitFormatter.format_num(v, "mi"),
    ),
    Metric.DURATION: MetricDescriptor(
        label="Duration",
        color="#a78bfa",
        extract=_minutes,
        format=lambda v: UnitFormatter.format_duration(
            None if v is None else v * 60
        ),
        y_label="Minutes",
    ),
    Metric.AVG_SPEED: MetricDescriptor(
        label="Avg Speed (mph)",
        color="#34d399",
        extract=lambda w: w.avg_speed_mph,
        format=lambda v: UnitFormatter.format_num(v, "mph"),
    ),
    Metric.AVG_HEART_RATE: MetricDescriptor(
        label="Avg Heart Rate",
        color="#f87171",
        extract=lambda w: w.avg_heart_rate,
        format=UnitFormatter.format_heart_rate,
    ),
}


@dataclass(frozen=True)
class DetailField:
    """A workout field shown in the detail panel."""

    key: str
    label: str
    format: Callable[[Optional[float]], str]


DETAIL_FIELDS: tuple[DetailField, ...] = (
    DetailField("elapsed_time_seconds", "Duration", UnitFormatter.format_duration),
    DetailField("calories", "Calories", UnitFormatter.format_num),
    DetailField(
        "distance_miles", "Distance", lambda v: UnitFormatter.format_num(v, "mi")
    ),
    DetailField(
        "avg_speed_mph", "Avg Speed", lambda v: UnitFormatter.format_num(v, "mph")
    ),
    DetailField(
        "distance_climbed_feet",
        "Climbed",
        lambda v: UnitFormatter.format_num(v, "ft"),
    ),
    DetailField("avg_pace_seconds_per_mile", "Pace", UnitFormatter.format_pace),
    DetailField("avg_heart_rate", "Heart Rate", UnitFormatter.format_heart_rate),
)
