from __future__ import annotations
import datetime
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from algorithms import CalendarTools
from metrics import DETAIL_FIELDS, Metric, MetricDescriptor
from workout_store import StoreError, WorkoutRecord, WorkoutStore

logger = logging.getLogger(__name__)

NO_DATA = "no data"


class Granularity(enum.Enum):
    """Aggregation period of the history chart."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, key: "str | Granularity") -> "Granularity":
        if isinstance(key, cls):
            return key
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown granularity: {key}") from None


@dataclass(frozen=True)
class Bucket:
    """A calendar range with its chart value and the workouts inside it."""

    start: datetime.date
    end: datetime.date
    workouts: tuple[WorkoutRecord, ...]
    value: float
    label: str
    granularity: Granularity

    @property
    def days_total(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def days_present(self) -> int:
        return len({CalendarTools.date_key(w.timestamp) for w in self.workouts})

    @property
    def has_data(self) -> bool:
        return bool(self.workouts)

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
            "value": self.value,
            "workout_ids": [w.id for w in self.workouts],
        }


@dataclass(frozen=True)
class HistorySeries:
    """Ordered, gap-free buckets plus the parallel chart arrays."""

    buckets: tuple[Bucket, ...] = ()
    labels: tuple[str, ...] = ()
    values: tuple[float, ...] = ()
    granularity: Granularity = Granularity.DAILY
    metric: Metric = Metric.CALORIES

    def __len__(self) -> int:
        return len(self.buckets)

    @property
    def is_empty(self) -> bool:
        return not self.buckets


class SeriesBuilder:
    """Turn a flat record list into a gap-free bucket series."""

    @staticmethod
    def join_by_day(
        records: Iterable[WorkoutRecord],
    ) -> Dict[datetime.date, WorkoutRecord]:
        """Map each calendar day to its record.

        Only the first record seen for a day is kept; later records on the
        same day are dropped, including from weekly and monthly sums.
        """
        by_day: Dict[datetime.date, WorkoutRecord] = {}
        for record in records:
            by_day.setdefault(CalendarTools.date_key(record.timestamp), record)
        return by_day

    @classmethod
    def build(
        cls,
        records: Sequence[WorkoutRecord],
        granularity: "str | Granularity",
        metric: "str | Metric",
        today: datetime.date | None = None,
    ) -> HistorySeries:
        granularity = Granularity.parse(granularity)
        metric = Metric.parse(metric)
        if not records:
            return HistorySeries(granularity=granularity, metric=metric)

        by_day = cls.join_by_day(records)
        start = min(by_day)
        end = max(today or datetime.date.today(), max(by_day))
        descriptor = metric.descriptor

        buckets: List[Bucket]
        if granularity is Granularity.DAILY:
            buckets = [
                cls._daily_bucket(day, by_day.get(day), descriptor)
                for day in CalendarTools.iter_days(start, end)
            ]
        elif granularity is Granularity.WEEKLY:
            buckets = [
                cls._period_bucket(
                    week,
                    week + datetime.timedelta(days=CalendarTools.WEEK_LENGTH - 1),
                    by_day,
                    descriptor,
                    CalendarTools.day_label(week),
                    granularity,
                )
                for week in CalendarTools.iter_weeks(start, end)
            ]
        else:
            buckets = [
                cls._period_bucket(
                    month,
                    CalendarTools.month_end(month),
                    by_day,
                    descriptor,
                    CalendarTools.month_label(month),
                    granularity,
                )
                for month in CalendarTools.iter_months(start, end)
            ]
        return HistorySeries(
            buckets=tuple(buckets),
            labels=tuple(b.label for b in buckets),
            values=tuple(b.value for b in buckets),
            granularity=granularity,
            metric=metric,
        )

    @staticmethod
    def _daily_bucket(
        day: datetime.date,
        record: Optional[WorkoutRecord],
        descriptor: MetricDescriptor,
    ) -> Bucket:
        value = descriptor.extract(record) if record is not None else None
        return Bucket(
            start=day,
            end=day,
            workouts=(record,) if record is not None else (),
            value=float(value or 0),
            label=CalendarTools.day_label(day),
            granularity=Granularity.DAILY,
        )

    @staticmethod
    def _period_bucket(
        start: datetime.date,
        end: datetime.date,
        by_day: Dict[datetime.date, WorkoutRecord],
        descriptor: MetricDescriptor,
        label: str,
        granularity: Granularity,
    ) -> Bucket:
        workouts = tuple(
            by_day[day] for day in CalendarTools.iter_days(start, end) if day in by_day
        )
        total = 0.0
        for workout in workouts:
            value = descriptor.extract(workout)
            if value is not None:
                total += value
        # Mean per calendar day in the period, rest days included.
        days = (end - start).days + 1
        return Bucket(
            start=start,
            end=end,
            workouts=workouts,
            value=total / days,
            label=label,
            granularity=granularity,
        )


@dataclass(frozen=True)
class SelectionState:
    """Index of the highlighted bucket, ``-1`` when there are no buckets."""

    index: int = -1

    @property
    def is_selected(self) -> bool:
        return self.index >= 0

    @classmethod
    def rebuild(cls, buckets: Sequence[Bucket]) -> "SelectionState":
        """Select the last bucket holding a workout, else the last bucket."""
        if not buckets:
            return cls()
        for idx in range(len(buckets) - 1, -1, -1):
            if buckets[idx].has_data:
                return cls(idx)
        return cls(len(buckets) - 1)

    def user_select(self, index: int, buckets: Sequence[Bucket]) -> "SelectionState":
        """Select ``index`` whether or not that bucket holds data."""
        if not 0 <= index < len(buckets):
            raise IndexError(f"bucket index {index} out of range")
        return SelectionState(index)

    def bucket(self, buckets: Sequence[Bucket]) -> Optional[Bucket]:
        if 0 <= self.index < len(buckets):
            return buckets[self.index]
        return None


@dataclass(frozen=True)
class DetailValue:
    key: str
    label: str
    value: Optional[float]
    display: str


@dataclass(frozen=True)
class DetailView:
    """Values shown in the detail panel for the selected bucket."""

    granularity: Granularity
    label: str
    values: tuple[DetailValue, ...]
    workout_ids: tuple[int, ...]
    days_present: int | None = None
    days_total: int | None = None

    @property
    def days_summary(self) -> str | None:
        if self.days_total is None:
            return None
        return f"{self.days_present} of {self.days_total} days"

    def value(self, key: str) -> Optional[float]:
        for item in self.values:
            if item.key == key:
                return item.value
        raise KeyError(key)

    def to_dict(self) -> dict:
        return {
            "granularity": self.granularity.value,
            "label": self.label,
            "days_present": self.days_present,
            "days_total": self.days_total,
            "days_summary": self.days_summary,
            "workout_ids": list(self.workout_ids),
            "values": [
                {
                    "key": v.key,
                    "label": v.label,
                    "value": v.value,
                    "display": v.display,
                }
                for v in self.values
            ],
        }


class DetailAggregator:
    """Compute the detail panel for a bucket."""

    @staticmethod
    def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
        present = [v for v in values if v is not None]
        if not present:
            return None
        return sum(present) / len(present)

    @classmethod
    def detail(cls, bucket: Optional[Bucket]) -> Optional[DetailView]:
        """Return the detail view, or ``None`` when the bucket has no workouts."""
        if bucket is None or not bucket.has_data:
            return None
        ids = tuple(w.id for w in bucket.workouts)
        if bucket.granularity is Granularity.DAILY:
            workout = bucket.workouts[0]
            values = []
            for f in DETAIL_FIELDS:
                raw = getattr(workout, f.key)
                values.append(DetailValue(f.key, f.label, raw, f.format(raw)))
            return DetailView(
                granularity=bucket.granularity,
                label=CalendarTools.range_label(bucket.start, bucket.end),
                values=tuple(values),
                workout_ids=ids,
            )

        values = []
        for f in DETAIL_FIELDS:
            avg = cls._mean(getattr(w, f.key) for w in bucket.workouts)
            display = f.format(avg) if avg is not None else NO_DATA
            values.append(DetailValue(f.key, f.label, avg, display))
        return DetailView(
            granularity=bucket.granularity,
            label=CalendarTools.range_label(bucket.start, bucket.end),
            values=tuple(values),
            workout_ids=ids,
            days_present=bucket.days_present,
            days_total=bucket.days_total,
        )


@dataclass
class HistoryContext:
    """Mutable aggregation state owned by one UI controller."""

    records: List[WorkoutRecord] = field(default_factory=list)
    granularity: Granularity = Granularity.DAILY
    metric: Metric = Metric.CALORIES
    range_days: int = 0
    series: HistorySeries = field(default_factory=HistorySeries)
    selection: SelectionState = field(default_factory=SelectionState)


@dataclass(frozen=True)
class HistoryView:
    series: HistorySeries
    selection: SelectionState
    detail: Optional[DetailView]
    workouts: tuple[WorkoutRecord, ...]

    @property
    def is_empty(self) -> bool:
        return self.series.is_empty

    @property
    def selected_bucket(self) -> Optional[Bucket]:
        return self.selection.bucket(self.series.buckets)

    def to_dict(self) -> dict:
        return {
            "granularity": self.series.granularity.value,
            "metric": self.series.metric.value,
            "labels": list(self.series.labels),
            "values": list(self.series.values),
            "buckets": [b.to_dict() for b in self.series.buckets],
            "selected": self.selection.index,
            "detail": self.detail.to_dict() if self.detail else None,
            "workouts": [w.to_dict() for w in self.workouts],
        }


class HistoryController:
    """Drive the history screen: fetch, rebuild, select and describe."""

    def __init__(
        self,
        store: WorkoutStore,
        context: HistoryContext | None = None,
        today: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self.store = store
        self.context = context or HistoryContext()
        self._today = today

    async def refresh(self) -> HistoryView:
        """Reload records from the store and rebuild the series.

        Store failures are logged and leave an empty history behind.
        """
        since = None
        if self.context.range_days > 0:
            since = CalendarTools.days_ago(self.context.range_days, self._today())
        try:
            records = await self.store.fetch_all(since)
        except StoreError as e:
            logger.error("Failed to load workouts: %s", e)
            records = []
        self.context.records = records
        return self.rebuild()

    def rebuild(self) -> HistoryView:
        series = SeriesBuilder.build(
            self.context.records,
            self.context.granularity,
            self.context.metric,
            today=self._today(),
        )
        self.context.series = series
        self.context.selection = SelectionState.rebuild(series.buckets)
        return self.view()

    def set_granularity(self, key: "str | Granularity") -> bool:
        """Switch granularity without refetching; unknown keys are ignored."""
        try:
            self.context.granularity = Granularity.parse(key)
        except ValueError as e:
            logger.warning("%s", e)
            return False
        self.rebuild()
        return True

    def set_metric(self, key: "str | Metric") -> bool:
        """Switch metric without refetching; unknown keys are ignored."""
        try:
            self.context.metric = Metric.parse(key)
        except ValueError as e:
            logger.warning("%s", e)
            return False
        self.rebuild()
        return True

    async def set_range(self, days: int) -> HistoryView:
        if days < 0:
            raise ValueError("range must be non-negative")
        self.context.range_days = days
        return await self.refresh()

    def select(self, index: int) -> HistoryView:
        self.context.selection = self.context.selection.user_select(
            index, self.context.series.buckets
        )
        return self.view()

    def view(self) -> HistoryView:
        bucket = self.context.selection.bucket(self.context.series.buckets)
        return HistoryView(
            series=self.context.series,
            selection=self.context.selection,
            detail=DetailAggregator.detail(bucket),
            workouts=tuple(self.context.records),
        )
