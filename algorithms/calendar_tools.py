import calendar
import datetime
from typing import Iterator


class CalendarTools:
    """Calendar arithmetic used to lay out history buckets."""

    WEEK_LENGTH: int = 7

    @staticmethod
    def date_key(timestamp: datetime.datetime | datetime.date) -> datetime.date:
        """Return the calendar day identifying ``timestamp``."""
        if isinstance(timestamp, datetime.datetime):
            return timestamp.date()
        return timestamp

    @staticmethod
    def week_start(day: datetime.date) -> datetime.date:
        """Return the Monday on or before ``day``."""
        return day - datetime.timedelta(days=day.weekday())

    @staticmethod
    def month_start(day: datetime.date) -> datetime.date:
        return day.replace(day=1)

    @staticmethod
    def days_in_month(day: datetime.date) -> int:
        return calendar.monthrange(day.year, day.month)[1]

    @classmethod
    def month_end(cls, day: datetime.date) -> datetime.date:
        return day.replace(day=cls.days_in_month(day))

    @staticmethod
    def next_month(day: datetime.date) -> datetime.date:
        """Return the first day of the month following ``day``."""
        if day.month == 12:
            return datetime.date(day.year + 1, 1, 1)
        return datetime.date(day.year, day.month + 1, 1)

    @staticmethod
    def iter_days(
        start: datetime.date, end: datetime.date
    ) -> Iterator[datetime.date]:
        """Yield every day from ``start`` to ``end`` inclusive."""
        day = start
        while day <= end:
            yield day
            day += datetime.timedelta(days=1)

    @classmethod
    def iter_weeks(
        cls, start: datetime.date, end: datetime.date
    ) -> Iterator[datetime.date]:
        """Yield Monday-aligned week starts covering ``start``..``end``."""
        week = cls.week_start(start)
        while week <= end:
            yield week
            week += datetime.timedelta(days=cls.WEEK_LENGTH)

    @classmethod
    def iter_months(
        cls, start: datetime.date, end: datetime.date
    ) -> Iterator[datetime.date]:
        """Yield first-of-month dates covering ``start``..``end``."""
        month = cls.month_start(start)
        last = cls.month_start(end)
        while month <= last:
            yield month
            month = cls.next_month(month)

    @staticmethod
    def days_ago(days: int, today: datetime.date | None = None) -> datetime.datetime:
        """Return midnight ``days`` days before ``today``."""
        base = today or datetime.date.today()
        day = base - datetime.timedelta(days=days)
        return datetime.datetime.combine(day, datetime.time.min)

    @staticmethod
    def day_label(day: datetime.date) -> str:
        """Return a short label such as ``Jan 3``."""
        return f"{calendar.month_abbr[day.month]} {day.day}"

    @staticmethod
    def month_label(day: datetime.date) -> str:
        """Return a label such as ``Jan 2024``."""
        return f"{calendar.month_abbr[day.month]} {day.year}"

    @classmethod
    def range_label(cls, start: datetime.date, end: datetime.date) -> str:
        """Return a human readable inclusive range, e.g. ``Jan 1 - Jan 7, 2024``."""
        if start == end:
            return f"{cls.day_label(start)}, {start.year}"
        if start.year == end.year:
            return f"{cls.day_label(start)} - {cls.day_label(end)}, {end.year}"
        return (
            f"{cls.day_label(start)}, {start.year} - "
            f"{cls.day_label(end)}, {end.year}"
        )
