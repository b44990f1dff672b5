"""Resolution tiers of the stored history and their bucket-width functions.

Each tier defines:
- name: identifier used in logs
- table: the table holding the tier's rows
- bucket: maps a timestamp to the start of the bucket the tier aligns rows to
- retention: how long rows are kept (None = forever)
- retention_bucket: rounding applied to the retention cut-off, so that only rows already
  absorbed by a complete bucket of the next-coarser tier are deleted
- has_visits: whether rows carry a visit count

All arithmetic is plain UTC calendar arithmetic; no database date functions are involved.
"""

import datetime
from dataclasses import dataclass
from typing import Callable

UTC = datetime.timezone.utc


def to_utc(timestamp: datetime.datetime) -> datetime.datetime:
    """Naive timestamps are taken to be UTC, aware ones are converted"""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=UTC)
    return timestamp.astimezone(UTC)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def floor_five_minutes(timestamp: datetime.datetime) -> datetime.datetime:
    timestamp = to_utc(timestamp)
    return timestamp.replace(minute=timestamp.minute - timestamp.minute % 5, second=0, microsecond=0)


def floor_half_hour(timestamp: datetime.datetime) -> datetime.datetime:
    timestamp = to_utc(timestamp)
    return timestamp.replace(minute=timestamp.minute - timestamp.minute % 30, second=0, microsecond=0)


def floor_day(timestamp: datetime.datetime) -> datetime.datetime:
    return to_utc(timestamp).replace(hour=0, minute=0, second=0, microsecond=0)


def floor_week(timestamp: datetime.datetime) -> datetime.datetime:
    # Weeks start on Monday
    day = floor_day(timestamp)
    return day - datetime.timedelta(days=day.weekday())


def floor_month(timestamp: datetime.datetime) -> datetime.datetime:
    return floor_day(timestamp).replace(day=1)


@dataclass(frozen=True)
class Tier:
    name: str
    table: str
    bucket: Callable[[datetime.datetime], datetime.datetime]
    retention: datetime.timedelta | None
    retention_bucket: Callable[[datetime.datetime], datetime.datetime] | None
    has_visits: bool

    def cutoff(
        self, now: datetime.datetime, retention: datetime.timedelta | None = None
    ) -> datetime.datetime | None:
        """Oldest timestamp kept by retention, or None if the tier is never trimmed"""
        retention = retention or self.retention
        if retention is None or self.retention_bucket is None:
            return None
        return self.retention_bucket(to_utc(now) - retention)


FIVE_MINUTES = Tier(
    "five-minute",
    "past_five_minutes",
    floor_five_minutes,
    datetime.timedelta(days=1),
    floor_half_hour,
    False,
)
HALF_HOURS = Tier(
    "half-hour",
    "past_half_hours",
    floor_half_hour,
    datetime.timedelta(weeks=4),
    floor_day,
    True,
)
DAYS = Tier("day", "past_days", floor_day, None, None, True)
WEEKS = Tier("week", "past_weeks", floor_week, None, None, True)
# Named after its retention horizon; rows are calendar-month buckets
YEARS = Tier("year", "past_years", floor_month, None, None, True)

TIERS = (FIVE_MINUTES, HALF_HOURS, DAYS, WEEKS, YEARS)
