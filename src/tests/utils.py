import datetime
from typing import Any

from gridhistory.models import GENERATION_COLUMNS

UTC = datetime.timezone.utc

# A Monday
DAY = datetime.datetime(2024, 3, 4, tzinfo=UTC)


def parse_time(text: str, day: datetime.datetime = DAY) -> datetime.datetime:
    """``"12:30"`` is 12:30 on ``day``; anything else is parsed as an ISO timestamp"""
    text = text.strip()
    try:
        t = datetime.datetime.strptime(text, "%H:%M")
    except ValueError:
        timestamp = datetime.datetime.fromisoformat(text)
        return timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=UTC)
    return day.replace(hour=t.hour, minute=t.minute)


def five_minutes(start: str, end: str) -> list[datetime.datetime]:
    """Every five minutes from ``start`` to ``end`` inclusive"""
    result = []
    current, last = parse_time(start), parse_time(end)
    while current <= last:
        result.append(current)
        current += datetime.timedelta(minutes=5)
    return result


def generation(time: datetime.datetime, **values: float) -> tuple[Any, ...]:
    """Generation batch row; sources not given are missing"""
    return (time, *(values.get(column) for column in GENERATION_COLUMNS))


class FixedClock:
    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now
