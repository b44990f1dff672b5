import datetime
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

DEMAND_COLUMNS: tuple[str, ...] = ("demand",)
GENERATION_COLUMNS: tuple[str, ...] = (
    "coal",
    "gas",
    "nuclear",
    "wind",
    "embedded_wind",
    "solar",
    "hydro",
    "pumped_storage",
    "biomass",
    "imports",
    "other",
)
PRICING_COLUMNS: tuple[str, ...] = ("price",)
EMISSIONS_COLUMNS: tuple[str, ...] = ("emissions",)

METRIC_COLUMNS: tuple[str, ...] = (
    DEMAND_COLUMNS + GENERATION_COLUMNS + PRICING_COLUMNS + EMISSIONS_COLUMNS
)

# Columns that change slowly and are reported half-hourly; carried forward into
# half-hours created from generation samples alone
SLOW_COLUMNS: tuple[str, ...] = DEMAND_COLUMNS + PRICING_COLUMNS + EMISSIONS_COLUMNS


@dataclass
class Datum:
    """A reading for one bucket, or an average over several. Missing columns are absent"""

    values: dict[str, float] = field(default_factory=dict)

    def __getitem__(self, column: str) -> float | None:
        return self.values.get(column)

    def __contains__(self, column: str) -> bool:
        return column in self.values

    def total(self, columns: Iterable[str]) -> float | None:
        """Sum of the given columns, or None if any of them is missing"""
        result = 0.0
        for column in columns:
            value = self.values.get(column)
            if value is None:
                return None
            result += value
        return result

    @classmethod
    def from_record(cls, record: Mapping[str, Any], columns: Iterable[str] = METRIC_COLUMNS) -> "Datum":
        return cls({c: float(record[c]) for c in columns if record.get(c) is not None})

    @classmethod
    def average(cls, datums: Iterable["Datum"], columns: Iterable[str] = METRIC_COLUMNS) -> "Datum":
        """Column-wise mean, ignoring missing values"""
        totals: dict[str, float] = {}
        counts: dict[str, int] = {}
        for datum in datums:
            for column, value in datum.values.items():
                totals[column] = totals.get(column, 0.0) + value
                counts[column] = counts.get(column, 0) + 1
        return cls({c: totals[c] / counts[c] for c in columns if c in counts})


@dataclass
class TimeSeriesRow:
    time: datetime.datetime
    datum: Datum = field(default_factory=Datum)
    visits: int | None = None

    def to_record(self, columns: Iterable[str] = METRIC_COLUMNS) -> dict[str, Any]:
        """Record for the store; only the given columns are written, missing ones as NULL"""
        record: dict[str, Any] = {"time": self.time}
        for column in columns:
            record[column] = self.datum[column]
        if self.visits is not None:
            record["visits"] = self.visits
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TimeSeriesRow":
        visits = record.get("visits")
        return cls(
            time=record["time"],
            datum=Datum.from_record(record),
            visits=int(visits) if visits is not None else None,
        )


@dataclass
class LatestValue:
    source: str
    value: float
    time: datetime.datetime


@dataclass
class PeakRecord:
    value: float
    time: datetime.datetime


@dataclass
class Milestone:
    threshold: int
    time: datetime.datetime


@dataclass
class ErrorCounter:
    action: str
    error: str
    count: int


@dataclass
class State:
    """Everything the reporting side needs, read in one pass"""

    time: datetime.datetime | None
    latest: Datum
    past_day: Datum
    past_week: Datum
    past_year: Datum
    all_time: Datum
    day_series: dict[datetime.datetime, Datum]
    week_series: dict[datetime.datetime, Datum]
    year_series: dict[datetime.datetime, Datum]
    all_time_series: dict[datetime.datetime, Datum]
    record: PeakRecord | None
    milestones: dict[int, datetime.datetime]
