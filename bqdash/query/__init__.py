from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from bqdash import settings
from bqdash.query.exceptions import InvalidQueryException
from bqdash.util import DateLike, parse_datetime, parse_interval


class QueryFormat(Enum):
    TABLE = "table"
    TIME_SERIES = "time_series"

    @classmethod
    def _missing_(cls, value: object) -> Optional["QueryFormat"]:
        if value == "timeseries":
            return cls.TIME_SERIES
        return None


@dataclass(frozen=True)
class TimeRange:
    from_date: datetime
    to_date: datetime

    @classmethod
    def build(cls, from_value: DateLike, to_value: DateLike) -> TimeRange:
        from_date = parse_datetime(from_value)
        to_date = parse_datetime(to_value)
        if from_date > to_date:
            raise InvalidQueryException(
                "Time range starts after it ends",
                from_date=from_date.isoformat(),
                to_date=to_date.isoformat(),
            )
        return cls(from_date, to_date)

    @property
    def from_ms(self) -> int:
        return int(round(self.from_date.timestamp() * 1000))

    @property
    def to_ms(self) -> int:
        return int(round(self.to_date.timestamp() * 1000))


@dataclass(frozen=True)
class Variable:
    """
    A dashboard template variable. ``value`` is a scalar or, for variables
    with several selected values, a list of scalars.
    """

    name: str
    value: Any
    multi: bool = False
    include_all: bool = False


def _default_min_interval_ms() -> int:
    return parse_interval(settings.DEFAULT_TIME_INTERVAL)


@dataclass(frozen=True)
class QueryOptions:
    range: TimeRange
    interval_ms: int = 0
    max_data_points: int = 0
    scoped_vars: Mapping[str, Variable] = field(default_factory=dict)
    project: str = ""
    min_interval_ms: int = field(default_factory=_default_min_interval_ms)

    @property
    def bucket_width_ms(self) -> int:
        return max(self.interval_ms, self.min_interval_ms)


@dataclass(frozen=True)
class QueryTarget:
    ref_id: str
    raw_sql: str
    format: QueryFormat = QueryFormat.TABLE
    hide: bool = False


@dataclass(frozen=True)
class RequestPayload:
    """
    A query ready to be sent to the warehouse: every macro has been expanded
    and every known variable interpolated.
    """

    ref_id: str
    raw_sql: str
    format: QueryFormat
    interval_ms: int = 0
    max_data_points: int = 0
