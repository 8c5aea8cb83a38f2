import re
from datetime import datetime, timezone
from typing import Union

from dateutil.parser import parse as dateutil_parse

DateLike = Union[datetime, int, float, str]

INTERVAL_RE = re.compile(r"^\s*(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m|h|d|w|y)?\s*$")

INTERVAL_UNITS_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
    "w": 7 * 24 * 60 * 60 * 1000,
    "y": 365 * 24 * 60 * 60 * 1000,
}


def parse_datetime(value: DateLike) -> datetime:
    """
    Returns a timezone aware UTC datetime out of a datetime, a number of
    milliseconds since the epoch (as a number or a numeric string) or any
    string dateutil understands. Naive values are assumed to be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        stripped = value.strip()
        if re.fullmatch(r"-?\d+(\.\d+)?", stripped):
            return datetime.fromtimestamp(float(stripped) / 1000, tz=timezone.utc)
        dt = dateutil_parse(stripped)
    else:
        raise TypeError(f"cannot convert {type(value).__name__} to datetime")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_interval(value: Union[str, int, float]) -> int:
    """
    Converts a duration such as ``30s``, ``5m`` or ``1d`` to milliseconds.
    A bare number is a number of seconds.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value * 1000)

    match = INTERVAL_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid interval: {value!r}")

    unit = match.group("unit") or "s"
    return int(float(match.group("amount")) * INTERVAL_UNITS_MS[unit])


def format_interval(interval_ms: int) -> str:
    """
    The inverse of ``parse_interval`` using the largest unit that divides
    the interval exactly.
    """
    for unit in ("y", "w", "d", "h", "m", "s"):
        size = INTERVAL_UNITS_MS[unit]
        if interval_ms >= size and interval_ms % size == 0:
            return f"{interval_ms // size}{unit}"
    return f"{interval_ms}ms"
