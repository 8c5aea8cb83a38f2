from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timezone
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Pattern,
    Sequence,
    Tuple,
    TypedDict,
    TypeVar,
)

from dateutil.parser import parse as dateutil_parse

from bqdash.utils.serializable_exception import SerializableException

Column = TypedDict(
    "Column",
    {"name": str, "type": str, "mode": str, "fields": List[Any]},
    total=False,
)
Row = List[Any]

# The body of a BigQuery REST response. Query results carry ``schema`` and
# ``rows``; catalog listings carry ``projects``, ``datasets`` or ``tables``.
RawResponse = Mapping[str, Any]


class MalformedResponseError(SerializableException):
    """
    The warehouse answered with JSON that does not have the expected shape,
    for instance a row whose number of fields differs from the schema.
    """


@dataclass(frozen=True)
class ExecutorRequest:
    path: str
    method: str = "GET"
    sql: Optional[str] = None
    params: Mapping[str, Any] = field(default_factory=dict)

    def get_body(self) -> Optional[Dict[str, Any]]:
        if self.sql is None:
            return None
        return {"query": self.sql, "useLegacySql": False, **self.params}


class Executor(ABC):
    """
    Sends requests to the warehouse. This is the only place where I/O
    happens; implementations raise ``TransportError`` on failures.
    """

    @abstractmethod
    def execute(self, request: ExecutorRequest) -> RawResponse:
        raise NotImplementedError


def get_schema(response: RawResponse) -> List[Column]:
    schema = response.get("schema")
    if not isinstance(schema, Mapping) or not isinstance(schema.get("fields"), list):
        raise MalformedResponseError("Response is missing a schema")

    columns: List[Column] = schema["fields"]
    for column in columns:
        if not isinstance(column, Mapping) or "name" not in column:
            raise MalformedResponseError("Schema field without a name")
    return columns


def get_rows(response: RawResponse) -> List[Row]:
    """
    Returns the rows of a query result as lists of values ordered like the
    schema. BigQuery encodes rows as ``{"f": [{"v": value}, ...]}`` and omits
    ``rows`` entirely for empty results; plain lists are accepted as well.
    """
    width = len(get_schema(response))
    rows: List[Row] = []
    for index, raw_row in enumerate(response.get("rows") or []):
        if isinstance(raw_row, Mapping):
            cells = raw_row.get("f")
            if not isinstance(cells, list):
                raise MalformedResponseError(f"Row {index} has no fields")
            row = [cell.get("v") if isinstance(cell, Mapping) else cell for cell in cells]
        elif isinstance(raw_row, (list, tuple)):
            row = list(raw_row)
        else:
            raise MalformedResponseError(f"Row {index} is not a list of fields")

        if len(row) != width:
            raise MalformedResponseError(
                f"Row {index} has {len(row)} fields but the schema has {width}",
                row=index,
            )
        rows.append(row)
    return rows


def parse_timestamp(value: Any) -> int:
    """
    TIMESTAMP values come back as a string holding a float number of seconds,
    DATE and DATETIME values as ISO strings. Both become epoch milliseconds.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(round(value * 1000))
    try:
        return int(round(float(value) * 1000))
    except ValueError:
        dt = dateutil_parse(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(round(dt.timestamp() * 1000))


def parse_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


T = TypeVar("T")
R = TypeVar("R")


def transform_nullable(
    function: Callable[[T], R]
) -> Callable[[Optional[T]], Optional[R]]:
    def transform_column(value: Optional[T]) -> Optional[R]:
        if value is None:
            return value
        else:
            return function(value)

    return transform_column


def build_result_transformer(
    column_transformations: Sequence[Tuple[Pattern[str], Callable[[Any], Any]]],
) -> Callable[[Sequence[Column], List[Row]], None]:
    """
    Builds and returns a function that mutates rows in place by transforming
    all values of the columns that have a transformation function specified
    for their data type. ``REPEATED`` columns are transformed element-wise.
    """

    def transform_rows(columns: Sequence[Column], rows: List[Row]) -> None:
        for position, column in enumerate(columns):
            transformer = next(
                (
                    transformer
                    for pattern, transformer in column_transformations
                    if pattern.match(column.get("type", ""))
                ),
                None,
            )

            if transformer is None:
                continue

            transformer = transform_nullable(transformer)
            repeated = column.get("mode") == "REPEATED"
            for row in rows:
                value = row[position]
                if repeated and isinstance(value, list):
                    row[position] = [
                        transformer(v.get("v") if isinstance(v, Mapping) else v)
                        for v in value
                    ]
                else:
                    row[position] = transformer(value)

    return transform_rows


transform_result_rows = build_result_transformer(
    [
        (re.compile(r"^(INTEGER|INT64)$"), int),
        (re.compile(r"^(FLOAT|FLOAT64|NUMERIC|BIGNUMERIC)$"), float),
        (re.compile(r"^(BOOLEAN|BOOL)$"), parse_boolean),
        (re.compile(r"^(TIMESTAMP|DATETIME|DATE)$"), parse_timestamp),
    ]
)


def read_result(response: RawResponse) -> Tuple[List[Column], List[Row]]:
    """
    Validates a query result and returns its columns together with rows whose
    values have been converted to Python types.
    """
    columns = get_schema(response)
    rows = get_rows(response)
    try:
        transform_result_rows(columns, rows)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"Unexpected value in result: {e}") from e
    return columns, rows
