from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bqdash.bigquery import NUMERIC_TYPES, RECORD_TYPES
from bqdash.query import QueryFormat
from bqdash.reader import (
    Column,
    MalformedResponseError,
    RawResponse,
    Row,
    get_rows,
    get_schema,
    parse_timestamp,
    read_result,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricFindValue:
    text: str
    value: Any


@dataclass(frozen=True)
class TableResult:
    columns: Sequence[Column]
    rows: Sequence[Row]


@dataclass(frozen=True)
class Series:
    target: str
    # (epoch milliseconds, value) pairs in the order of the result rows.
    datapoints: List[Tuple[int, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SeriesResult:
    series: Sequence[Series]


@dataclass(frozen=True)
class AnnotationEvent:
    annotation: str
    time: int
    title: str
    text: str
    tags: Sequence[str]


NormalizedResult = Union[
    TableResult, SeriesResult, List[AnnotationEvent], List[MetricFindValue]
]


def _get_path(entry: Mapping[str, Any], path: str) -> Any:
    value: Any = entry
    for key in path.split("."):
        if not isinstance(value, Mapping) or key not in value:
            raise MalformedResponseError(f"Listing entry is missing {path}")
        value = value[key]
    return value


def _parse_listing(
    response: RawResponse, key: str, path: str
) -> List[MetricFindValue]:
    entries = response.get(key) or []
    if not isinstance(entries, list):
        raise MalformedResponseError(f"Expected a list of {key}")

    result = []
    for entry in entries:
        identifier = _get_path(entry, path)
        result.append(MetricFindValue(text=str(identifier), value=identifier))
    return result


def parse_projects(response: RawResponse) -> List[MetricFindValue]:
    return _parse_listing(response, "projects", "id")


def parse_datasets(response: RawResponse) -> List[MetricFindValue]:
    return _parse_listing(response, "datasets", "datasetReference.datasetId")


def parse_tables(response: RawResponse) -> List[MetricFindValue]:
    return _parse_listing(response, "tables", "tableReference.tableId")


def flatten_fields(fields: Sequence[Column], prefix: str = "") -> List[Column]:
    """
    RECORD columns are replaced by their sub-fields, named ``parent.child``.
    """
    flattened: List[Column] = []
    for column in fields:
        name = f"{prefix}{column['name']}"
        if column.get("type") in RECORD_TYPES:
            flattened.extend(flatten_fields(column.get("fields", []), f"{name}."))
        else:
            flattened.append({"name": name, "type": column.get("type", "")})
    return flattened


def parse_table_fields(
    response: RawResponse, type_filter: Sequence[str] = ()
) -> List[MetricFindValue]:
    fields = flatten_fields(get_schema(response))
    if type_filter:
        fields = [f for f in fields if f["type"] in type_filter]
    return [MetricFindValue(text=f["name"], value=f["type"]) for f in fields]


def parse_query_result(
    response: RawResponse, format: QueryFormat
) -> Union[TableResult, SeriesResult]:
    columns, rows = read_result(response)
    if format is QueryFormat.TIME_SERIES:
        return to_time_series(columns, rows)
    return TableResult(columns=columns, rows=rows)


def to_time_series(columns: Sequence[Column], rows: Sequence[Row]) -> SeriesResult:
    """
    The first column holds the time of each row and every other numeric
    column becomes a series. When a string column called ``metric`` exists
    its value splits the rows into one series per metric. Rows are expected
    to be ordered by time already.
    """
    if not columns:
        raise MalformedResponseError("Time series results need a time column")

    metric_index: Optional[int] = None
    value_indexes: List[int] = []
    for index, column in enumerate(columns[1:], start=1):
        if column.get("type") in NUMERIC_TYPES:
            value_indexes.append(index)
        elif column["name"] == "metric":
            metric_index = index

    series: Dict[str, Series] = {}
    for row in rows:
        time = row[0]
        if time is None:
            continue
        for index in value_indexes:
            name = columns[index]["name"]
            if metric_index is not None:
                metric = str(row[metric_index])
                name = metric if len(value_indexes) == 1 else f"{metric} {name}"
            if name not in series:
                series[name] = Series(target=name)
            series[name].datapoints.append((time, row[index]))

    if metric_index is None:
        # Series without rows are still returned for every value column.
        for index in value_indexes:
            series.setdefault(columns[index]["name"], Series(columns[index]["name"]))

    return SeriesResult(series=list(series.values()))


def _find_column(columns: Sequence[Column], name: str) -> Optional[int]:
    return next((i for i, c in enumerate(columns) if c["name"] == name), None)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _split_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        # REPEATED columns keep the {"v": value} wrapping of each element.
        values = [v.get("v") if isinstance(v, Mapping) else v for v in value]
        return [str(v) for v in values if v is not None]
    return [tag.strip() for tag in str(value).split(",") if tag.strip()]


def _annotation_time(value: Any, column: Column) -> int:
    # Numeric time columns already hold epoch milliseconds, as in time series.
    if column.get("type") in NUMERIC_TYPES:
        return int(round(float(value)))
    return parse_timestamp(value)


def parse_annotations(
    response: RawResponse, annotation_name: str = ""
) -> List[AnnotationEvent]:
    """
    Turns rows into annotation events using the ``time``, ``title``,
    ``text`` and ``tags`` columns. A row without a usable time is dropped,
    the other rows are still returned.
    """
    columns = get_schema(response)
    if not columns:
        raise MalformedResponseError("Annotation results need a time column")

    # Rows are read without type conversion, times are parsed row by row.
    rows = get_rows(response)

    time_index = _find_column(columns, "time")
    if time_index is None:
        time_index = 0
    title_index = _find_column(columns, "title")
    text_index = _find_column(columns, "text")
    tags_index = _find_column(columns, "tags")

    events = []
    for position, row in enumerate(rows):
        raw_time = row[time_index]
        if raw_time is None:
            logger.debug("Dropping annotation row %d without time", position)
            continue
        try:
            time = _annotation_time(raw_time, columns[time_index])
        except (TypeError, ValueError, OverflowError):
            logger.debug("Dropping annotation row %d with time %r", position, raw_time)
            continue

        events.append(
            AnnotationEvent(
                annotation=annotation_name,
                time=time,
                title=_text(row[title_index]) if title_index is not None else "",
                text=_text(row[text_index]) if text_index is not None else "",
                tags=_split_tags(row[tags_index]) if tags_index is not None else [],
            )
        )
    return events


def parse_metric_find(response: RawResponse) -> List[MetricFindValue]:
    """
    A single column gives both the text and the value of each entry. With
    more columns the first one is the text and the second one the value.
    """
    columns, rows = read_result(response)
    if not columns:
        raise MalformedResponseError("Metric find results need at least one column")

    value_index = 0 if len(columns) == 1 else 1
    return [
        MetricFindValue(text=_text(row[0]), value=row[value_index]) for row in rows
    ]
