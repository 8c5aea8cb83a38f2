from typing import Any, Callable, Mapping

import pytest

from bqdash.reader import (
    ExecutorRequest,
    MalformedResponseError,
    get_rows,
    get_schema,
    parse_timestamp,
    read_result,
)


def test_read_result_converts_types(make_response: Callable[..., Mapping[str, Any]]) -> None:
    response = make_response(
        [
            ("time", "TIMESTAMP"),
            ("count", "INTEGER"),
            ("ratio", "FLOAT"),
            ("ok", "BOOLEAN"),
            ("name", "STRING"),
            ("day", "DATE"),
        ],
        [
            ["1.7040672E9", "12", "0.5", "true", "a", "2024-01-01"],
            [None, None, None, "false", None, None],
        ],
    )
    columns, rows = read_result(response)
    assert [c["name"] for c in columns] == ["time", "count", "ratio", "ok", "name", "day"]
    assert rows == [
        [1704067200000, 12, 0.5, True, "a", 1704067200000],
        [None, None, None, False, None, None],
    ]


def test_repeated_columns() -> None:
    response = {
        "schema": {"fields": [{"name": "ids", "type": "INTEGER", "mode": "REPEATED"}]},
        "rows": [{"f": [{"v": [{"v": "1"}, {"v": "2"}]}]}],
    }
    _, rows = read_result(response)
    assert rows == [[[1, 2]]]


def test_missing_rows_means_no_rows() -> None:
    response = {"schema": {"fields": [{"name": "a", "type": "STRING"}]}, "totalRows": "0"}
    assert get_rows(response) == []


def test_plain_list_rows() -> None:
    response = {"schema": {"fields": [{"name": "a", "type": "INTEGER"}]}, "rows": [["1"]]}
    assert read_result(response)[1] == [[1]]


@pytest.mark.parametrize(
    "response",
    [
        pytest.param({"rows": []}, id="no schema"),
        pytest.param({"schema": {}}, id="no fields"),
        pytest.param({"schema": {"fields": [{"type": "STRING"}]}}, id="unnamed field"),
    ],
)
def test_missing_schema(response: Mapping[str, Any]) -> None:
    with pytest.raises(MalformedResponseError):
        get_schema(response)


def test_row_shorter_than_schema(make_response: Callable[..., Mapping[str, Any]]) -> None:
    response = make_response([("a", "STRING"), ("b", "STRING")], [["x"]])
    with pytest.raises(MalformedResponseError) as excinfo:
        read_result(response)
    assert excinfo.value.extra_data == {"row": 0}


def test_row_longer_than_schema(make_response: Callable[..., Mapping[str, Any]]) -> None:
    response = make_response([("a", "STRING")], [["x"], ["y", "z"]])
    with pytest.raises(MalformedResponseError):
        read_result(response)


def test_row_without_fields() -> None:
    response = {"schema": {"fields": [{"name": "a"}]}, "rows": [{"g": []}]}
    with pytest.raises(MalformedResponseError):
        get_rows(response)


def test_unexpected_value(make_response: Callable[..., Mapping[str, Any]]) -> None:
    response = make_response([("a", "INTEGER")], [["twelve"]])
    with pytest.raises(MalformedResponseError):
        read_result(response)


def test_parse_timestamp() -> None:
    assert parse_timestamp("1704067200.5") == 1704067200500
    assert parse_timestamp(1704067200) == 1704067200000
    assert parse_timestamp("2024-01-01T00:00:00") == 1704067200000
    assert parse_timestamp("2024-01-01T01:00:00+01:00") == 1704067200000


def test_executor_request_body() -> None:
    assert ExecutorRequest(path="v2/projects").get_body() is None
    assert ExecutorRequest(
        path="v2/projects/p/queries", method="POST", sql="SELECT 1", params={"timeoutMs": 5}
    ).get_body() == {"query": "SELECT 1", "useLegacySql": False, "timeoutMs": 5}
