from typing import Callable

import pytest

from bqdash.query import QueryOptions, Variable
from bqdash.query.exceptions import MacroSyntaxError
from bqdash.query.macros import bucket_width_seconds, expand_macros, split_arguments

FROM_MS = 1704067200000
TO_MS = 1704088800000
TIME_FILTER = (
    f"BETWEEN TIMESTAMP_MILLIS({FROM_MS}) AND TIMESTAMP_MILLIS({TO_MS})"
)


def test_time_filter(options: QueryOptions) -> None:
    sql = "SELECT * FROM t WHERE $__timeFilter(created_at) AND x = 1"
    assert expand_macros(sql, options) == (
        f"SELECT * FROM t WHERE created_at {TIME_FILTER} AND x = 1"
    )


def test_time_bounds(options: QueryOptions) -> None:
    sql = "$__timeFrom() $__timeTo() $__millisTimeFrom() $__millisTimeTo()"
    assert expand_macros(sql, options) == (
        f"TIMESTAMP_MILLIS({FROM_MS}) TIMESTAMP_MILLIS({TO_MS}) {FROM_MS} {TO_MS}"
    )


def test_unix_epoch_filter(options: QueryOptions) -> None:
    assert expand_macros("$__unixEpochFilter(ts)", options) == (
        "ts BETWEEN 1704067200 AND 1704088800"
    )


def test_time_group_uses_interval(make_options: Callable[..., QueryOptions]) -> None:
    options = make_options(interval_ms=300000)
    assert expand_macros("$__timeGroup(ts)", options) == (
        "TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(ts), 300) * 300)"
    )


def test_time_group_width_floor(make_options: Callable[..., QueryOptions]) -> None:
    options = make_options(interval_ms=10, min_interval_ms=60000)
    assert expand_macros("$__timeGroup(ts)", options) == (
        "TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(ts), 60) * 60)"
    )
    assert expand_macros("$__timeGroup(ts, $__interval)", options) == (
        "TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(ts), 60) * 60)"
    )


@pytest.mark.parametrize(
    "width", ["${__interval}", "${__interval_ms}", "[[__interval]]", "[[__interval_ms]]"]
)
def test_builtin_interval_spellings_are_automatic(
    make_options: Callable[..., QueryOptions], width: str
) -> None:
    options = make_options(interval_ms=10, min_interval_ms=60000)
    assert bucket_width_seconds(width, options, "timeGroup") == 60

    options = make_options(interval_ms=120000)
    assert bucket_width_seconds(width, options, "timeGroup") == 120


def test_time_group_alias_with_width(options: QueryOptions) -> None:
    assert expand_macros("SELECT $__timeGroupAlias(ts, 1h), count(*)", options) == (
        "SELECT TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(ts), 3600) * 3600) AS time, count(*)"
    )


@pytest.mark.parametrize(
    "width, seconds",
    [("30s", 30), ("5m", 300), ("1d", 86400), ("1w", 604800), ("90", 90), ("1500ms", 2)],
)
def test_explicit_widths(options: QueryOptions, width: str, seconds: int) -> None:
    assert bucket_width_seconds(width, options, "timeGroup") == seconds


def test_width_from_variable(make_options: Callable[..., QueryOptions]) -> None:
    options = make_options(scoped_vars={"bucket": Variable("bucket", "15m")})
    assert expand_macros("$__timeGroup(ts, $bucket)", options) == (
        "TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(ts), 900) * 900)"
    )

    with pytest.raises(MacroSyntaxError):
        expand_macros("$__timeGroup(ts, $missing)", options)


def test_table(make_options: Callable[..., QueryOptions]) -> None:
    assert expand_macros("FROM $__table(ds.events)", make_options(project="p")) == (
        "FROM `p.ds.events`"
    )
    assert expand_macros("FROM $__table(ds.events)", make_options()) == (
        "FROM `ds.events`"
    )
    assert expand_macros(
        "FROM $__table(`other-project.ds.events`)", make_options(project="p")
    ) == ("FROM `other-project.ds.events`")


def test_nested_and_quoted_arguments(options: QueryOptions) -> None:
    assert expand_macros("$__timeFilter(TIMESTAMP_MILLIS(ts))", options) == (
        f"TIMESTAMP_MILLIS(ts) {TIME_FILTER}"
    )
    sql = "$__timeGroup(PARSE_TIMESTAMP('%Y,%m)', d), 1h)"
    assert expand_macros(sql, options) == (
        "TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(PARSE_TIMESTAMP('%Y,%m)', d)), 3600) * 3600)"
    )


def test_macro_in_argument(options: QueryOptions) -> None:
    assert expand_macros("$__timeGroup($__table(d.t).ts, 1m)", options) == (
        "TIMESTAMP_SECONDS(DIV(UNIX_SECONDS(`d.t`.ts), 60) * 60)"
    )


def test_split_arguments() -> None:
    sql = "$__f(a, g(b, c), 'x,y')"
    assert split_arguments(sql, 5, "f") == (["a", "g(b, c)", "'x,y'"], len(sql))
    assert split_arguments("$__f()", 5, "f") == ([], 6)


@pytest.mark.parametrize(
    "sql",
    [
        pytest.param("$__timeFilter(ts", id="unbalanced"),
        pytest.param("$__timeFilter(f(ts)", id="unbalanced nested"),
        pytest.param("$__unknown(ts)", id="unknown macro"),
        pytest.param("$__timeFilter()", id="missing argument"),
        pytest.param("$__timeFilter(a, b)", id="too many arguments"),
        pytest.param("$__timeFrom(x)", id="unexpected argument"),
        pytest.param("$__timeGroup(, 1m)", id="empty column"),
        pytest.param("$__timeGroup(ts, soon)", id="invalid width"),
        pytest.param("$__timeGroup(ts, 0s)", id="zero width"),
        pytest.param("$__table(a..b)", id="invalid table"),
        pytest.param("$__table(a.b.c.d)", id="too many table parts"),
    ],
)
def test_malformed_macros(options: QueryOptions, sql: str) -> None:
    with pytest.raises(MacroSyntaxError):
        expand_macros(sql, options)


def test_malformed_macro_error_is_serializable(options: QueryOptions) -> None:
    with pytest.raises(MacroSyntaxError) as excinfo:
        expand_macros("$__nope()", options)
    assert excinfo.value.extra_data == {"macro": "nope"}
    assert excinfo.value.to_dict()["__name__"] == "MacroSyntaxError"


def test_text_without_macros_is_unchanged(options: QueryOptions) -> None:
    sql = "SELECT $__interval, $host FROM t WHERE a = '$__timeFilter'"
    assert expand_macros(sql, options) == sql


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT $__timeGroupAlias(ts, 5m), avg(v) FROM t WHERE $__timeFilter(ts) GROUP BY 1",
        "SELECT * FROM $__table(ds.t) WHERE ts > $__timeFrom() AND ts < $__timeTo()",
        "SELECT 1",
    ],
)
def test_expansion_is_idempotent(make_options: Callable[..., QueryOptions], sql: str) -> None:
    options = make_options(project="p")
    expanded = expand_macros(sql, options)
    assert "$__" not in expanded
    assert expand_macros(expanded, options) == expanded
