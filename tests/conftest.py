import os
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

import pytest

os.environ.setdefault("BQDASH_SETTINGS", "test")

from bqdash import settings  # noqa: E402
from bqdash.query import QueryOptions, TimeRange  # noqa: E402

FROM_DATE = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
TO_DATE = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)
FROM_MS = 1704067200000
TO_MS = 1704088800000


def pytest_configure() -> None:
    assert (
        settings.TESTING
    ), "settings.TESTING is False, try `BQDASH_SETTINGS=test`"


def build_response(
    fields: Sequence[Tuple[str, str]], rows: Sequence[Sequence[Any]]
) -> Mapping[str, Any]:
    """
    A jobs.query response body with the given (name, type) columns.
    """
    return {
        "kind": "bigquery#queryResponse",
        "jobComplete": True,
        "schema": {
            "fields": [
                {"name": name, "type": type, "mode": "NULLABLE"} for name, type in fields
            ]
        },
        "rows": [{"f": [{"v": value} for value in row]} for row in rows],
        "totalRows": str(len(rows)),
    }


@pytest.fixture
def make_response() -> Callable[..., Mapping[str, Any]]:
    return build_response


@pytest.fixture
def time_range() -> TimeRange:
    return TimeRange(FROM_DATE, TO_DATE)


@pytest.fixture
def make_options(time_range: TimeRange) -> Callable[..., QueryOptions]:
    def make(
        interval_ms: int = 60000,
        min_interval_ms: int = 60000,
        project: str = "",
        scoped_vars: Optional[Mapping[str, Any]] = None,
    ) -> QueryOptions:
        return QueryOptions(
            range=time_range,
            interval_ms=interval_ms,
            max_data_points=500,
            scoped_vars=scoped_vars or {},
            project=project,
            min_interval_ms=min_interval_ms,
        )

    return make


@pytest.fixture
def options(make_options: Callable[..., QueryOptions]) -> QueryOptions:
    return make_options()
