from typing import Any, Optional, Tuple
from unittest import mock

import pytest
import rapidjson
from urllib3.exceptions import ProtocolError

from bqdash.bigquery.errors import TransportError
from bqdash.bigquery.http import HTTPExecutor
from bqdash.reader import ExecutorRequest
from bqdash.utils.clock import TestingClock
from bqdash.utils.retries import BasicRetryPolicy, NoRetryPolicy, RetryException

BASE_URL = "http://bigquery.test/bigquery/"


def build_response(status: int, body: Any, reason: Optional[str] = None) -> mock.Mock:
    response = mock.Mock()
    response.status = status
    response.reason = reason
    response.data = body if isinstance(body, bytes) else rapidjson.dumps(body).encode("utf-8")
    return response


def build_executor(*responses: Any, retries: int = 0) -> Tuple[HTTPExecutor, mock.Mock]:
    pool = mock.Mock()
    pool.request.side_effect = list(responses)
    policy = (
        BasicRetryPolicy(
            retries + 1,
            1,
            suppression_test=lambda e: isinstance(e, TransportError),
            clock=TestingClock(),
        )
        if retries
        else NoRetryPolicy()
    )
    return HTTPExecutor(BASE_URL, {"Authorization": "Bearer token"}, policy, pool), pool


def test_get_request() -> None:
    executor, pool = build_executor(build_response(200, {"projects": []}))
    request = ExecutorRequest(path="v2/projects", params={"pageToken": "a b"})

    assert executor.execute(request) == {"projects": []}

    pool.request.assert_called_once_with(
        "GET",
        BASE_URL + "v2/projects?pageToken=a+b",
        body=None,
        headers={"Content-Type": "application/json", "Authorization": "Bearer token"},
        retries=False,
    )


def test_query_request() -> None:
    executor, pool = build_executor(build_response(200, {"jobComplete": True}))
    request = ExecutorRequest(
        path="v2/projects/p/queries",
        method="POST",
        sql="SELECT 1",
        params={"timeoutMs": 10000},
    )

    assert executor.execute(request) == {"jobComplete": True}

    (method, url), kwargs = pool.request.call_args
    assert method == "POST"
    assert url == BASE_URL + "v2/projects/p/queries"
    assert rapidjson.loads(kwargs["body"].decode("utf-8")) == {
        "query": "SELECT 1",
        "useLegacySql": False,
        "timeoutMs": 10000,
    }


def test_http_error() -> None:
    body = {"error": {"code": 404, "message": "Not found: Dataset p:d"}}
    executor, _ = build_executor(build_response(404, body, "Not Found"))

    with pytest.raises(TransportError) as excinfo:
        executor.execute(ExecutorRequest(path="v2/projects/p/datasets/d"))

    error = excinfo.value
    assert error.status == 404
    assert error.status_text == "Not Found"
    assert error.data == body
    assert not error.should_report


def test_server_error_is_reported() -> None:
    executor, _ = build_executor(build_response(503, b"unavailable", "Service Unavailable"))
    with pytest.raises(TransportError) as excinfo:
        executor.execute(ExecutorRequest(path="v2/projects"))
    assert excinfo.value.should_report
    assert excinfo.value.data == "unavailable"


def test_body_is_not_an_object() -> None:
    executor, _ = build_executor(build_response(200, [1, 2]))
    with pytest.raises(TransportError):
        executor.execute(ExecutorRequest(path="v2/projects"))


def test_connection_error_is_retried() -> None:
    executor, _ = build_executor(
        ProtocolError("Connection aborted"),
        build_response(200, {"projects": []}),
        retries=1,
    )
    assert executor.execute(ExecutorRequest(path="v2/projects")) == {"projects": []}


def test_retries_exhausted() -> None:
    executor, _ = build_executor(
        build_response(500, {}, "Internal Server Error"),
        build_response(502, {}, "Bad Gateway"),
        retries=1,
    )
    with pytest.raises(TransportError) as excinfo:
        executor.execute(ExecutorRequest(path="v2/projects"))
    assert excinfo.value.status == 502


def test_default_settings() -> None:
    pool = mock.Mock()
    pool.request.side_effect = [
        build_response(503, {}, "Service Unavailable"),
        build_response(200, {"projects": []}),
    ]
    executor = HTTPExecutor(pool=pool)

    assert executor.build_url(ExecutorRequest(path="v2/projects")) == (
        "http://bigquery.test/bigquery/v2/projects"
    )
    # one retry with the test settings
    assert executor.execute(ExecutorRequest(path="v2/projects")) == {"projects": []}
    assert pool.request.call_count == 2


def test_retries_exhausted_on_other_errors() -> None:
    pool = mock.Mock()
    pool.request.side_effect = [ValueError("bad header"), ValueError("bad header")]
    policy = BasicRetryPolicy(2, clock=TestingClock())
    executor = HTTPExecutor(BASE_URL, retry_policy=policy, pool=pool)

    with pytest.raises(TransportError) as excinfo:
        executor.execute(ExecutorRequest(path="v2/projects"))
    assert excinfo.value.status == 0
    assert excinfo.value.message == "bad header"
    assert isinstance(excinfo.value.__cause__, RetryException)
    assert pool.request.call_count == 2
