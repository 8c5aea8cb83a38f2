from __future__ import annotations

import logging
from functools import partial
from typing import Any, Mapping, Optional
from urllib.parse import urlencode, urlsplit

import rapidjson
from urllib3 import PoolManager, Timeout
from urllib3.exceptions import HTTPError

from bqdash import settings
from bqdash.bigquery.errors import TransportError
from bqdash.reader import Executor, ExecutorRequest, RawResponse
from bqdash.utils.retries import BasicRetryPolicy, RetryException, RetryPolicy

logger = logging.getLogger(__name__)


def default_retry_policy() -> RetryPolicy:
    return BasicRetryPolicy(
        settings.HTTP_RETRIES + 1,
        settings.HTTP_RETRY_DELAY or None,
        suppression_test=lambda e: isinstance(e, TransportError),
    )


def _decode(body: bytes) -> Any:
    if not body:
        return None
    try:
        return rapidjson.loads(body.decode("utf-8"))
    except ValueError:
        return body.decode("utf-8", "replace")


class HTTPExecutor(Executor):
    """
    Sends requests to the BigQuery REST API (or to a proxy speaking it).
    Failed requests are retried according to the retry policy; once the
    policy gives up the last ``TransportError`` is raised.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        pool: Optional[PoolManager] = None,
    ) -> None:
        self.__base_url = base_url if base_url is not None else settings.BIGQUERY_API_URL
        self.__headers = {"Content-Type": "application/json", **(headers or {})}
        self.__retry_policy = (
            retry_policy if retry_policy is not None else default_retry_policy()
        )
        self.__pool = (
            pool
            if pool is not None
            else PoolManager(
                maxsize=settings.HTTP_MAX_POOL_SIZE,
                timeout=Timeout(total=settings.HTTP_TIMEOUT),
            )
        )

    def build_url(self, request: ExecutorRequest) -> str:
        url = self.__base_url + request.path.lstrip("/")
        if request.sql is None and request.params:
            url += "?" + urlencode(request.params)
        return url

    def __send(self, request: ExecutorRequest) -> RawResponse:
        url = self.build_url(request)
        body = request.get_body()
        try:
            response = self.__pool.request(
                request.method,
                url,
                body=rapidjson.dumps(body).encode("utf-8") if body is not None else None,
                headers=self.__headers,
                retries=False,
            )
        except HTTPError as e:
            logger.warning("Request to %s failed: %s", urlsplit(url).path, e)
            raise TransportError(str(e), status=0, status_text="") from e

        data = _decode(response.data)
        if response.status >= 400:
            raise TransportError(
                f"HTTP {response.status} from {urlsplit(url).path}",
                should_report=response.status >= 500,
                status=response.status,
                status_text=response.reason or "",
                data=data,
            )
        if not isinstance(data, Mapping):
            raise TransportError(
                "Response body is not a JSON object",
                status=response.status,
                status_text=response.reason or "",
            )
        return data

    def execute(self, request: ExecutorRequest) -> RawResponse:
        try:
            return self.__retry_policy.call(partial(self.__send, request))
        except RetryException as e:
            cause = e.__cause__
            if isinstance(cause, TransportError):
                raise cause
            raise TransportError(str(cause or e), status=0, status_text="") from e
