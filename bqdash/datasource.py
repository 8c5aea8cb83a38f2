from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import (
    Any,
    Callable,
    List,
    Mapping,
    MutableMapping,
    NamedTuple,
    Optional,
    Sequence,
    Union,
)
from urllib.parse import quote

import rapidjson
import sentry_sdk
import structlog

from bqdash import settings
from bqdash.bigquery import API_VERSION
from bqdash.bigquery.errors import TransportError
from bqdash.query import (
    QueryOptions,
    QueryTarget,
    TimeRange,
    Variable,
)
from bqdash.query.exceptions import DatasourceError, InvalidQueryException
from bqdash.query.model import render_batch, render_sql
from bqdash.reader import Executor, ExecutorRequest, MalformedResponseError, RawResponse
from bqdash.response_parser import (
    AnnotationEvent,
    MetricFindValue,
    SeriesResult,
    TableResult,
    parse_annotations,
    parse_datasets,
    parse_metric_find,
    parse_projects,
    parse_query_result,
    parse_table_fields,
    parse_tables,
)
from bqdash.schemas import parse_query_request
from bqdash.util import DateLike, parse_interval

logger = structlog.get_logger().bind(module=__name__)

DEFAULT_ERROR_MESSAGE = "Cannot connect to BigQuery API"

# Number of times an unfinished query job is polled before giving up.
QUERY_POLL_ATTEMPTS = 10
QUERY_TIMEOUT_MS = 10000


@dataclass(frozen=True)
class DatasourceSettings:
    """
    Per datasource configuration, as stored by the dashboard host in the
    datasource ``jsonData``.
    """

    name: str = "BigQuery"
    default_project: str = field(default_factory=lambda: settings.DEFAULT_PROJECT)
    time_interval: str = field(default_factory=lambda: settings.DEFAULT_TIME_INTERVAL)

    @classmethod
    def from_json_data(cls, name: str, json_data: Mapping[str, Any]) -> DatasourceSettings:
        return cls(
            name=name,
            default_project=json_data.get("defaultProject") or settings.DEFAULT_PROJECT,
            time_interval=json_data.get("timeInterval") or settings.DEFAULT_TIME_INTERVAL,
        )


@dataclass(frozen=True)
class AnnotationQuery:
    name: str
    raw_query: str = ""


class QueryResult(NamedTuple):
    ref_id: str
    result: Union[TableResult, SeriesResult]


def default_time_range() -> TimeRange:
    now = datetime.now(timezone.utc)
    return TimeRange(now - timedelta(hours=6), now)


def _path(*segments: str) -> str:
    return "/".join([API_VERSION, *(quote(s, safe="") for s in segments)])


def format_bigquery_error(error: Exception) -> str:
    """
    Builds the message shown to users out of a failed warehouse request,
    e.g. ``BigQuery: Not Found: 404. Not found: Dataset p:d``.
    """
    message = "BigQuery: "
    if not isinstance(error, TransportError):
        return message + (str(error) or DEFAULT_ERROR_MESSAGE)

    if error.status_text:
        message += f"{error.status_text}: "

    data = error.data
    details = data.get("error") if isinstance(data, Mapping) else None
    if isinstance(details, str):
        try:
            details = rapidjson.loads(details)["error"]
        except (ValueError, KeyError, TypeError):
            return message + details

    if isinstance(details, Mapping):
        return message + f"{details.get('code')}. {details.get('message')}"
    return message + DEFAULT_ERROR_MESSAGE


class BigQueryDatasource:
    """
    Runs dashboard queries against BigQuery. Query text goes through macro
    expansion and variable interpolation, is sent with the executor, and
    the response is normalized into the structures the dashboard renders.
    """

    def __init__(
        self,
        datasource_settings: DatasourceSettings,
        executor: Executor,
        time_range_provider: Callable[[], TimeRange] = default_time_range,
    ) -> None:
        self.__settings = datasource_settings
        self.__executor = executor
        self.__time_range_provider = time_range_provider
        self.__project_name = datasource_settings.default_project

    @property
    def name(self) -> str:
        return self.__settings.name

    @property
    def min_interval_ms(self) -> int:
        return parse_interval(self.__settings.time_interval)

    def build_options(
        self,
        from_date: DateLike,
        to_date: DateLike,
        interval_ms: int = 0,
        max_data_points: int = 0,
        scoped_vars: Optional[Mapping[str, Variable]] = None,
    ) -> QueryOptions:
        return QueryOptions(
            range=TimeRange.build(from_date, to_date),
            interval_ms=interval_ms,
            max_data_points=max_data_points,
            scoped_vars=scoped_vars or {},
            project=self.__project_name,
            min_interval_ms=self.min_interval_ms,
        )

    def __with_project(self, options: QueryOptions) -> QueryOptions:
        if options.project:
            return options
        return replace(options, project=self.get_default_project())

    def __execute(self, request: ExecutorRequest) -> RawResponse:
        with sentry_sdk.start_span(description=request.path, op="bigquery.request"):
            return self.__executor.execute(request)

    def __results_request(
        self, project: str, job: Any, page_token: Optional[str] = None
    ) -> ExecutorRequest:
        if not isinstance(job, Mapping) or "jobId" not in job:
            raise MalformedResponseError("Query job without a job id")

        params: MutableMapping[str, Any] = {"timeoutMs": QUERY_TIMEOUT_MS}
        if job.get("location"):
            params["location"] = job["location"]
        if page_token:
            params["pageToken"] = page_token
        return ExecutorRequest(
            path=_path("projects", project, "queries", job["jobId"]), params=params
        )

    def __wait_for_job(
        self,
        project: str,
        response: RawResponse,
        job: Any,
        page_token: Optional[str] = None,
    ) -> RawResponse:
        attempts = 0
        while response.get("jobComplete") is False:
            attempts += 1
            if attempts > QUERY_POLL_ATTEMPTS:
                raise DatasourceError(
                    "BigQuery: query did not complete in time",
                    should_report=False,
                )
            response = self.__execute(
                self.__results_request(project, job, page_token)
            )
        return response

    def __run_query(self, project: str, sql: str) -> RawResponse:
        """
        Runs a query and waits for it, then collects every page of its rows
        into the first response.
        """
        response = self.__execute(
            ExecutorRequest(
                path=_path("projects", project, "queries"),
                method="POST",
                sql=sql,
                params={"timeoutMs": QUERY_TIMEOUT_MS},
            )
        )
        job = response.get("jobReference")
        response = self.__wait_for_job(project, response, job)

        token = response.get("pageToken")
        if not token:
            return response

        rows: List[Any] = list(response.get("rows") or [])
        while token:
            page = self.__execute(self.__results_request(project, job, token))
            page = self.__wait_for_job(project, page, job, token)
            page_rows = page.get("rows") or []
            if not isinstance(page_rows, list):
                raise MalformedResponseError("Expected a list of rows")
            rows.extend(page_rows)
            token = page.get("pageToken")

        logger.debug("datasource.query_pages", project=project, rows=len(rows))
        merged = dict(response)
        merged.pop("pageToken", None)
        merged["rows"] = rows
        return merged

    def __list(self, path: str, key: str) -> RawResponse:
        """
        Collects every page of a catalog listing into a single response.
        """
        entries: List[Any] = []
        params: MutableMapping[str, Any] = {}
        while True:
            response = self.__execute(ExecutorRequest(path=path, params=dict(params)))
            page = response.get(key) or []
            if not isinstance(page, list):
                raise MalformedResponseError(f"Expected a list of {key}")
            entries.extend(page)

            token = response.get("nextPageToken")
            if not token:
                return {key: entries}
            params["pageToken"] = token

    def query(
        self, targets: Sequence[QueryTarget], options: QueryOptions
    ) -> List[QueryResult]:
        """
        Runs every visible target and returns one result per target, in the
        order of the targets. Nothing is sent when every target is hidden.
        """
        if all(target.hide for target in targets):
            return []

        options = self.__with_project(options)
        results = []
        for payload in render_batch(targets, options):
            logger.debug("datasource.query", ref_id=payload.ref_id, sql=payload.raw_sql)
            response = self.__run_query(options.project, payload.raw_sql)
            results.append(
                QueryResult(payload.ref_id, parse_query_result(response, payload.format))
            )
        return results

    def query_from_request(self, body: MutableMapping[str, Any]) -> List[QueryResult]:
        targets, options = parse_query_request(
            body, project=self.__project_name, min_interval=self.__settings.time_interval
        )
        return self.query(targets, options)

    def annotation_query(
        self, options: QueryOptions, annotation: AnnotationQuery
    ) -> List[AnnotationEvent]:
        if not annotation.raw_query:
            raise InvalidQueryException(
                "Query missing in annotation definition", should_report=False
            )

        options = self.__with_project(options)
        sql = render_sql(annotation.raw_query, options)
        return parse_annotations(
            self.__run_query(options.project, sql), annotation.name
        )

    def metric_find_query(
        self,
        query: str,
        variable_name: Optional[str] = None,
        variables: Optional[Mapping[str, Variable]] = None,
    ) -> List[MetricFindValue]:
        """
        Runs the query of a template variable and returns its values.
        """
        time_range = self.__time_range_provider()
        options = self.__with_project(
            self.build_options(time_range.from_date, time_range.to_date)
        )
        sql = render_sql(query, options, variables)
        logger.debug("datasource.metric_find", variable=variable_name or "tempvar", sql=sql)
        return parse_metric_find(self.__run_query(options.project, sql))

    def get_projects(self) -> List[MetricFindValue]:
        return parse_projects(self.__list(_path("projects"), "projects"))

    def get_datasets(self, project_name: str) -> List[MetricFindValue]:
        return parse_datasets(
            self.__list(_path("projects", project_name, "datasets"), "datasets")
        )

    def get_tables(self, project_name: str, dataset_name: str) -> List[MetricFindValue]:
        path = _path("projects", project_name, "datasets", dataset_name, "tables")
        return parse_tables(self.__list(path, "tables"))

    def get_table_fields(
        self,
        project_name: str,
        dataset_name: str,
        table_name: str,
        type_filter: Sequence[str] = (),
    ) -> List[MetricFindValue]:
        path = _path(
            "projects", project_name, "datasets", dataset_name, "tables", table_name
        )
        return parse_table_fields(self.__execute(ExecutorRequest(path=path)), type_filter)

    def get_default_project(self) -> str:
        """
        The configured project or, without one, the first project the
        credentials can see. The result is remembered.
        """
        if self.__project_name:
            return self.__project_name

        try:
            projects = self.get_projects()
        except TransportError as e:
            raise DatasourceError(format_bigquery_error(e)) from e

        if not projects:
            raise DatasourceError("BigQuery: no project available", should_report=False)

        self.__project_name = str(projects[0].value)
        logger.info("datasource.default_project", project=self.__project_name)
        return self.__project_name

    def test_datasource(self) -> Mapping[str, str]:
        try:
            project_name = self.get_default_project()
            self.__execute(
                ExecutorRequest(path=_path("projects", project_name, "datasets"))
            )
        except TransportError as e:
            logger.warning("datasource.test_failed", exc_info=True)
            return {"status": "error", "message": format_bigquery_error(e)}
        except (DatasourceError, MalformedResponseError) as e:
            logger.warning("datasource.test_failed", exc_info=True)
            return {"status": "error", "message": e.message or DEFAULT_ERROR_MESSAGE}

        return {"status": "success", "message": "Successfully queried the BigQuery API."}
