from __future__ import annotations

import logging
import sys
from collections import defaultdict
from typing import Any, List, Mapping, MutableMapping, Optional, Sequence

import click

from bqdash import settings
from bqdash.environment import log_exception
from bqdash.query import QueryOptions, TimeRange, Variable
from bqdash.query.exceptions import InvalidQueryException
from bqdash.query.model import render_sql
from bqdash.util import parse_interval

logger = logging.getLogger(__name__)


def parse_variables(values: Sequence[str]) -> Mapping[str, Variable]:
    """
    ``name=value`` pairs. A name given more than once becomes a multi-value
    variable holding every value in order.
    """
    collected: MutableMapping[str, List[Any]] = defaultdict(list)
    for value in values:
        name, sep, raw = value.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got {value!r}")
        collected[name].append(raw)

    return {
        name: Variable(name, raw[0])
        if len(raw) == 1
        else Variable(name, raw, multi=True)
        for name, raw in collected.items()
    }


@click.command()
@click.argument("sql", default="-")
@click.option("--from", "from_date", required=True, help="Start of the time range.")
@click.option("--to", "to_date", required=True, help="End of the time range.")
@click.option("--interval", default="0s", help="Dashboard interval, e.g. 30s.")
@click.option(
    "--min-interval",
    default=None,
    help="Smallest time bucket. Defaults to the configured time interval.",
)
@click.option("--project", default="", help="Project used by $__table.")
@click.option(
    "--var",
    "variables",
    multiple=True,
    help="Template variable as name=value. Repeat a name for several values.",
)
def render(
    *,
    sql: str,
    from_date: str,
    to_date: str,
    interval: str,
    min_interval: Optional[str],
    project: str,
    variables: Sequence[str],
) -> None:
    """
    Print SQL (or standard input when SQL is -) with every macro expanded and
    every variable interpolated, as it would be sent to BigQuery.
    """
    if sql == "-":
        sql = sys.stdin.read()

    try:
        options = QueryOptions(
            range=TimeRange.build(from_date, to_date),
            interval_ms=parse_interval(interval),
            project=project,
            min_interval_ms=parse_interval(
                min_interval or settings.DEFAULT_TIME_INTERVAL
            ),
        )
        click.echo(render_sql(sql, options, parse_variables(variables)))
    except InvalidQueryException as e:
        log_exception(logger, "Invalid query", e)
        raise click.ClickException(e.message)
    except ValueError as e:
        raise click.ClickException(str(e))
