from __future__ import annotations

from dataclasses import replace
from typing import Dict, Mapping, Optional, Sequence

from bqdash.query import QueryOptions, QueryTarget, RequestPayload, Variable
from bqdash.query.interpolation import interpolate
from bqdash.query.macros import expand_macros
from bqdash.util import format_interval


def builtin_variables(options: QueryOptions) -> Dict[str, Variable]:
    """
    Variables every query can use without the dashboard defining them.
    """
    interval_ms = options.bucket_width_ms
    return {
        "__interval": Variable("__interval", format_interval(interval_ms)),
        "__interval_ms": Variable("__interval_ms", interval_ms),
    }


def resolve_variables(
    options: QueryOptions, variables: Optional[Mapping[str, Variable]] = None
) -> Dict[str, Variable]:
    resolved = builtin_variables(options)
    resolved.update(options.scoped_vars)
    if variables:
        resolved.update(variables)
    return resolved


def render_sql(
    raw_sql: str,
    options: QueryOptions,
    variables: Optional[Mapping[str, Variable]] = None,
) -> str:
    """
    Macros are expanded before variables are interpolated: a variable value
    must never be parsed as macro syntax. Macro arguments naming a variable
    see the same variables as the rest of the query.
    """
    resolved = resolve_variables(options, variables)
    expanded = expand_macros(raw_sql, replace(options, scoped_vars=resolved))
    return interpolate(expanded, resolved)


def render(
    target: QueryTarget,
    options: QueryOptions,
    variables: Optional[Mapping[str, Variable]] = None,
) -> RequestPayload:
    return RequestPayload(
        ref_id=target.ref_id,
        raw_sql=render_sql(target.raw_sql, options, variables),
        format=target.format,
        interval_ms=options.interval_ms,
        max_data_points=options.max_data_points,
    )


def render_batch(
    targets: Sequence[QueryTarget],
    options: QueryOptions,
    variables: Optional[Mapping[str, Variable]] = None,
) -> Sequence[RequestPayload]:
    """
    Renders every visible target. Hidden targets are not part of the batch.
    """
    return [
        render(target, options, variables) for target in targets if not target.hide
    ]
