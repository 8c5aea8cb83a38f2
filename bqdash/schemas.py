from __future__ import annotations

from typing import Any, Iterator, Mapping, MutableMapping, Sequence, Tuple

import jsonschema

from bqdash.query import QueryFormat, QueryOptions, QueryTarget, TimeRange, Variable
from bqdash.util import parse_interval

DATE_VALUE = {"anyOf": [{"type": "string", "minLength": 1}, {"type": "number"}]}

VARIABLE_SCHEMA = {
    "type": "object",
    "properties": {
        "value": {},
        "multi": {"type": "boolean", "default": False},
        "includeAll": {"type": "boolean", "default": False},
    },
    "required": ["value"],
}

TARGET_SCHEMA = {
    "type": "object",
    "properties": {
        "refId": {"type": "string", "minLength": 1},
        "rawSql": {"type": "string", "default": ""},
        "format": {
            "type": "string",
            "enum": ["table", "time_series", "timeseries"],
            "default": "table",
        },
        "hide": {"type": "boolean", "default": False},
    },
    "required": ["refId"],
}

QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "range": {
            "type": "object",
            "properties": {"from": DATE_VALUE, "to": DATE_VALUE},
            "required": ["from", "to"],
        },
        "intervalMs": {"type": "integer", "minimum": 0, "default": 0},
        "maxDataPoints": {"type": "integer", "minimum": 0, "default": 0},
        "scopedVars": {
            "type": "object",
            "additionalProperties": VARIABLE_SCHEMA,
            "default": dict,
        },
        "targets": {"type": "array", "items": TARGET_SCHEMA, "default": list},
    },
    "required": ["range"],
}


def validate(
    value: MutableMapping[str, Any], schema: Mapping[str, Any], set_defaults: bool = True
) -> None:
    """
    Validates ``value`` against ``schema``. Unless ``set_defaults`` is False,
    missing properties with a ``default`` are filled in while validating;
    callable defaults are called to build a fresh value.
    """
    orig = jsonschema.Draft7Validator.VALIDATORS["properties"]

    def validate_and_default(
        validator: Any, properties: Mapping[str, Any], instance: Any, schema: Any
    ) -> Iterator[jsonschema.ValidationError]:
        if isinstance(instance, MutableMapping):
            for property, subschema in properties.items():
                if "default" in subschema:
                    if callable(subschema["default"]):
                        instance.setdefault(property, subschema["default"]())
                    else:
                        instance.setdefault(property, subschema["default"])

        yield from orig(validator, properties, instance, schema)

    validator_cls = (
        jsonschema.validators.extend(
            jsonschema.Draft7Validator, {"properties": validate_and_default}
        )
        if set_defaults
        else jsonschema.Draft7Validator
    )

    validator_cls(schema).validate(value)


def parse_variables(body: Mapping[str, Any]) -> Mapping[str, Variable]:
    return {
        name: Variable(
            name=name,
            value=variable["value"],
            multi=variable.get("multi", False),
            include_all=variable.get("includeAll", False),
        )
        for name, variable in body.items()
    }


def parse_query_request(
    body: MutableMapping[str, Any],
    project: str = "",
    min_interval: str = "",
) -> Tuple[Sequence[QueryTarget], QueryOptions]:
    """
    Validates a query document sent by the dashboard host and builds the
    targets and options to render. Raises ``jsonschema.ValidationError``.
    """
    validate(body, QUERY_SCHEMA)

    extra = {"min_interval_ms": parse_interval(min_interval)} if min_interval else {}
    options = QueryOptions(
        range=TimeRange.build(body["range"]["from"], body["range"]["to"]),
        interval_ms=body["intervalMs"],
        max_data_points=body["maxDataPoints"],
        scoped_vars=parse_variables(body["scopedVars"]),
        project=project,
        **extra,
    )
    targets = [
        QueryTarget(
            ref_id=target["refId"],
            raw_sql=target["rawSql"],
            format=QueryFormat(target["format"]),
            hide=target["hide"],
        )
        for target in body["targets"]
    ]
    return targets, options
