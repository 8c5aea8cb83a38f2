import math
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Union

ESCAPE_STRING_RE = re.compile(r"(['\\])")
ESCAPE_TABLE_REFERENCE_RE = re.compile(r"([`\\])")


class LiteralKind(Enum):
    STRING = "string"
    NUMBER = "number"
    LIST = "list"
    NULL = "null"


def classify_literal(value: Any) -> LiteralKind:
    """
    Every value falls in exactly one kind. Booleans are not numbers here and,
    like any other unknown type, are coerced to strings by ``quote_literal``.
    """
    if value is None:
        return LiteralKind.NULL
    elif isinstance(value, bool):
        return LiteralKind.STRING
    elif isinstance(value, (int, float, Decimal)):
        return LiteralKind.NUMBER
    elif isinstance(value, (list, tuple)):
        return LiteralKind.LIST
    else:
        return LiteralKind.STRING


def escape_string(value: str) -> str:
    value = ESCAPE_STRING_RE.sub(r"\\\1", value)
    return "'{}'".format(value)


def format_number(value: Union[int, float, Decimal]) -> str:
    """
    Numbers are written in plain positional notation, never with an exponent.
    NaN and the infinities have no literal form in BigQuery and are written
    as casts from strings instead.
    """
    if isinstance(value, int):
        return str(int(value))

    if isinstance(value, float):
        if math.isnan(value):
            label = "nan"
        elif math.isinf(value):
            label = "-inf" if value < 0 else "inf"
        else:
            return format(Decimal(repr(value)), "f")
    elif value.is_nan():
        label = "nan"
    elif value.is_infinite():
        label = "-inf" if value.is_signed() else "inf"
    else:
        return format(value, "f")
    return "CAST('{}' AS FLOAT64)".format(label)


def quote_literal(value: Any) -> str:
    """
    Formats a template variable value as a BigQuery standard SQL literal.
    Lists become a comma separated sequence of literals without brackets so
    they can be dropped into an ``IN (...)`` clause.
    """
    kind = classify_literal(value)
    if kind is LiteralKind.NULL:
        return "NULL"
    elif kind is LiteralKind.NUMBER:
        return format_number(value)
    elif kind is LiteralKind.LIST:
        return ",".join(quote_literal(v) for v in value)
    else:
        return escape_string(value if isinstance(value, str) else str(value))


def escape_table_reference(reference: str) -> str:
    """
    Table references are always wrapped as a whole: BigQuery accepts
    `project.dataset.table` and project ids may contain dashes.
    """
    return "`{}`".format(ESCAPE_TABLE_REFERENCE_RE.sub(r"\\\1", reference.strip("`")))
