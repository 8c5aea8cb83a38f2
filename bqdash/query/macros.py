"""
Expansion of the ``$__name(...)`` macros that can be used in query text.

Macros are written as function calls. Their arguments are positional and
separated by commas at the top level of the call: commas and parentheses
nested in function calls or in quoted strings belong to the argument.

==============================  ==============================================
Macro                           Expansion
==============================  ==============================================
``$__timeFilter(col)``          ``col BETWEEN TIMESTAMP_MILLIS(from) AND
                                TIMESTAMP_MILLIS(to)``
``$__timeFrom()``               ``TIMESTAMP_MILLIS(from)``
``$__timeTo()``                 ``TIMESTAMP_MILLIS(to)``
``$__millisTimeFrom()``         milliseconds since the epoch of ``from``
``$__millisTimeTo()``           milliseconds since the epoch of ``to``
``$__unixEpochFilter(col)``     ``col BETWEEN from_seconds AND to_seconds``
``$__timeGroup(col[, width])``  ``col`` truncated to buckets of ``width``
``$__timeGroupAlias(...)``      the same, aliased ``AS time``
``$__table(dataset.table)``     a quoted table reference in the datasource
                                project
==============================  ==============================================
"""

import logging
import math
import re
from typing import Callable, List, Mapping, NamedTuple, Optional, Tuple

from bqdash.bigquery.escaping import escape_table_reference
from bqdash.query import QueryOptions
from bqdash.query.exceptions import MacroSyntaxError
from bqdash.query.interpolation import VARIABLE_RE, variable_name
from bqdash.util import parse_interval

logger = logging.getLogger(__name__)

MACRO_CALL_RE = re.compile(r"\$__(?P<name>[a-zA-Z]\w*)\(")

# Width arguments meaning "the dashboard interval", in any token spelling
# of the built-in interval variables.
AUTO_WIDTHS = frozenset(["auto"])
AUTO_WIDTH_VARIABLES = frozenset(["__interval", "__interval_ms"])

QUOTES = "'\"`"


class Macro(NamedTuple):
    min_args: int
    max_args: int
    expand: Callable[[List[str], QueryOptions], str]


def split_arguments(sql: str, start: int, macro_name: str) -> Tuple[List[str], int]:
    """
    Reads the arguments of a macro call whose opening parenthesis ends at
    ``start``. Returns the stripped arguments and the position right after
    the closing parenthesis.
    """
    arguments: List[str] = []
    current: List[str] = []
    depth = 1
    quote: Optional[str] = None
    position = start

    while position < len(sql):
        char = sql[position]
        if quote is not None:
            current.append(char)
            if char == "\\" and position + 1 < len(sql):
                current.append(sql[position + 1])
                position += 1
            elif char == quote:
                quote = None
        elif char in QUOTES:
            quote = char
            current.append(char)
        elif char == "(":
            depth += 1
            current.append(char)
        elif char == ")":
            depth -= 1
            if depth == 0:
                arguments.append("".join(current).strip())
                if arguments == [""]:
                    arguments = []
                return arguments, position + 1
            current.append(char)
        elif char == "," and depth == 1:
            arguments.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        position += 1

    raise MacroSyntaxError(
        f"Unbalanced parentheses in macro $__{macro_name}", macro=macro_name
    )


def _column(arguments: List[str], macro_name: str) -> str:
    column = arguments[0]
    if not column:
        raise MacroSyntaxError(
            f"Macro $__{macro_name} requires a column", macro=macro_name
        )
    return column


def bucket_width_seconds(
    width: Optional[str], options: QueryOptions, macro_name: str
) -> int:
    """
    Without an explicit width the bucket follows the dashboard interval, never
    going below the minimum interval of the datasource. Explicit widths are
    durations like ``30s`` or ``1h`` or template variables holding one, looked
    up in ``options.scoped_vars``.
    """
    token = VARIABLE_RE.fullmatch(width) if width is not None else None
    name = variable_name(token) if token is not None else None

    if width is None or width in AUTO_WIDTHS or name in AUTO_WIDTH_VARIABLES:
        width_ms = options.bucket_width_ms
    else:
        if token is not None:
            variable = options.scoped_vars.get(name) if name else None
            if variable is None or isinstance(variable.value, (list, tuple)):
                raise MacroSyntaxError(
                    f"Cannot resolve width {width} in macro $__{macro_name}",
                    macro=macro_name,
                )
            width = str(variable.value)
        try:
            width_ms = parse_interval(width)
        except ValueError:
            raise MacroSyntaxError(
                f"Invalid width {width!r} in macro $__{macro_name}", macro=macro_name
            )

    if width_ms <= 0:
        raise MacroSyntaxError(
            f"Width must be positive in macro $__{macro_name}", macro=macro_name
        )
    return max(1, math.ceil(width_ms / 1000))


def _time_filter(arguments: List[str], options: QueryOptions) -> str:
    column = _column(arguments, "timeFilter")
    return (
        f"{column} BETWEEN TIMESTAMP_MILLIS({options.range.from_ms})"
        f" AND TIMESTAMP_MILLIS({options.range.to_ms})"
    )


def _unix_epoch_filter(arguments: List[str], options: QueryOptions) -> str:
    column = _column(arguments, "unixEpochFilter")
    return (
        f"{column} BETWEEN {options.range.from_ms // 1000}"
        f" AND {options.range.to_ms // 1000}"
    )


def _time_group(macro_name: str, alias: bool) -> Callable[[List[str], QueryOptions], str]:
    def expand(arguments: List[str], options: QueryOptions) -> str:
        column = _column(arguments, macro_name)
        width = arguments[1] if len(arguments) > 1 else None
        seconds = bucket_width_seconds(width, options, macro_name)
        group = f"TIMESTAMP_SECONDS(DIV(UNIX_SECONDS({column}), {seconds}) * {seconds})"
        return f"{group} AS time" if alias else group

    return expand


def _table(arguments: List[str], options: QueryOptions) -> str:
    reference = _column(arguments, "table").strip("`")
    parts = reference.split(".")
    if not 1 <= len(parts) <= 3 or not all(parts):
        raise MacroSyntaxError(
            f"Invalid table reference {reference!r} in macro $__table", macro="table"
        )
    if len(parts) == 2 and options.project:
        reference = f"{options.project}.{reference}"
    return escape_table_reference(reference)


MACROS: Mapping[str, Macro] = {
    "timeFilter": Macro(1, 1, _time_filter),
    "timeFrom": Macro(0, 0, lambda _, o: f"TIMESTAMP_MILLIS({o.range.from_ms})"),
    "timeTo": Macro(0, 0, lambda _, o: f"TIMESTAMP_MILLIS({o.range.to_ms})"),
    "millisTimeFrom": Macro(0, 0, lambda _, o: str(o.range.from_ms)),
    "millisTimeTo": Macro(0, 0, lambda _, o: str(o.range.to_ms)),
    "unixEpochFilter": Macro(1, 1, _unix_epoch_filter),
    "timeGroup": Macro(1, 2, _time_group("timeGroup", alias=False)),
    "timeGroupAlias": Macro(1, 2, _time_group("timeGroupAlias", alias=True)),
    "table": Macro(1, 1, _table),
}


def expand_macro(name: str, arguments: List[str], options: QueryOptions) -> str:
    macro = MACROS.get(name)
    if macro is None:
        raise MacroSyntaxError(f"Unknown macro $__{name}", macro=name)
    if not macro.min_args <= len(arguments) <= macro.max_args:
        raise MacroSyntaxError(
            f"Macro $__{name} takes {macro.min_args} to {macro.max_args} "
            f"arguments, {len(arguments)} given",
            macro=name,
        )
    return macro.expand(arguments, options)


def expand_macros(raw_sql: str, options: QueryOptions) -> str:
    """
    Replaces every macro call in ``raw_sql``. Arguments are expanded before
    the macro they are passed to. The output contains no macro call, so
    expanding it again returns it unchanged.
    """
    output: List[str] = []
    position = 0

    while True:
        match = MACRO_CALL_RE.search(raw_sql, position)
        if match is None:
            break

        name = match.group("name")
        arguments, end = split_arguments(raw_sql, match.end(), name)
        arguments = [expand_macros(argument, options) for argument in arguments]

        output.append(raw_sql[position : match.start()])
        output.append(expand_macro(name, arguments, options))
        position = end

    if not output:
        return raw_sql

    output.append(raw_sql[position:])
    expanded = "".join(output)
    logger.debug("Expanded macros: %s", expanded)
    return expanded
