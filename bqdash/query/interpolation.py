import re
from typing import Mapping, Match, Optional

from bqdash.bigquery.escaping import LiteralKind, classify_literal, quote_literal
from bqdash.query import Variable

# $name, ${name}, ${name:format} and [[name]] / [[name:format]]. Formats are
# accepted but ignored: quoting only depends on the variable itself.
VARIABLE_RE = re.compile(
    r"\$(?P<plain>\w+)"
    r"|\$\{(?P<braced>\w+)(?::[^}]*)?\}"
    r"|\[\[(?P<bracketed>\w+)(?::[^\]]*)?\]\]"
)


def format_variable_value(variable: Variable) -> str:
    """
    Lists and multi-value variables become a comma separated list of quoted
    literals. A single text value is inserted as is: templates are expected
    to quote it themselves, e.g. ``WHERE host = '$host'``.
    """
    value = variable.value
    kind = classify_literal(value)

    if kind is not LiteralKind.STRING or variable.multi or variable.include_all:
        return quote_literal(value)
    return value if isinstance(value, str) else str(value)


def variable_name(match: Match[str]) -> Optional[str]:
    return match.group("plain") or match.group("braced") or match.group("bracketed")


def interpolate(raw_sql: str, variables: Mapping[str, Variable]) -> str:
    """
    Replaces every variable token with the formatted value of the variable.
    Tokens naming variables that are not in ``variables`` are left untouched.
    """

    def replace(match: Match[str]) -> str:
        name = variable_name(match)
        variable = variables.get(name) if name is not None else None
        if variable is None:
            return match.group(0)
        return format_variable_value(variable)

    return VARIABLE_RE.sub(replace, raw_sql)
