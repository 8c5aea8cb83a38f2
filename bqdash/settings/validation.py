from typing import Any, Mapping


class InvalidSettingError(ValueError):
    pass


def validate_settings(locals: Mapping[str, Any]) -> None:
    from bqdash.util import parse_interval

    try:
        time_interval = parse_interval(locals["DEFAULT_TIME_INTERVAL"])
    except ValueError as e:
        raise InvalidSettingError(
            f"Invalid DEFAULT_TIME_INTERVAL {locals['DEFAULT_TIME_INTERVAL']!r}"
        ) from e

    if time_interval <= 0:
        raise InvalidSettingError("DEFAULT_TIME_INTERVAL must be positive")

    if locals["HTTP_RETRIES"] < 0:
        raise InvalidSettingError("HTTP_RETRIES cannot be negative")

    if not locals["BIGQUERY_API_URL"].endswith("/"):
        raise InvalidSettingError("BIGQUERY_API_URL must end with a slash")
