from __future__ import annotations

import os
from typing import Any, MutableMapping, Optional

from bqdash.settings.validation import validate_settings

# All settings must be uppercased, have a default value and cannot start with _.
# Values can be overridden by a settings module named by BQDASH_SETTINGS.

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(message)s"

TESTING = False

SENTRY_DSN: Optional[str] = os.environ.get("SENTRY_DSN")
SENTRY_TRACE_SAMPLE_RATE = float(os.environ.get("SENTRY_TRACE_SAMPLE_RATE", 0))

###################
# BigQuery access #
###################

BIGQUERY_API_URL = os.environ.get(
    "BIGQUERY_API_URL", "https://bigquery.googleapis.com/bigquery/"
)

# Project used when a datasource does not configure one. An empty value
# means the first project visible to the credentials is used.
DEFAULT_PROJECT = os.environ.get("BIGQUERY_DEFAULT_PROJECT", "")

# Smallest time bucket the $__timeGroup macros will produce when the width
# is derived from the dashboard interval.
DEFAULT_TIME_INTERVAL = os.environ.get("BIGQUERY_TIME_INTERVAL", "1m")

# Extra attempts made by the HTTP executor after a failed request.
HTTP_RETRIES = int(os.environ.get("BIGQUERY_HTTP_RETRIES", 1))
HTTP_RETRY_DELAY = float(os.environ.get("BIGQUERY_HTTP_RETRY_DELAY", 0))
HTTP_TIMEOUT = float(os.environ.get("BIGQUERY_HTTP_TIMEOUT", 30))
HTTP_MAX_POOL_SIZE = 10


def _load_settings(obj: MutableMapping[str, Any] = locals()) -> None:
    """Load settings from the path provided in the BQDASH_SETTINGS environment
    variable if provided. Users can provide a short name like `test` that will
    be expanded to `settings_test.py` in this package, or they can provide a
    full absolute path such as `/foo/bar/my_settings.py`."""

    import importlib
    import importlib.abc
    import importlib.util
    import os

    settings = os.environ.get("BQDASH_SETTINGS")

    if settings:
        if settings.startswith("/"):
            if not settings.endswith(".py"):
                settings += ".py"

            settings_spec = importlib.util.spec_from_file_location(
                "bqdash.settings.custom", settings
            )
            assert settings_spec is not None
            settings_module = importlib.util.module_from_spec(settings_spec)
            assert isinstance(settings_spec.loader, importlib.abc.Loader)
            settings_spec.loader.exec_module(settings_module)
        else:
            module_format = (
                ".%s" if settings.startswith("settings_") else ".settings_%s"
            )
            settings_module = importlib.import_module(
                module_format % settings, "bqdash.settings"
            )

        for attr in dir(settings_module):
            if attr.isupper():
                obj[attr] = getattr(settings_module, attr)


_load_settings()
validate_settings(locals())
