import logging
import os
from typing import Any, Dict, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration
from structlog.processors import JSONRenderer
from structlog.types import EventDict
from structlog_sentry import SentryProcessor

from bqdash import settings
from bqdash.utils.serializable_exception import SerializableException


def add_severity_attribute(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Set the severity attribute for Google Cloud logging ingestion
    """
    if method_name == "warn":
        method_name = "warning"

    event_dict["severity"] = method_name
    event_dict["level"] = method_name

    return event_dict


def drop_level(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    The "SentryProcessor" requires a `level` field but we're already
    emitting it as `severity` for Google Cloud, so we delete the duplication
    if SentryProcessor is done
    """
    del event_dict["level"]

    return event_dict


def setup_logging(level: Optional[str] = None) -> None:
    if level is None:
        level = settings.LOG_LEVEL

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=settings.LOG_FORMAT,
        force=True,
    )

    structlog.configure(
        cache_logger_on_first_use=True,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        processors=[
            add_severity_attribute,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            SentryProcessor(),
            drop_level,
            JSONRenderer(),
        ],
    )


def drop_unreported(
    event: Dict[str, Any], hint: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    """
    Events for exceptions raised with ``should_report=False`` (bad templates,
    warehouse 4xx answers) are not sent to Sentry.
    """
    exc_info = hint.get("exc_info")
    if exc_info is not None:
        exception = exc_info[1]
        if isinstance(exception, SerializableException) and not exception.should_report:
            return None
    return event


def log_exception(
    logger: logging.Logger, message: str, exception: SerializableException
) -> None:
    if exception.should_report:
        logger.warning(message, exc_info=exception)
    else:
        logger.info(message, exc_info=exception)


def setup_sentry() -> None:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[LoggingIntegration(event_level=logging.WARNING)],
        before_send=drop_unreported,
        release=os.getenv("BQDASH_RELEASE"),
        traces_sample_rate=settings.SENTRY_TRACE_SAMPLE_RATE,
    )
