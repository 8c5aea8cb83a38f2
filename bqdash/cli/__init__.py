from __future__ import annotations

import logging

import click

from bqdash.cli.render import render
from bqdash.environment import setup_logging, setup_sentry

logger = logging.getLogger("bqdash_cli")


@click.group()
@click.version_option()
@click.option(
    "--log-level",
    help="Logging level to use.",
    type=click.Choice(["critical", "error", "warning", "info", "debug"]),
)
def main(*, log_level: str | None) -> None:
    """Templated BigQuery queries for dashboards."""
    setup_logging(log_level)
    setup_sentry()


main.add_command(render)
