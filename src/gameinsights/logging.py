"""structlog configuration for processes embedding the adapter layer."""

from __future__ import annotations

import logging

import structlog

from gameinsights.settings import get_settings


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """Configure structlog processors and the stdlib root level.

    Args:
        level: Log level name. Defaults to ``Settings.log_level``.
        json: Render events as JSON lines instead of console output.
            Defaults to ``Settings.log_json``.
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json is None else json

    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer: structlog.typing.Processor
    if use_json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=numeric_level, format="%(message)s")
