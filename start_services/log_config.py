"""Structured logging setup for the task runner.

Log lines are written to stderr; stdout is reserved for task output and the
run summary. Every line of a run carries its ``run_id``, and lines emitted
by a task worker also carry the ``task`` name.

Example:
    >>> import structlog
    >>> from start_services.log_config import configure_logging
    >>> configure_logging(level="INFO", json_logs=True)
    >>> structlog.get_logger(__name__).info("task_file_loaded", task_count=3)
"""

import logging
import sys
from typing import IO, Any

import structlog


def configure_logging(
    level: str = "WARNING",
    json_logs: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog, bridged through the standard library logging module.

    Args:
        level: Logging level name, case-insensitive (DEBUG, INFO, WARNING, ...)
        json_logs: Render one JSON object per line instead of console text
        stream: Where log lines are written (default: sys.stderr)

    Raises:
        ValueError: If ``level`` is not a logging level name
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        msg = f"Invalid log level: {level}"
        raise ValueError(msg)

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=numeric_level,
    )

    renderer: Any
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ],
            ),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_run_id(run_id: str) -> None:
    """Tag every following log line of this run with ``run_id``.

    Task workers are asyncio tasks and copy the context when they are
    created, so they inherit the run ID bound before dispatch.
    """
    structlog.contextvars.bind_contextvars(run_id=run_id)


def bind_task(name: str) -> None:
    """Tag the log lines of the current task worker with its task name."""
    structlog.contextvars.bind_contextvars(task=name)
