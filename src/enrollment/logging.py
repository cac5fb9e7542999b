"""structlog setup for the enrollment service.

Log lines go to stderr; stdout is reserved for CLI results. Every line carries
the service name, and ``enrollment_context()`` binds the lesson and student
being worked on so nested store calls are attributable.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "tenacity")


def setup_logging(
    json_output: bool = False,
    log_level: str = "INFO",
    service_name: str = "theory-enrollment",
) -> None:
    """Configure structlog and route stdlib logging to stderr.

    Args:
        json_output: JSON lines for log shipping instead of console rendering.
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        service_name: Value of the ``service`` key on every event.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers = [logging.StreamHandler(sys.stderr)]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@contextmanager
def enrollment_context(lesson_id: str, student_id: str | None = None) -> Iterator[None]:
    """Bind lesson/student ids to every log event inside the block."""
    ids = {"lesson_id": lesson_id}
    if student_id is not None:
        ids["student_id"] = student_id
    with structlog.contextvars.bound_contextvars(**ids):
        yield


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger bound with the module name.

    Args:
        name: Logger name (typically __name__ from calling module).
    """
    return structlog.get_logger(name)
