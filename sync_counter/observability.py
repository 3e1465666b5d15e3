"""Structured logging for the API process and the client runtime."""

import logging

import structlog

from sync_counter.core.config import settings

# chatty third-party loggers, kept at WARNING
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "sse_starlette")


def _renderer():
    if settings.ENVIRONMENT == "production":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def setup_structured_logging(level: str | None = None):
    """Route stdlib logging through structlog: JSON in production, console in dev.

    Anything bound with ``structlog.contextvars`` (the request id from the
    HTTP middleware) is merged into every record, stdlib loggers included.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level or settings.LOG_LEVEL)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
