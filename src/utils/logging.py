"""Log setup for clipflow: stdlib loggers rendered through structlog.

Records emitted while an upload is running carry its ``upload_id``.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

current_upload_id: ContextVar[str | None] = ContextVar("current_upload_id", default=None)

QUIET_LOGGERS = (
    "boto3",
    "botocore",
    "s3transfer",
    "urllib3.connectionpool",
    "aiosqlite",
    "httpx",
    "multipart",
)


def add_upload_id(_logger, _method_name, event_dict):
    upload_id = current_upload_id.get()
    if upload_id:
        event_dict["upload_id"] = upload_id
    return event_dict


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Install one stderr handler on the root logger.

    JSON lines when ``json_output`` is set (server), colored console
    output otherwise (CLI).
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_upload_id,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_upload_context(upload_id: str) -> None:
    current_upload_id.set(upload_id)


def clear_upload_context() -> None:
    current_upload_id.set(None)
