"""
Structured logging for bundlecast.

Every bundlecast module logs through stdlib ``logging.getLogger(__name__)``, so
nothing is emitted until the embedding application configures logging. Call
``setup_logging()`` once at startup to render the ``bundlecast`` logger tree
through structlog: JSON lines by default, colored console output at DEBUG.

Context bound with ``structlog.contextvars.bound_contextvars`` (the diagnoser
binds ``target_block``) is merged into every record, including stdlib ones.
"""

import logging
import sys
from typing import IO, Optional

import structlog

from .config import settings

LOGGER_NAMESPACE = "bundlecast"

# Transport libraries logging one line per request at INFO
QUIET_LOGGERS = ("httpcore", "httpx")


def setup_logging(
    log_level: Optional[str] = None,
    *,
    stream: Optional[IO[str]] = None,
    capture_root: bool = False,
) -> logging.Logger:
    """Route bundlecast logs through structlog.

    Args:
        log_level: Override log level (default: from settings.log_level)
        stream: Output stream (default: sys.stdout)
        capture_root: Install the handler on the root logger instead, for
            applications that want their own records rendered the same way

    Returns:
        The logger the handler was installed on
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    is_dev = level == logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if is_dev:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
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
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    target = logging.getLogger() if capture_root else logging.getLogger(LOGGER_NAMESPACE)
    target.handlers.clear()
    target.addHandler(handler)
    target.setLevel(level)
    if not capture_root:
        # records are rendered here only
        target.propagate = False

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return target
