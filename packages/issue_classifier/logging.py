"""Structured logging for the classifier.

Events go through structlog into the ``packages.issue_classifier`` stdlib
logger, which writes to stderr. stdout is left to command output
(metrics tables, prediction lines), so piping ``predict --file`` never
picks up log lines.

Usage:
    import structlog
    logger = structlog.get_logger()
    logger.info("model_saved", path=path, classes=2)
"""

import logging
import sys
from typing import IO, Optional

import structlog

PACKAGE_LOGGER = __name__.rpartition(".")[0]


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: Optional[IO[str]] = None,
) -> None:
    """Configure structlog and the package log handler.

    Args:
        log_level: Python log level string (DEBUG, INFO, WARNING, ERROR).
        json_output: One JSON object per line instead of console output.
        stream: Destination for log lines; stderr when omitted.
    """
    target = stream if stream is not None else sys.stderr
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_output:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        colors = bool(getattr(target, "isatty", lambda: False)())
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(target)
    handler.setFormatter(logging.Formatter("%(message)s"))

    # Repeated calls replace the handler instead of stacking another one
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.handlers = [handler]
    package_logger.setLevel(level)
    package_logger.propagate = False
