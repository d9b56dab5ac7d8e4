"""
Structured logging setup using structlog.

Every dsqlkit event is a snake_case name plus key/value context. The keys
the bootstrapper and runner emit are stable so log queries can rely on them:

    step      retry step name ("create_table", "2:record", ...)
    attempt   1-based attempt number within a RetryExecutor call
    error     message of the failed attempt (carries the OC000/OC001 code)
    table     ledger table name
    version   migration version being applied
    command   CLI command, bound once per run via bind_run_context()

Output goes to stderr so commands that print results (``dsqlkit status``)
keep a clean stdout. Credential-looking keys are blanked before rendering,
and the chattier driver/SDK loggers are held at WARNING unless the level is
DEBUG.
"""
import logging
import sys
from typing import Any, Optional

import structlog

_SECRET_KEYS = ("password", "token")

# Loggers that log every request or pool event at INFO
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "psycopg.pool")


def redact_secrets(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Blank out values whose key looks like a credential."""
    for key in list(event_dict):
        if any(secret in key.lower() for secret in _SECRET_KEYS):
            event_dict[key] = "***"
    return event_dict


def bind_run_context(**fields: Any) -> None:
    """Attach fields to every event logged for the rest of this run."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structured logging for dsqlkit.

    Safe to call more than once; the root handlers are replaced each time.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit one JSON object per line instead of console output
        log_file: Also append log lines to this file

    Returns:
        The ``dsqlkit`` root logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(log_level)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True,
    )

    library_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    renderer: structlog.types.Processor
    if json_output:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger("dsqlkit")


def get_logger(name: str = "dsqlkit") -> structlog.stdlib.BoundLogger:
    """Logger named ``dsqlkit.<name>``; names already under dsqlkit are kept."""
    if not name.startswith("dsqlkit"):
        name = f"dsqlkit.{name}"
    return structlog.get_logger(name)
