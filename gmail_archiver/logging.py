"""Structured logging for the archiver, built on structlog.

Archiver events and stdlib records (uvicorn, httpx, botocore) go through one
stdout handler, so every line carries the same ``service``, level and
timestamp keys.  Work done for a mailbox runs inside :func:`bound_account`,
which tags each event with the account it belongs to.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "gmail-archiver"

# Per-request chatter from HTTP and AWS clients, and SQLite's worker thread
_CLIENT_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3", "aiosqlite")

# Uvicorn installs its own handlers; these are rerouted to the root handler
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _add_service(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to stdout.

    ``json`` selects JSON lines with structured tracebacks; otherwise the
    console renderer is used.  Client loggers never log below WARNING.
    """
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if json:
        final: list[Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *final],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True

    for name in _CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


@contextmanager
def bound_account(account_id: uuid.UUID, email_address: str | None = None) -> Iterator[None]:
    """Tag every event logged inside the block with the mailbox it concerns."""
    fields = {"account_id": str(account_id)}
    if email_address:
        fields["account_email"] = email_address
    with structlog.contextvars.bound_contextvars(**fields):
        yield
