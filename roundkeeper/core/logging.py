"""Structured logging foundation for the round keeper.

Provides JSON logging (prod) or colored console (dev) via structlog.
Includes a ledger audit logger for every operation submitted on-chain.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, cast

import structlog


def _configure_structlog() -> None:
    """Configure structlog based on RK_ENV and RK_LOG_LEVEL."""
    env = os.environ.get("RK_ENV", "development")
    log_level_name = os.environ.get("RK_LOG_LEVEL", "INFO").upper()
    log_level = logging.getLevelName(log_level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if env == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    _LOG_LEVELS["current"] = log_level_name


_LOG_LEVELS: dict[str, str] = {"current": "INFO"}
_CONFIGURED = False


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance.

    Args:
        name: Logger name (typically module __name__).

    Returns:
        Configured structlog BoundLogger.
    """
    global _CONFIGURED
    if not _CONFIGURED:
        _configure_structlog()
        _CONFIGURED = True

    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def get_audit_logger() -> structlog.stdlib.BoundLogger:
    """Get the audit trail logger for ledger operations.

    All audit events are logged with event_type for downstream filtering.
    """
    return get_logger("roundkeeper.audit")


def log_ledger_event(
    action: str,
    round_id: int,
    **kwargs: Any,
) -> None:
    """Log a ledger operation to the audit trail.

    Args:
        action: Operation kind (start_round, settle_round, process_payout).
        round_id: Round the operation targets.
        **kwargs: Additional context (signature, bet indices, price, error).
    """
    logger = get_audit_logger()
    logger.info(
        "ledger_event",
        event_type="audit",
        action=action,
        round_id=round_id,
        **kwargs,
    )
