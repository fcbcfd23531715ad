"""
Logging - structlog configuration and component loggers.

    from keymart.log import configure, get_logger

    configure(settings)
    log = get_logger("payments")
    log.info("wallet_debited", user_id=uid, amount=amount)
"""

from __future__ import annotations

import logging

import structlog

from keymart.config import Settings


def configure(settings: Settings | None = None) -> None:
    """Install the structlog pipeline. Safe to call more than once."""
    settings = settings or Settings()
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger().bind(component=component)


def bind_request(**values: object) -> None:
    """Bind values (checkout_id, event_id, ...) for the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request() -> None:
    structlog.contextvars.clear_contextvars()


__all__ = ("configure", "get_logger", "bind_request", "clear_request")
