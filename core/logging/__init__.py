# Structured logging on top of stdlib logging
import sys
import logging
import structlog
from typing import Optional, Dict, Any

from core.config.settings import Settings

# Global flag to prevent duplicate logging configuration
_logging_configured = False

_LIBRARY_LOGGERS = ("aiokafka", "kafka")


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and structlog once per process."""
    global _logging_configured

    if _logging_configured:
        return

    level = settings.logging.level.upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(settings.logging.library_level.upper())

    if settings.logging.json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _logging_configured = True


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance, optionally bound to a component."""
    logger = structlog.get_logger(name)
    if component:
        return logger.bind(component=component)
    return logger


def bind_message_context(**context: Any) -> None:
    """Bind per-delivery context (stream, partition, offset, ...) to every log line."""
    structlog.contextvars.bind_contextvars(**context)


def clear_message_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_service_logger(service_name: str, **context: Any) -> structlog.BoundLogger:
    """Standardized service logger with the service name bound."""
    ctx: Dict[str, Any] = {"service": service_name, **context}
    return get_logger(f"trade_partitioning.{service_name}", component="service").bind(**ctx)


__all__ = [
    "configure_logging",
    "get_logger",
    "get_service_logger",
    "bind_message_context",
    "clear_message_context",
]
