"""Logging configuration module for the marketplace services."""

import sys
from typing import Optional

from loguru import logger as loguru_logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[service]}</cyan> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def _is_audit_record(record) -> bool:
    return bool(record["extra"].get("audit"))


def setup_service_logger(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
) -> loguru_logger:
    """Configure a logger for a service with standardized settings.

    Args:
        service_name: Name of the service (e.g., 'order-service')
        log_level: Logging level (default: INFO)
        log_file: Optional path to log file

    Returns:
        logger: Configured loguru logger instance
    """
    # Remove any existing handlers
    loguru_logger.remove()
    loguru_logger.configure(extra={"service": service_name})

    # Add console handler with formatting
    loguru_logger.add(
        sys.stderr,
        level=log_level,
        format=CONSOLE_FORMAT,
        colorize=True,
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )

    # Add file handler if specified
    if log_file:
        loguru_logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="1 week",
            compression="gz",
            enqueue=True,
        )

    return loguru_logger.bind(service=service_name)


def add_audit_sink(audit_file: str) -> int:
    """Route audit records to a dedicated JSON-lines file.

    Only records logged through a logger bound with ``audit=True`` reach this
    sink; regular service logs are left out.

    Args:
        audit_file: Path of the audit log file

    Returns:
        int: The loguru handler id, usable with ``logger.remove``
    """
    return loguru_logger.add(
        audit_file,
        level="INFO",
        filter=_is_audit_record,
        serialize=True,
        rotation="50 MB",
        retention="90 days",
        enqueue=True,
    )


def get_audit_logger(service_name: str) -> loguru_logger:
    """Get a logger whose records are routed to the audit sink.

    Args:
        service_name: Name of the service

    Returns:
        logger: Logger bound with the audit marker
    """
    return loguru_logger.bind(service=service_name, audit=True)
