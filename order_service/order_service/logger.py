"""Logger module for logging messages."""

import os

from logging_utils.config import get_audit_logger, setup_service_logger

SERVICE_NAME = "order-service"

logger = setup_service_logger(
    SERVICE_NAME,
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
)

audit_logger = get_audit_logger(SERVICE_NAME)

__all__ = ["logger", "audit_logger", "SERVICE_NAME"]
