"""Logging utilities for the marketplace services."""

from .config import add_audit_sink, get_audit_logger, setup_service_logger

__all__ = [
    "setup_service_logger",
    "add_audit_sink",
    "get_audit_logger",
]
