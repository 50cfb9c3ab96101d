"""Marketplace order service: order lifecycle and payment reconciliation."""

__version__ = "0.1.0"
