"""Error taxonomy for the order service.

Every error carries the HTTP status it maps to, so the API layer can turn any
of them into the response envelope without knowing the individual types.
"""

from http import HTTPStatus
from typing import Optional


class OrderServiceError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(OrderServiceError):
    """Missing or malformed input."""

    status_code = HTTPStatus.BAD_REQUEST


class NotFoundError(OrderServiceError):
    """A referenced product or order does not exist."""

    status_code = HTTPStatus.NOT_FOUND


class InsufficientStockError(OrderServiceError):
    """Requested quantity exceeds the product's available stock."""

    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, available: int):
        self.available = available
        super().__init__(f"Only {available} items available in stock")


class PaymentError(OrderServiceError):
    """The payment gateway declined or failed the charge."""

    status_code = HTTPStatus.BAD_REQUEST


class ForbiddenError(OrderServiceError):
    """The caller's role or ownership does not allow the operation."""

    status_code = HTTPStatus.FORBIDDEN


class AuthenticationError(OrderServiceError):
    """The caller could not be identified."""

    status_code = HTTPStatus.UNAUTHORIZED


class InvalidTransitionError(OrderServiceError):
    """The requested fulfillment status is not reachable from the current one."""

    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Invalid status transition from {current} to {requested}")


class ServerError(OrderServiceError):
    """Unclassified failure (datastore errors, unexpected exceptions)."""

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
