"""Fulfillment status state machine."""

from .errors import InvalidTransitionError, ValidationError
from .schemas import OrderStatus, PaymentStatus

ORDER_STATUS_FLOW: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Statuses a completed payment may settle from; it never rewinds fulfillment.
PAYABLE_STATUSES = frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING})

STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "Order has been placed but not yet processed",
    OrderStatus.PROCESSING: "Order is being processed and prepared for shipping",
    OrderStatus.SHIPPED: "Order has been shipped and is in transit",
    OrderStatus.DELIVERED: "Order has been delivered to the customer",
    OrderStatus.CANCELLED: "Order has been cancelled",
}


def is_valid_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    """Check whether ``current -> requested`` is an edge of the flow."""
    return requested in ORDER_STATUS_FLOW.get(current, ())


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def parse_order_status(value) -> OrderStatus:
    """Parse a fulfillment status accepted by the status-update operation.

    Args:
        value: Raw status value from the request

    Returns:
        OrderStatus: The parsed status

    Raises:
        ValidationError: If the value is not a known fulfillment status
    """
    try:
        status = OrderStatus(value)
    except ValueError:
        raise ValidationError("Invalid status value") from None
    if status not in ORDER_STATUS_FLOW:
        raise ValidationError("Invalid status value")
    return status


def parse_payment_status(value) -> PaymentStatus:
    """Parse a payment status, raising ``ValidationError`` on unknown values."""
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationError("Invalid payment status value") from None


def ensure_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> requested`` is allowed."""
    if not is_valid_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)


def describe_statuses() -> dict:
    """Describe every fulfillment status and where it can go next."""
    return {
        status.value: {
            "description": STATUS_DESCRIPTIONS[status],
            "nextPossibleStatuses": [next_status.value for next_status in ORDER_STATUS_FLOW[status]],
        }
        for status in ORDER_STATUS_FLOW
    }
