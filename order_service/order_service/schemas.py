"""Pydantic models for orders, payments, notifications and API payloads."""

import random
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

TAX_RATE = Decimal("0.15")
SHIPPING_COST = Decimal("0")

# Stored and rendered as strings so no precision is lost in the document store.
Money = Annotated[Decimal, PlainSerializer(lambda v: str(v), return_type=str)]


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a document id."""
    return uuid.uuid4().hex


def generate_order_number() -> str:
    """Generate a human-readable order number.

    Format is ``ORD`` + millisecond timestamp + a random 0-999 suffix without
    padding. Uniqueness is probabilistic.
    """
    return f"ORD{int(time.time() * 1000)}{random.randint(0, 999)}"


class OrderStatus(str, Enum):
    """Fulfillment status of an order."""

    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Settlement status of an order's payment."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Accepted payment methods."""

    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    MOBILE_MONEY = "mobile_money"


class UserRole(str, Enum):
    """Account types known to the marketplace."""

    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class CamelModel(BaseModel):
    """Base model using camelCase field names on the wire and in documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShippingAddress(CamelModel):
    """Delivery address; the phone number doubles as the mobile-money wallet."""

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class OrderItem(CamelModel):
    """A line item with the product price and name captured at order time.

    Attributes:
        product: Product id
        quantity: Units ordered, at least one
        price: Unit price snapshot
        name: Product name snapshot
    """

    product: str
    quantity: int = Field(..., ge=1)
    price: Money = Field(..., ge=0)
    name: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        """Calculate the line total."""
        return self.price * self.quantity


class Amounts(CamelModel):
    """Order pricing, computed once at creation."""

    subtotal: Money
    tax: Money
    shipping: Money
    total: Money

    @classmethod
    def for_items(cls, items: list[OrderItem]) -> "Amounts":
        """Price a list of line items.

        Args:
            items: The order's line items

        Returns:
            Amounts: subtotal, 15% tax, flat shipping and total
        """
        subtotal = sum((item.subtotal for item in items), Decimal("0"))
        tax = subtotal * TAX_RATE
        return cls(subtotal=subtotal, tax=tax, shipping=SHIPPING_COST, total=subtotal + tax + SHIPPING_COST)


class PaymentDetails(CamelModel):
    """Gateway-side payment record; ``transaction_id`` is the webhook join key."""

    transaction_id: Optional[str] = None
    provider: Optional[str] = None
    status: Optional[PaymentStatus] = None
    message: Optional[str] = None
    initiated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None


class StatusHistoryEntry(CamelModel):
    """One recorded fulfillment transition."""

    status: OrderStatus
    timestamp: datetime = Field(default_factory=utcnow)
    updated_by: str


class Order(CamelModel):
    """Order aggregate as persisted in the ``orders`` collection.

    Attributes:
        id: Document id
        order_number: Human-readable order number
        user: Buyer id
        shop: Seller id
        items: Line items (price snapshots)
        amounts: Pricing computed at creation
        shipping_address: Delivery address
        payment_method: How the buyer pays
        payment_status: Denormalized payment settlement status
        payment_details: Gateway payment record, absent for card orders
        status: Fulfillment status
        status_history: Append-only transition log
        stock_reserved: Whether the order still holds its stock reservation
    """

    id: str = Field(default_factory=new_id, alias="_id")
    order_number: str = Field(default_factory=generate_order_number)
    user: str
    shop: str
    items: list[OrderItem] = Field(..., min_length=1)
    amounts: Amounts
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_details: Optional[PaymentDetails] = None
    status: OrderStatus = OrderStatus.PENDING_PAYMENT
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    stock_reserved: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def transaction_id(self) -> Optional[str]:
        """Gateway transaction id, if a payment was initiated."""
        return self.payment_details.transaction_id if self.payment_details else None

    def to_document(self) -> dict:
        """Serialize for the document store (camelCase keys, native datetimes).

        Unset optional fields are left out so dotted updates such as
        ``paymentDetails.status`` can create them later.
        """
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_response(self) -> dict:
        """Serialize for API responses."""
        return self.model_dump(by_alias=True, mode="json", exclude={"stock_reserved"})

    @classmethod
    def from_document(cls, document: dict) -> "Order":
        """Build an order from a stored document."""
        return cls.model_validate(document)


class Notification(CamelModel):
    """A persistent in-app notification."""

    id: str = Field(default_factory=new_id, alias="_id")
    recipient: str
    message: str
    related_order: Optional[str] = None
    read: bool = False
    type: Literal["persistent", "push"] = "persistent"
    created_at: datetime = Field(default_factory=utcnow)


class OrderEvent(BaseModel):
    """Order lifecycle event published for downstream consumers."""

    event_type: Literal[
        "order.created",
        "order.status_changed",
        "order.payment_completed",
        "order.payment_failed",
        "order.payment_cancelled",
        "order.payment_updated",
    ]
    order_id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    occurred_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_order(cls, event_type: str, order: Order) -> "OrderEvent":
        """Build an event snapshot of an order."""
        return cls(
            event_type=event_type,
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
        )


class CreateOrderRequest(CamelModel):
    """Body of ``POST /orders``.

    Every field is optional at this layer so that missing fields surface as
    the engine's "Missing required fields" error.
    """

    product_id: Optional[str] = None
    quantity: Optional[int] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "productId": "6f1c2d3e4b5a69788796a5b4c3d2e1f0",
                "quantity": 2,
                "shippingAddress": {
                    "street": "12 Samora Ave",
                    "city": "Dar es Salaam",
                    "state": "Dar es Salaam",
                    "zipCode": "11101",
                    "country": "Tanzania",
                    "phone": "0744963858",
                },
                "paymentMethod": "mobile_money",
            }
        },
    )


class UpdateStatusRequest(CamelModel):
    """Body of ``PATCH /orders/{orderId}/status``."""

    status: Optional[str] = None


class UpdatePaymentStatusRequest(CamelModel):
    """Body of ``PATCH /orders/{orderId}/payment-status``."""

    payment_status: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_details: Optional[dict[str, Any]] = None


class WebhookPayload(BaseModel):
    """Payment callback sent by the gateway."""

    order_id: Optional[str] = None
    payment_status: Optional[str] = None
    reference: Optional[str] = None
    reason: Optional[str] = None

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "order_id": "677e43274d7cf",
                "payment_status": "COMPLETED",
                "reference": "0949694721",
            }
        },
    )
