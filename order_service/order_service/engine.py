"""Order lifecycle engine.

Creates orders, reserves and restores stock, drives the fulfillment state
machine and applies administrative payment corrections. Every state change
goes through a conditional update in the order repository, so concurrent
requests (and the payment webhook) cannot apply the same change twice.
"""

import math
from decimal import Decimal
from typing import Any, Optional, Union

from .auth import Actor
from .errors import (
    ForbiddenError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from .gateway import ZenoPayClient
from .logger import logger
from .notifications import NotificationDispatcher
from .producer import OrderEventProducer
from .repositories import Repositories
from .schemas import (
    Amounts,
    Order,
    OrderItem,
    OrderStatus,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
    StatusHistoryEntry,
    UserRole,
    utcnow,
)
from .state_machine import describe_statuses, ensure_transition, parse_order_status, parse_payment_status

PAYMENT_PROVIDER = "zenopay"

# Nested payment fields an administrator may correct.
EDITABLE_PAYMENT_FIELDS = ("provider", "message", "paymentReference", "failureReason")

PAYMENT_TIMESTAMP_FIELDS = {
    PaymentStatus.COMPLETED: "paymentDetails.paidAt",
    PaymentStatus.FAILED: "paymentDetails.failedAt",
    PaymentStatus.CANCELLED: "paymentDetails.cancelledAt",
}


class OrderLifecycleEngine:
    """Application service behind the order routes.

    Args:
        repositories: Order, product, user and notification stores
        gateway: Mobile-money payment gateway client
        dispatcher: Notification delivery
        events: Order event publisher
        notify_buyer_on_order: Send the buyer a confirmation when an order is placed
    """

    def __init__(
        self,
        repositories: Repositories,
        gateway: ZenoPayClient,
        dispatcher: NotificationDispatcher,
        events: OrderEventProducer,
        notify_buyer_on_order: bool = True,
    ):
        self.repositories = repositories
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.events = events
        self.notify_buyer_on_order = notify_buyer_on_order

    def create_order(
        self,
        buyer_id: str,
        product_id: Optional[str],
        quantity: Optional[int],
        shipping_address: Union[ShippingAddress, dict, None],
        payment_method: Optional[str],
    ) -> Order:
        """Place an order for one product.

        Stock is reserved with a single conditional decrement before any
        payment is attempted; every failure after that point gives the
        reservation back.

        Args:
            buyer_id: Id of the buying user
            product_id: Product to order
            quantity: Units to order
            shipping_address: Delivery address (phone is the mobile-money wallet)
            payment_method: ``credit_card``, ``debit_card`` or ``mobile_money``

        Returns:
            Order: The persisted order

        Raises:
            ValidationError: Missing or malformed input
            NotFoundError: Unknown product
            InsufficientStockError: Not enough stock left
            PaymentError: The mobile-money charge could not be initiated
        """
        if not product_id or not quantity or shipping_address is None or not payment_method:
            raise ValidationError("Missing required fields")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError("Invalid payment method") from None
        if isinstance(shipping_address, dict):
            shipping_address = ShippingAddress.model_validate(shipping_address)
        if method == PaymentMethod.MOBILE_MONEY and not shipping_address.phone:
            raise ValidationError("Phone number is required for mobile money payments")

        products = self.repositories.products
        product = products.get(product_id)
        if not product:
            raise NotFoundError("Product not found")
        if product.get("stock", 0) < quantity:
            raise InsufficientStockError(product.get("stock", 0))
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        items = [
            OrderItem(
                product=product_id,
                quantity=quantity,
                price=Decimal(str(product["price"])),
                name=product.get("name"),
            )
        ]
        amounts = Amounts.for_items(items)
        buyer = self.repositories.users.get(buyer_id)

        if not products.reserve_stock(product_id, quantity):
            current = products.get(product_id) or {}
            logger.warning(f"Stock for product {product_id} was taken by a concurrent order")
            raise InsufficientStockError(current.get("stock", 0))

        try:
            order = Order(
                user=buyer_id,
                shop=product["shop"],
                items=items,
                amounts=amounts,
                shipping_address=shipping_address,
                payment_method=method,
                status=OrderStatus.PENDING,
                stock_reserved=True,
            )
            if method == PaymentMethod.MOBILE_MONEY:
                order.payment_details = self._initiate_payment(amounts, buyer, shipping_address)
                order.status = OrderStatus.PENDING_PAYMENT
            self.repositories.orders.insert(order)
        except Exception:
            products.release_stock(product_id, quantity)
            logger.info(f"Released {quantity} units of product {product_id} after failed order creation")
            raise

        logger.info(f"Order {order.order_number} created for buyer {buyer_id} ({method.value})")
        self.link_order(order)

        self.notify_user(order.shop, f"New order #{order.order_number} for {product.get('name')}", order.id)
        if self.notify_buyer_on_order:
            self.notify_user(buyer_id, f"Your order #{order.order_number} has been placed", order.id)
        self.publish_event("order.created", order)

        return self.repositories.orders.get(order.id) or order

    def _initiate_payment(self, amounts: Amounts, buyer: Optional[dict], shipping_address: ShippingAddress) -> PaymentDetails:
        buyer = buyer or {}
        try:
            result = self.gateway.initiate(
                amounts,
                {"name": buyer.get("username"), "email": buyer.get("email")},
                shipping_address,
            )
        except Exception as e:
            logger.error(f"Payment gateway error: {e}")
            raise PaymentError("Payment processing failed") from e

        if not result.success or result.status != "success" or not result.transaction_id:
            logger.warning(f"Payment initiation rejected: status={result.status} message={result.message}")
            raise PaymentError("Payment processing failed")

        return PaymentDetails(
            transaction_id=result.transaction_id,
            provider=PAYMENT_PROVIDER,
            status=PaymentStatus.PENDING,
            message=result.message,
            initiated_at=utcnow(),
        )

    def link_order(self, order: Order) -> None:
        """Record the order id on its products and its buyer (idempotent)."""
        try:
            for item in order.items:
                self.repositories.products.add_order(item.product, order.id)
            self.repositories.users.add_order(order.user, order.id)
        except Exception as e:
            logger.error(f"Failed to link order {order.id} to product or buyer: {e}")

    def release_stock(self, order: Order) -> bool:
        """Give an order's reserved stock back, at most once per order.

        Returns:
            bool: True if this call restored the stock
        """
        if self.repositories.orders.release_stock_claim(order.id) is None:
            logger.info(f"Stock for order {order.id} already released")
            return False
        try:
            for item in order.items:
                self.repositories.products.release_stock(item.product, item.quantity)
        except Exception:
            # Claim stays held while the stock is still owed.
            self.repositories.orders.update_if(order.id, {"stockReserved": False}, {"stockReserved": True})
            raise
        logger.info(f"Released stock for order {order.order_number}")
        return True

    def release_committed_stock(self, order: Order) -> None:
        """Release stock for an order whose cancellation is already stored.

        A failure is logged and the reservation stays in place, so the next
        release attempt for the order (an admin payment correction or a
        repeated gateway callback) returns the stock.
        """
        try:
            self.release_stock(order)
        except Exception as e:
            logger.error(f"Failed to release stock for order {order.order_number}: {e}")

    def notify_user(self, user_id: str, message: str, order_id: str, event_type: str = "order_created") -> None:
        """Look up a user and notify them; lookup failures are logged."""
        try:
            recipient = self.repositories.users.get(user_id)
        except Exception as e:
            logger.error(f"Failed to look up user {user_id} for notification: {e}")
            return
        self.dispatcher.notify(recipient, message, order_id, event_type=event_type)

    def publish_event(self, event_type: str, order: Order) -> None:
        try:
            self.events.publish(event_type, order)
        except Exception as e:
            logger.error(f"Failed to publish {event_type} for order {order.id}: {e}")

    def get_order(self, order_id: str, actor: Actor) -> Order:
        """Fetch an order visible to the buyer, the owning shop or an admin."""
        order = self._get_existing(order_id)
        if not (actor.is_admin or actor.user_id in (order.user, order.shop)):
            raise ForbiddenError("Not authorized to view this order")
        return order

    def _get_existing(self, order_id: str) -> Order:
        order = self.repositories.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def update_order_status(self, order_id: str, actor: Actor, new_status: Optional[str]) -> Order:
        """Move an order one step along the fulfillment flow.

        Args:
            order_id: Order to update
            actor: Shop owner or administrator
            new_status: Requested fulfillment status

        Returns:
            Order: The updated order

        Raises:
            NotFoundError: Unknown order
            ForbiddenError: Caller is neither the owning shop nor an admin
            ValidationError: Unknown status
            InvalidTransitionError: The flow does not allow the move
        """
        order = self._get_existing(order_id)
        if not (actor.is_admin or order.shop == actor.user_id):
            raise ForbiddenError("Not authorized to update this order")

        requested = parse_order_status(new_status)
        ensure_transition(order.status, requested)

        entry = StatusHistoryEntry(status=order.status, updated_by=actor.user_id)
        updated = self.repositories.orders.transition_status(order.id, order.status, requested, entry)
        if updated is None:
            current = self._get_existing(order_id)
            logger.warning(f"Order {order.order_number} changed concurrently, now {current.status.value}")
            raise InvalidTransitionError(current.status.value, requested.value)

        logger.info(f"Order {updated.order_number}: {order.status.value} -> {requested.value} by {actor.user_id}")
        if requested == OrderStatus.CANCELLED:
            self.release_committed_stock(updated)

        self.notify_user(
            updated.user,
            f"Your order #{updated.order_number} status has been updated to {requested.value}",
            updated.id,
            event_type="order_status_updated",
        )
        self.publish_event("order.status_changed", updated)
        return updated

    def check_payment_status(self, order_id: str, actor: Actor) -> dict[str, Any]:
        """Ask the gateway for the payment state of the caller's order. Never mutates."""
        order = self._get_existing(order_id)
        if order.user != actor.user_id:
            raise ForbiddenError("Not authorized to view this order")
        if not order.transaction_id:
            raise ValidationError("No payment transaction found for this order")
        return self.gateway.query_status(order.transaction_id)

    def update_payment_status(
        self,
        order_id: str,
        actor: Actor,
        payment_status: Optional[str],
        transaction_id: Optional[str] = None,
        payment_details: Optional[dict[str, Any]] = None,
    ) -> Order:
        """Administratively set an order's payment state.

        ``completed`` forces the order to ``pending`` and ``failed`` forces it
        to ``cancelled`` (returning its stock), bypassing the fulfillment
        flow. Orders that are already delivered or cancelled keep their status.

        Raises:
            ForbiddenError: Caller is not an admin
            ValidationError: Unknown payment status
            NotFoundError: Unknown order
        """
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can update payment status")
        status = parse_payment_status(payment_status)
        order = self._get_existing(order_id)

        fields: dict[str, Any] = {"paymentStatus": status.value, "paymentDetails.status": status.value}
        if transaction_id:
            fields["paymentDetails.transactionId"] = transaction_id
        for key in EDITABLE_PAYMENT_FIELDS:
            if payment_details and payment_details.get(key) is not None:
                fields[f"paymentDetails.{key}"] = payment_details[key]
        if status in PAYMENT_TIMESTAMP_FIELDS:
            fields[PAYMENT_TIMESTAMP_FIELDS[status]] = utcnow()

        force_status = {
            PaymentStatus.COMPLETED: OrderStatus.PENDING,
            PaymentStatus.FAILED: OrderStatus.CANCELLED,
        }.get(status)
        updated = self.repositories.orders.override_payment(order.id, fields, force_status)
        if updated is None:
            raise NotFoundError("Order not found")

        logger.info(f"Payment status of order {updated.order_number} set to {status.value} by {actor.user_id}")
        if status == PaymentStatus.FAILED and updated.status == OrderStatus.CANCELLED:
            self.release_committed_stock(updated)

        self.notify_user(
            updated.user,
            f"Payment for order #{updated.order_number} is now {status.value}",
            updated.id,
            event_type="payment_status_updated",
        )
        self.publish_event("order.payment_updated", updated)
        return updated

    def list_buyer_orders(self, actor: Actor, page: int = 1, limit: int = 10, status: Optional[str] = None) -> dict:
        return self._list_orders("user", actor.user_id, page, limit, status)

    def list_shop_orders(self, actor: Actor, page: int = 1, limit: int = 10, status: Optional[str] = None) -> dict:
        if actor.role not in (UserRole.SELLER, UserRole.ADMIN):
            raise ForbiddenError("Only shop owners can view shop orders")
        return self._list_orders("shop", actor.user_id, page, limit, status)

    def _list_orders(self, owner_field: str, owner_id: str, page: int, limit: int, status: Optional[str]) -> dict:
        page = max(page or 1, 1)
        limit = max(limit or 10, 1)
        orders, total = self.repositories.orders.find_page(owner_field, owner_id, status, page, limit)
        return {
            "orders": [self.present(order) for order in orders],
            "pagination": {"current": page, "total": math.ceil(total / limit), "totalRecords": total},
        }

    def describe_statuses(self) -> dict:
        return describe_statuses()

    def present(self, order: Order) -> dict:
        """Render an order for API responses with shop and product summaries."""
        data = order.to_response()
        shop = self.repositories.users.get(order.shop)
        data["shop"] = {"_id": order.shop, "name": (shop or {}).get("name") or (shop or {}).get("username")}
        for item in data["items"]:
            product = self.repositories.products.get(item["product"]) or {}
            images = product.get("images") or []
            item["product"] = {
                "_id": item["product"],
                "name": product.get("name", item.get("name")),
                "image": images[0] if images else product.get("image"),
                "price": str(product["price"]) if "price" in product else None,
            }
        return data
