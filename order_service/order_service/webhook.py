"""ZenoPay payment webhook reconciliation.

Callbacks are verified, written to the audit log, matched to an order by its
gateway transaction id and settled. Settlement is a conditional update on
``paymentDetails.status == pending``, so duplicate or racing deliveries apply
their outcome once and the rest are acknowledged as duplicates.
"""

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from .engine import OrderLifecycleEngine
from .logger import audit_logger, logger
from .repositories import WebhookAuditRepository
from .schemas import Order, OrderStatus, PaymentStatus, WebhookPayload, new_id, utcnow
from .state_machine import PAYABLE_STATUSES

SIGNATURE_HEADER = "X-Webhook-Signature"

ZENOPAY_STATUS_MAP = {
    "COMPLETED": "success",
    "FAILED": "failed",
    "CANCELLED": "cancelled",
}


@dataclass
class WebhookResponse:
    """HTTP status and JSON body returned to the gateway."""

    status_code: int
    body: dict = field(default_factory=dict)


def sign_payload(secret: str, raw_body: bytes) -> str:
    """Compute the hex HMAC-SHA256 signature of a webhook body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


class WebhookAuditLog:
    """Writes webhook audit entries to the audit store and the audit log sink."""

    def __init__(self, repository: WebhookAuditRepository):
        self.repository = repository

    def record(self, event: str, payload: Any = None, error: Optional[str] = None) -> None:
        entry = {"_id": new_id(), "event": event, "payload": payload, "receivedAt": utcnow()}
        if error:
            entry["error"] = error
        audit_logger.bind(event=event, payload=payload, error=error).info(f"webhook {event}")
        try:
            self.repository.record(entry)
        except Exception as e:
            logger.error(f"Failed to persist webhook audit entry ({event}): {e}")


class WebhookReconciler:
    """Applies ZenoPay payment callbacks to orders.

    Args:
        engine: Order lifecycle engine, used for its stores, stock release,
            notifications and events
        audit_log: Webhook audit log
        secret: Shared secret for signature verification; when unset every
            delivery is rejected
    """

    def __init__(self, engine: OrderLifecycleEngine, audit_log: WebhookAuditLog, secret: Optional[str]):
        self.engine = engine
        self.audit_log = audit_log
        self.secret = secret

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.secret:
            logger.error("ZENOPAY_WEBHOOK_SECRET is not configured, rejecting webhook")
            return False
        if not signature:
            return False
        return hmac.compare_digest(sign_payload(self.secret, raw_body), signature.strip().lower())

    def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResponse:
        """Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the ``X-Webhook-Signature`` header

        Returns:
            WebhookResponse: 200 when processed (or a duplicate / unhandled
            status), 401 for a bad signature, 404 for an unknown order and
            400 for any processing error so the gateway retries
        """
        if not self.verify_signature(raw_body, signature):
            self.audit_log.record(
                "signature_rejected",
                raw_body.decode("utf-8", errors="replace"),
                error="Invalid webhook signature",
            )
            return WebhookResponse(401, {"error": "Invalid webhook signature"})

        try:
            data = json.loads(raw_body or b"{}")
            if not isinstance(data, dict):
                raise ValueError("Webhook payload must be a JSON object")
            self.audit_log.record("received", data)
            logger.info(f"Received webhook: {data}")
            payload = WebhookPayload.model_validate(data)

            order = self.engine.repositories.orders.find_by_transaction_id(payload.order_id) if payload.order_id else None
            if order is None:
                logger.error(f"Order not found: {payload.order_id}")
                self.audit_log.record("order_not_found", {"order_id": payload.order_id}, error="Order not found")
                return WebhookResponse(404, {"error": "Order not found"})

            outcome = ZENOPAY_STATUS_MAP.get(payload.payment_status) or data.get("status")
            if outcome == "success":
                updated = self._settle_success(order, payload)
            elif outcome == "failed":
                updated = self._settle_failure(order, PaymentStatus.FAILED, payload)
            elif outcome == "cancelled":
                updated = self._settle_failure(order, PaymentStatus.CANCELLED, payload)
            else:
                message = f"Unhandled webhook event status: {payload.payment_status}"
                logger.warning(message)
                self.audit_log.record("unhandled", data, error=message)
                return WebhookResponse(200, {"received": True})

            if updated is None:
                logger.info(f"Payment for order {order.order_number} already settled, ignoring {outcome}")
                self.audit_log.record("duplicate", data)
                return WebhookResponse(200, {"received": True, "duplicate": True})
            return WebhookResponse(200, {"received": True})

        except Exception as e:
            logger.exception(f"Webhook handling error: {e}")
            self.audit_log.record("error", raw_body.decode("utf-8", errors="replace"), error=str(e))
            return WebhookResponse(400, {"error": "Webhook processing failed"})

    def _settle_success(self, order: Order, payload: WebhookPayload) -> Optional[Order]:
        fields = {
            "status": OrderStatus.PENDING.value,
            "paymentStatus": PaymentStatus.COMPLETED.value,
            "paymentDetails.status": PaymentStatus.COMPLETED.value,
            "paymentDetails.paidAt": utcnow(),
        }
        if payload.reference:
            fields["paymentDetails.paymentReference"] = payload.reference
        orders = self.engine.repositories.orders
        updated = orders.settle_payment(order.id, fields, from_statuses=PAYABLE_STATUSES)
        if updated is None:
            return None

        logger.info(f"Payment completed for order {updated.order_number}")
        self.engine.link_order(updated)
        message = f"Payment received for order #{updated.order_number}"
        self.engine.notify_user(updated.user, message, updated.id, event_type="payment_completed")
        self.engine.notify_user(updated.shop, message, updated.id, event_type="payment_completed")
        self.engine.publish_event("order.payment_completed", updated)
        return updated

    def _settle_failure(self, order: Order, status: PaymentStatus, payload: WebhookPayload) -> Optional[Order]:
        fields: dict[str, Any] = {
            "status": OrderStatus.CANCELLED.value,
            "paymentStatus": status.value,
            "paymentDetails.status": status.value,
        }
        if status == PaymentStatus.FAILED:
            fields["paymentDetails.failureReason"] = payload.reason or "Payment failed"
            fields["paymentDetails.failedAt"] = utcnow()
        else:
            fields["paymentDetails.cancelledAt"] = utcnow()
        orders = self.engine.repositories.orders
        updated = orders.settle_payment(order.id, fields)
        if updated is None:
            current = orders.get(order.id)
            if current is not None and current.status == OrderStatus.CANCELLED and current.stock_reserved:
                self.engine.release_committed_stock(current)
            return None

        logger.info(f"Payment {status.value} for order {updated.order_number}, cancelling order")
        self.engine.release_committed_stock(updated)
        verb = "failed" if status == PaymentStatus.FAILED else "was cancelled"
        self.engine.notify_user(
            updated.user,
            f"Payment for order #{updated.order_number} {verb}",
            updated.id,
            event_type=f"payment_{status.value}",
        )
        self.engine.publish_event(f"order.payment_{status.value}", updated)
        return updated
