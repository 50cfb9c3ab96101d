"""Tests for the in-process repositories."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from order_service.memory import InMemoryOrderRepository, InMemoryProductRepository, create_memory_repositories
from order_service.schemas import Amounts, Order, OrderItem, OrderStatus, PaymentDetails, PaymentStatus


def _order(transaction_id=None, **overrides):
    items = [OrderItem(product="product-1", quantity=1, price=Decimal("100"))]
    fields = dict(
        user="buyer-1",
        shop="seller-1",
        items=items,
        amounts=Amounts.for_items(items),
        shipping_address={"phone": "0744963858"},
        payment_method="mobile_money",
        stock_reserved=True,
    )
    if transaction_id:
        fields["payment_details"] = PaymentDetails(transaction_id=transaction_id, status=PaymentStatus.PENDING)
    fields.update(overrides)
    return Order(**fields)


def test_reserve_stock_concurrently():
    products = InMemoryProductRepository()
    products.add({"_id": "product-1", "stock": 10})

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: products.reserve_stock("product-1", 3), range(8)))

    assert results.count(True) == 3
    assert products.get("product-1")["stock"] == 1


def test_get_returns_copies():
    products = InMemoryProductRepository()
    products.add({"_id": "product-1", "stock": 10})

    products.get("product-1")["stock"] = 0

    assert products.get("product-1")["stock"] == 10


def test_insert_rejects_duplicate_transaction_id():
    orders = InMemoryOrderRepository()
    orders.insert(_order("TXN1"))

    with pytest.raises(ValueError):
        orders.insert(_order("TXN1"))


def test_update_if_applies_dotted_fields():
    orders = InMemoryOrderRepository()
    order = _order("TXN1")
    orders.insert(order)

    updated = orders.settle_payment(order.id, {"paymentStatus": "completed", "paymentDetails.status": "completed"})

    assert updated.payment_status == PaymentStatus.COMPLETED
    assert updated.payment_details.status == PaymentStatus.COMPLETED
    assert updated.payment_details.transaction_id == "TXN1"
    assert orders.settle_payment(order.id, {"paymentStatus": "failed"}) is None


def test_settle_skips_terminal_orders():
    orders = InMemoryOrderRepository()
    order = _order("TXN1", status=OrderStatus.CANCELLED)
    orders.insert(order)

    assert orders.settle_payment(order.id, {"paymentStatus": "completed"}) is None


@pytest.mark.parametrize(
    "status,settles",
    [
        (OrderStatus.PENDING_PAYMENT, True),
        (OrderStatus.PENDING, True),
        (OrderStatus.PROCESSING, False),
        (OrderStatus.SHIPPED, False),
    ],
)
def test_settle_from_allowed_statuses(status, settles):
    orders = InMemoryOrderRepository()
    order = _order("TXN1", status=status)
    orders.insert(order)

    updated = orders.settle_payment(
        order.id,
        {"paymentStatus": "completed", "paymentDetails.status": "completed"},
        from_statuses=[OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING],
    )

    assert (updated is not None) is settles
    assert orders.get(order.id).status == status


def test_update_if_creates_missing_subdocument():
    orders = InMemoryOrderRepository()
    order = _order(payment_method="credit_card")
    orders.insert(order)

    updated = orders.update_if(order.id, {}, {"paymentDetails.status": "failed"})

    assert updated.payment_details.status == PaymentStatus.FAILED


def test_release_stock_claim_succeeds_once():
    orders = InMemoryOrderRepository()
    order = _order()
    orders.insert(order)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(lambda _: orders.release_stock_claim(order.id), range(4)))

    assert sum(result is not None for result in results) == 1


def test_find_by_transaction_id():
    orders = InMemoryOrderRepository()
    order = _order("TXN1")
    orders.insert(order)

    assert orders.find_by_transaction_id("TXN1").id == order.id
    assert orders.find_by_transaction_id("TXN2") is None


def test_audit_entries_newest_first():
    repositories = create_memory_repositories()

    for event in ("received", "duplicate", "error"):
        repositories.webhook_audit.record({"event": event})

    assert [e["event"] for e in repositories.webhook_audit.list_entries(limit=2)] == ["error", "duplicate"]
    assert repositories.ping() is True
