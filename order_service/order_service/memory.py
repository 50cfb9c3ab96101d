"""In-process repositories.

Used by the test suite and by ``STORAGE_BACKEND=memory`` for local runs. Each
collection is a dict of documents guarded by a lock, so the conditional
updates behave like their MongoDB counterparts under concurrent requests.
"""

import copy
import threading
from enum import Enum
from typing import Any, Optional

from .repositories import (
    NotificationRepository,
    OrderRepository,
    ProductRepository,
    Repositories,
    UserRepository,
    WebhookAuditRepository,
)
from .schemas import Notification, Order

_MISSING = object()


def _get_path(document: dict, path: str) -> Any:
    value: Any = document
    for key in path.split("."):
        if not isinstance(value, dict) or key not in value:
            return _MISSING
        value = value[key]
    return value


def _set_path(document: dict, path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    target = document
    for key in parents:
        if not isinstance(target.get(key), dict):
            target[key] = {}
        target = target[key]
    target[leaf] = value


def _matches(document: dict, conditions: dict[str, Any]) -> bool:
    """Evaluate the subset of MongoDB query syntax the repositories use."""
    for path, expected in conditions.items():
        value = _get_path(document, path)
        if isinstance(expected, dict):
            if value in expected.get("$nin", ()):
                return False
            if "$in" in expected and value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


def _plain(value: Any) -> Any:
    # Stored documents hold enum values, as they would after a round trip through BSON.
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    return value


class InMemoryOrderRepository(OrderRepository):
    def __init__(self):
        self._documents: dict[str, dict] = {}
        self._lock = threading.Lock()

    def insert(self, order: Order) -> None:
        document = _plain(order.to_document())
        with self._lock:
            if order.id in self._documents:
                raise ValueError(f"Duplicate order id {order.id}")
            transaction_id = order.transaction_id
            if transaction_id and any(
                _get_path(existing, "paymentDetails.transactionId") == transaction_id
                for existing in self._documents.values()
            ):
                raise ValueError(f"Duplicate transaction id {transaction_id}")
            self._documents[order.id] = document

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            document = copy.deepcopy(self._documents.get(order_id))
        return Order.from_document(document) if document else None

    def find_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        with self._lock:
            for document in self._documents.values():
                if _get_path(document, "paymentDetails.transactionId") == transaction_id:
                    return Order.from_document(copy.deepcopy(document))
        return None

    def find_page(
        self, owner_field: str, owner_id: str, status: Optional[str], page: int, limit: int
    ) -> tuple[list[Order], int]:
        conditions: dict[str, Any] = {owner_field: owner_id}
        if status:
            conditions["status"] = status
        with self._lock:
            matching = [copy.deepcopy(d) for d in self._documents.values() if _matches(d, conditions)]
        matching.sort(key=lambda d: d["createdAt"], reverse=True)
        start = (page - 1) * limit
        return [Order.from_document(d) for d in matching[start : start + limit]], len(matching)

    def update_if(
        self,
        order_id: str,
        conditions: dict[str, Any],
        fields: dict[str, Any],
        push: Optional[dict[str, Any]] = None,
    ) -> Optional[Order]:
        with self._lock:
            document = self._documents.get(order_id)
            if document is None or not _matches(document, conditions):
                return None
            for path, value in fields.items():
                _set_path(document, path, _plain(copy.deepcopy(value)))
            for path, value in (push or {}).items():
                array = _get_path(document, path)
                if array is _MISSING:
                    array = []
                    _set_path(document, path, array)
                array.append(_plain(copy.deepcopy(value)))
            snapshot = copy.deepcopy(document)
        return Order.from_document(snapshot)


class InMemoryProductRepository(ProductRepository):
    def __init__(self):
        self._documents: dict[str, dict] = {}
        self._lock = threading.Lock()

    def add(self, product: dict) -> None:
        """Seed a product document (must carry ``_id``)."""
        with self._lock:
            self._documents[product["_id"]] = {"orders": [], **copy.deepcopy(product)}

    def get(self, product_id: str) -> Optional[dict]:
        with self._lock:
            return copy.deepcopy(self._documents.get(product_id))

    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        with self._lock:
            document = self._documents.get(product_id)
            if document is None or document.get("stock", 0) < quantity:
                return False
            document["stock"] -= quantity
            return True

    def release_stock(self, product_id: str, quantity: int) -> None:
        with self._lock:
            document = self._documents.get(product_id)
            if document is not None:
                document["stock"] = document.get("stock", 0) + quantity

    def add_order(self, product_id: str, order_id: str) -> None:
        with self._lock:
            document = self._documents.get(product_id)
            if document is not None and order_id not in document.setdefault("orders", []):
                document["orders"].append(order_id)


class InMemoryUserRepository(UserRepository):
    def __init__(self):
        self._documents: dict[str, dict] = {}
        self._lock = threading.Lock()

    def add(self, user: dict) -> None:
        """Seed a user document (must carry ``_id``)."""
        with self._lock:
            self._documents[user["_id"]] = {"orders": [], **copy.deepcopy(user)}

    def get(self, user_id: str) -> Optional[dict]:
        with self._lock:
            return copy.deepcopy(self._documents.get(user_id))

    def add_order(self, user_id: str, order_id: str) -> None:
        with self._lock:
            document = self._documents.get(user_id)
            if document is not None and order_id not in document.setdefault("orders", []):
                document["orders"].append(order_id)


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self):
        self._notifications: list[Notification] = []
        self._lock = threading.Lock()

    def insert(self, notification: Notification) -> None:
        with self._lock:
            self._notifications.append(notification.model_copy(deep=True))

    def list_for(self, recipient: str) -> list[Notification]:
        with self._lock:
            found = [n.model_copy(deep=True) for n in self._notifications if n.recipient == recipient]
        return sorted(found, key=lambda n: n.created_at, reverse=True)


class InMemoryWebhookAuditRepository(WebhookAuditRepository):
    def __init__(self):
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def record(self, entry: dict) -> None:
        with self._lock:
            self._entries.append(copy.deepcopy(entry))

    def list_entries(self, limit: int = 100) -> list[dict]:
        with self._lock:
            return copy.deepcopy(self._entries[::-1][:limit])


def create_memory_repositories() -> Repositories:
    """Build an empty set of in-process repositories."""
    return Repositories(
        orders=InMemoryOrderRepository(),
        products=InMemoryProductRepository(),
        users=InMemoryUserRepository(),
        notifications=InMemoryNotificationRepository(),
        webhook_audit=InMemoryWebhookAuditRepository(),
    )
