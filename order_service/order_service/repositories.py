"""Document-store repositories for orders, products, users and notifications.

Each repository exposes a small set of atomic primitives. Order mutations are
conditional updates ("update where the document still looks like X"), which
is what keeps the request path and the webhook path from applying the same
state change twice.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from .logger import logger
from .schemas import (
    Notification,
    Order,
    OrderStatus,
    PaymentStatus,
    StatusHistoryEntry,
    utcnow,
)
from .state_machine import TERMINAL_STATUSES


class OrderRepository(ABC):
    """Persistence for Order documents."""

    @abstractmethod
    def insert(self, order: Order) -> None:
        """Insert a new order."""

    @abstractmethod
    def get(self, order_id: str) -> Optional[Order]:
        """Get an order by id."""

    @abstractmethod
    def find_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        """Get the order whose ``paymentDetails.transactionId`` matches."""

    @abstractmethod
    def find_page(
        self, owner_field: str, owner_id: str, status: Optional[str], page: int, limit: int
    ) -> tuple[list[Order], int]:
        """List orders owned by a buyer (``user``) or seller (``shop``), newest first.

        Returns:
            tuple: The page of orders and the total number of matching orders
        """

    @abstractmethod
    def update_if(
        self,
        order_id: str,
        conditions: dict[str, Any],
        fields: dict[str, Any],
        push: Optional[dict[str, Any]] = None,
    ) -> Optional[Order]:
        """Atomically update an order if it still matches ``conditions``.

        Args:
            order_id: Order to update
            conditions: Query fragment on dotted camelCase paths
            fields: Values to set, keyed by dotted camelCase path
            push: Values to append to array fields

        Returns:
            Optional[Order]: The updated order, or None when nothing matched
        """

    def transition_status(
        self, order_id: str, expected: OrderStatus, new_status: OrderStatus, entry: StatusHistoryEntry
    ) -> Optional[Order]:
        """Move an order from ``expected`` to ``new_status`` and record the history entry."""
        return self.update_if(
            order_id,
            {"status": expected.value},
            {"status": new_status.value, "updatedAt": utcnow()},
            push={"statusHistory": entry.model_dump(by_alias=True, mode="python")},
        )

    def settle_payment(
        self, order_id: str, fields: dict[str, Any], from_statuses: Optional[Iterable[OrderStatus]] = None
    ) -> Optional[Order]:
        """Apply a payment outcome once: only while the payment is still pending.

        Args:
            order_id: Order to settle
            fields: Values to set, keyed by dotted camelCase path
            from_statuses: Order statuses the settlement may start from;
                any non-terminal status when omitted
        """
        fields = {**fields, "updatedAt": utcnow()}
        if from_statuses is None:
            status_condition = {"$nin": [status.value for status in TERMINAL_STATUSES]}
        else:
            status_condition = {"$in": [status.value for status in from_statuses]}
        return self.update_if(
            order_id,
            {"paymentDetails.status": PaymentStatus.PENDING.value, "status": status_condition},
            fields,
        )

    def override_payment(
        self, order_id: str, fields: dict[str, Any], force_status: Optional[OrderStatus]
    ) -> Optional[Order]:
        """Apply an administrative payment correction.

        The fulfillment status is only forced while the order is not terminal;
        otherwise the payment fields alone are written.
        """
        fields = {**fields, "updatedAt": utcnow()}
        if force_status is not None:
            updated = self.update_if(
                order_id,
                {"status": {"$nin": [status.value for status in TERMINAL_STATUSES]}},
                {**fields, "status": force_status.value},
            )
            if updated is not None:
                return updated
            logger.info(f"Order {order_id} is terminal, leaving fulfillment status untouched")
        return self.update_if(order_id, {}, fields)

    def release_stock_claim(self, order_id: str) -> Optional[Order]:
        """Give up the order's stock reservation; succeeds for exactly one caller."""
        return self.update_if(order_id, {"stockReserved": True}, {"stockReserved": False, "updatedAt": utcnow()})


class ProductRepository(ABC):
    """Read access and stock counter mutations on products."""

    @abstractmethod
    def get(self, product_id: str) -> Optional[dict]:
        """Get a product document by id."""

    @abstractmethod
    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        """Decrement stock by ``quantity`` only if at least that much is left.

        Returns:
            bool: True if the stock was decremented
        """

    @abstractmethod
    def release_stock(self, product_id: str, quantity: int) -> None:
        """Return ``quantity`` units to stock."""

    @abstractmethod
    def add_order(self, product_id: str, order_id: str) -> None:
        """Link an order to the product."""


class UserRepository(ABC):
    """Read access to buyer and shop accounts."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[dict]:
        """Get a user document by id."""

    @abstractmethod
    def add_order(self, user_id: str, order_id: str) -> None:
        """Link an order to the user."""


class NotificationRepository(ABC):
    """Persistent in-app notifications."""

    @abstractmethod
    def insert(self, notification: Notification) -> None:
        """Store a notification."""

    @abstractmethod
    def list_for(self, recipient: str) -> list[Notification]:
        """List a recipient's notifications, newest first."""


class WebhookAuditRepository(ABC):
    """Durable record of every webhook delivery and processing error."""

    @abstractmethod
    def record(self, entry: dict) -> None:
        """Append an audit entry."""

    @abstractmethod
    def list_entries(self, limit: int = 100) -> list[dict]:
        """Return the most recent audit entries, newest first."""


@dataclass
class Repositories:
    """The set of repositories the engine and reconciler work with."""

    orders: OrderRepository
    products: ProductRepository
    users: UserRepository
    notifications: NotificationRepository
    webhook_audit: WebhookAuditRepository

    def ping(self) -> bool:
        """Check that the backing store is reachable."""
        return True


class MongoOrderRepository(OrderRepository):
    """Orders stored in the ``orders`` collection."""

    def __init__(self, db: Database):
        self.collection = db["orders"]

    def ensure_indexes(self) -> None:
        """Create the indexes the lookups and uniqueness rules rely on."""
        self.collection.create_index("orderNumber", unique=True)
        self.collection.create_index("paymentDetails.transactionId", unique=True, sparse=True)
        self.collection.create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
        self.collection.create_index([("shop", ASCENDING), ("createdAt", DESCENDING)])

    def insert(self, order: Order) -> None:
        self.collection.insert_one(order.to_document())

    def get(self, order_id: str) -> Optional[Order]:
        document = self.collection.find_one({"_id": order_id})
        return Order.from_document(document) if document else None

    def find_by_transaction_id(self, transaction_id: str) -> Optional[Order]:
        document = self.collection.find_one({"paymentDetails.transactionId": transaction_id})
        return Order.from_document(document) if document else None

    def find_page(
        self, owner_field: str, owner_id: str, status: Optional[str], page: int, limit: int
    ) -> tuple[list[Order], int]:
        query: dict[str, Any] = {owner_field: owner_id}
        if status:
            query["status"] = status
        cursor = self.collection.find(query).sort("createdAt", DESCENDING).skip((page - 1) * limit).limit(limit)
        orders = [Order.from_document(document) for document in cursor]
        return orders, self.collection.count_documents(query)

    def update_if(
        self,
        order_id: str,
        conditions: dict[str, Any],
        fields: dict[str, Any],
        push: Optional[dict[str, Any]] = None,
    ) -> Optional[Order]:
        update: dict[str, Any] = {"$set": fields}
        if push:
            update["$push"] = push
        document = self.collection.find_one_and_update(
            {"_id": order_id, **conditions},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return Order.from_document(document) if document else None


class MongoProductRepository(ProductRepository):
    """Products stored in the ``products`` collection."""

    def __init__(self, db: Database):
        self.collection = db["products"]

    def get(self, product_id: str) -> Optional[dict]:
        return self.collection.find_one({"_id": product_id})

    def reserve_stock(self, product_id: str, quantity: int) -> bool:
        result = self.collection.update_one(
            {"_id": product_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}},
        )
        return result.modified_count == 1

    def release_stock(self, product_id: str, quantity: int) -> None:
        self.collection.update_one({"_id": product_id}, {"$inc": {"stock": quantity}})

    def add_order(self, product_id: str, order_id: str) -> None:
        self.collection.update_one({"_id": product_id}, {"$addToSet": {"orders": order_id}})


class MongoUserRepository(UserRepository):
    """Users stored in the ``users`` collection."""

    def __init__(self, db: Database):
        self.collection = db["users"]

    def get(self, user_id: str) -> Optional[dict]:
        return self.collection.find_one({"_id": user_id})

    def add_order(self, user_id: str, order_id: str) -> None:
        self.collection.update_one({"_id": user_id}, {"$addToSet": {"orders": order_id}})


class MongoNotificationRepository(NotificationRepository):
    """Notifications stored in the ``notifications`` collection."""

    def __init__(self, db: Database):
        self.collection = db["notifications"]

    def insert(self, notification: Notification) -> None:
        self.collection.insert_one(notification.model_dump(by_alias=True))

    def list_for(self, recipient: str) -> list[Notification]:
        cursor = self.collection.find({"recipient": recipient}).sort("createdAt", DESCENDING)
        return [Notification.model_validate(document) for document in cursor]


class MongoWebhookAuditRepository(WebhookAuditRepository):
    """Audit entries stored in the ``webhook_audit`` collection."""

    def __init__(self, db: Database):
        self.collection = db["webhook_audit"]

    def record(self, entry: dict) -> None:
        self.collection.insert_one(dict(entry))

    def list_entries(self, limit: int = 100) -> list[dict]:
        return list(self.collection.find().sort("receivedAt", DESCENDING).limit(limit))


class MongoRepositories(Repositories):
    """Repositories backed by one MongoDB database."""

    def __init__(self, client: MongoClient, db_name: str):
        self.client = client
        db = client[db_name]
        orders = MongoOrderRepository(db)
        super().__init__(
            orders=orders,
            products=MongoProductRepository(db),
            users=MongoUserRepository(db),
            notifications=MongoNotificationRepository(db),
            webhook_audit=MongoWebhookAuditRepository(db),
        )

    @classmethod
    def connect(cls, mongo_uri: str, db_name: str) -> "MongoRepositories":
        """Create the client and the repositories, and make sure indexes exist."""
        client = MongoClient(mongo_uri, tz_aware=True)
        repositories = cls(client, db_name)
        repositories.orders.ensure_indexes()
        logger.info(f"MongoDB repositories ready on database {db_name}")
        return repositories

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error(f"MongoDB ping failed: {e}")
            return False
