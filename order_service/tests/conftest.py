"""Test fixtures for the order service tests."""

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from order_service.auth import Actor
from order_service.config import Settings
from order_service.container import ServiceContainer
from order_service.gateway import GatewayResult, ZenoPayClient
from order_service.memory import create_memory_repositories
from order_service.producer import OrderEventProducer
from order_service.schemas import ShippingAddress, UserRole
from order_service.server import create_app
from order_service.webhook import sign_payload

WEBHOOK_SECRET = "test-webhook-secret"
BUYER_ID = "buyer-1"
OTHER_BUYER_ID = "buyer-2"
SELLER_ID = "seller-1"
ADMIN_ID = "admin-1"
PRODUCT_ID = "product-1"
TRANSACTION_ID = "TXN1"


@pytest.fixture
def repositories():
    """In-memory stores seeded with a buyer, a shop, an admin and one product.

    Returns:
        Repositories: Fresh stores for each test.
    """
    repos = create_memory_repositories()
    repos.users.add(
        {
            "_id": BUYER_ID,
            "username": "amina",
            "email": "amina@example.com",
            "userType": "BUYER",
            "expoPushToken": "ExponentPushToken[buyer-device]",
        }
    )
    repos.users.add({"_id": OTHER_BUYER_ID, "username": "baraka", "email": "baraka@example.com", "userType": "BUYER"})
    repos.users.add(
        {
            "_id": SELLER_ID,
            "username": "duka-la-juma",
            "name": "Duka la Juma",
            "email": "juma@example.com",
            "userType": "SELLER",
            "expoPushToken": "ExponentPushToken[seller-device]",
        }
    )
    repos.users.add({"_id": ADMIN_ID, "username": "admin", "email": "admin@example.com", "userType": "ADMIN"})
    repos.products.add(
        {
            "_id": PRODUCT_ID,
            "name": "Kanga fabric",
            "price": 10000,
            "stock": 5,
            "shop": SELLER_ID,
            "images": ["https://cdn.example.com/kanga.jpg"],
        }
    )
    return repos


@pytest.fixture
def gateway():
    """Payment gateway mock accepting every charge with transaction id TXN1."""
    mock_gateway = MagicMock(spec=ZenoPayClient)
    mock_gateway.initiate.return_value = GatewayResult(
        success=True, transaction_id=TRANSACTION_ID, status="success", message="Order created successfully"
    )
    mock_gateway.query_status.return_value = {
        "status": "success",
        "order_id": TRANSACTION_ID,
        "payment_status": "PENDING",
    }
    return mock_gateway


@pytest.fixture
def push_channel():
    channel = MagicMock()
    channel.send.return_value = True
    return channel


@pytest.fixture
def events():
    producer = MagicMock(spec=OrderEventProducer)
    producer.enabled = False
    return producer


@pytest.fixture
def settings():
    return Settings(storage_backend="memory", zenopay_webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def container(settings, repositories, gateway, push_channel, events):
    return ServiceContainer.build(
        settings, repositories=repositories, gateway=gateway, push_channel=push_channel, events=events
    )


@pytest.fixture
def engine(container):
    return container.engine


@pytest.fixture
def reconciler(container):
    return container.reconciler


@pytest.fixture
def client(container):
    """Create a test client for the FastAPI app."""
    return TestClient(create_app(container))


@pytest.fixture
def buyer():
    return Actor(BUYER_ID, UserRole.BUYER)


@pytest.fixture
def other_buyer():
    return Actor(OTHER_BUYER_ID, UserRole.BUYER)


@pytest.fixture
def seller():
    return Actor(SELLER_ID, UserRole.SELLER)


@pytest.fixture
def admin():
    return Actor(ADMIN_ID, UserRole.ADMIN)


@pytest.fixture
def address():
    return ShippingAddress(
        street="12 Samora Ave",
        city="Dar es Salaam",
        state="Dar es Salaam",
        zip_code="11101",
        country="Tanzania",
        phone="0744963858",
    )


@pytest.fixture
def mobile_order(engine, address):
    """A mobile-money order for 3 units, awaiting its payment webhook."""
    return engine.create_order(BUYER_ID, PRODUCT_ID, 3, address, "mobile_money")


@pytest.fixture
def card_order(engine, address):
    """A card order for 3 units, ready for fulfillment."""
    return engine.create_order(BUYER_ID, PRODUCT_ID, 3, address, "credit_card")


@pytest.fixture
def signed_body():
    """Serialize a webhook payload and sign it with the test secret.

    Returns:
        Callable: payload -> (raw body, signature)
    """

    def _sign(payload: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, str]:
        raw_body = json.dumps(payload).encode("utf-8")
        return raw_body, sign_payload(secret, raw_body)

    return _sign
