"""Tests for notification delivery."""

from unittest.mock import MagicMock

import pytest

from order_service.memory import InMemoryNotificationRepository
from order_service.notifications import ExpoPushChannel, NotificationDispatcher, is_expo_push_token


@pytest.fixture
def mock_requests(mocker):
    """Mock requests for the Expo push API."""
    return mocker.patch("order_service.notifications.requests")


@pytest.fixture
def push_channel():
    return ExpoPushChannel("https://expo.test/push/send", timeout=3)


@pytest.mark.parametrize(
    "token,expected",
    [
        ("ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]", True),
        ("ExpoPushToken[abc]", True),
        ("not-a-token", False),
        ("ExponentPushToken[]", False),
        (None, False),
    ],
)
def test_is_expo_push_token(token, expected):
    assert is_expo_push_token(token) is expected


def test_expo_push_sends_message(push_channel, mock_requests):
    assert push_channel.send("ExponentPushToken[abc]", "New order #ORD1 for Kanga", {"type": "order_created"})

    mock_requests.post.assert_called_once_with(
        "https://expo.test/push/send",
        json={
            "to": "ExponentPushToken[abc]",
            "sound": "default",
            "body": "New order #ORD1 for Kanga",
            "data": {"type": "order_created"},
        },
        timeout=3,
    )


def test_expo_push_rejects_invalid_token(push_channel, mock_requests):
    assert push_channel.send("bogus", "hello", {}) is False
    mock_requests.post.assert_not_called()


def test_expo_push_failure(push_channel, mock_requests):
    mock_requests.post.side_effect = Exception("Expo unavailable")

    assert push_channel.send("ExponentPushToken[abc]", "hello", {}) is False


def test_dispatcher_stores_and_pushes():
    repository = InMemoryNotificationRepository()
    channel = MagicMock()
    dispatcher = NotificationDispatcher(repository, channel)

    dispatcher.notify({"_id": "seller-1", "expoPushToken": "ExponentPushToken[abc]"}, "New order", "order-1")

    stored = dispatcher.list_for("seller-1")
    assert len(stored) == 1
    assert stored[0].message == "New order"
    assert stored[0].related_order == "order-1"
    assert stored[0].type == "persistent"
    assert stored[0].read is False
    channel.send.assert_called_once_with(
        "ExponentPushToken[abc]", "New order", {"type": "order_created", "orderId": "order-1"}
    )


def test_dispatcher_without_token_only_stores():
    repository = InMemoryNotificationRepository()
    channel = MagicMock()
    dispatcher = NotificationDispatcher(repository, channel)

    dispatcher.notify({"_id": "buyer-1"}, "Order placed", "order-1")

    assert len(dispatcher.list_for("buyer-1")) == 1
    channel.send.assert_not_called()


def test_dispatcher_ignores_missing_recipient():
    repository = MagicMock()
    dispatcher = NotificationDispatcher(repository)

    dispatcher.notify(None, "Order placed", "order-1")

    repository.insert.assert_not_called()


def test_dispatcher_swallows_failures():
    repository = MagicMock()
    repository.insert.side_effect = RuntimeError("store down")
    channel = MagicMock()
    channel.send.side_effect = RuntimeError("push down")
    dispatcher = NotificationDispatcher(repository, channel)

    dispatcher.notify({"_id": "buyer-1", "expoPushToken": "ExponentPushToken[abc]"}, "Order placed", "order-1")

    channel.send.assert_called_once()
