"""Notification delivery: persistent in-app notifications and Expo push."""

import re
from typing import Optional, Protocol

import requests

from .logger import logger
from .repositories import NotificationRepository
from .schemas import Notification

EXPO_TOKEN_PATTERN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\]]+\]$")


def is_expo_push_token(token) -> bool:
    """Check that a device token looks like an Expo push token."""
    return isinstance(token, str) and bool(EXPO_TOKEN_PATTERN.match(token))


class PushChannel(Protocol):
    """Protocol defining the interface for push delivery channels."""

    def send(self, token: str, message: str, data: dict) -> bool:
        """Send a push message to one device.

        Args:
            token: Device push token
            message: Notification body
            data: Extra payload delivered to the app

        Returns:
            bool: True if sent successfully, False otherwise
        """
        ...


class ExpoPushChannel:
    """Expo push API channel implementation."""

    def __init__(self, push_url: str, timeout: float = 10.0):
        self.push_url = push_url
        self.timeout = timeout

    def send(self, token: str, message: str, data: dict) -> bool:
        if not is_expo_push_token(token):
            logger.warning(f"Invalid Expo push token: {token}")
            return False

        try:
            response = requests.post(
                self.push_url,
                json={"to": token, "sound": "default", "body": message, "data": data},
                timeout=self.timeout,
            )
            response.raise_for_status()
            logger.info("Push notification sent successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to send push notification: {e}")
            return False


class NotificationDispatcher:
    """Stores notifications and pushes them to registered devices.

    Delivery never raises: a failure to store or push is logged and the
    calling operation carries on.
    """

    def __init__(self, repository: NotificationRepository, push_channel: Optional[PushChannel] = None):
        self.repository = repository
        self.push_channel = push_channel

    def notify(self, recipient: Optional[dict], message: str, order_id: str, event_type: str = "order_created") -> None:
        """Notify a user about an order.

        Args:
            recipient: User document; its ``expoPushToken`` enables push delivery
            message: Notification text
            order_id: Related order id
            event_type: ``data.type`` sent along with the push message
        """
        if not recipient:
            logger.warning(f"No recipient to notify for order {order_id}")
            return

        try:
            self.repository.insert(Notification(recipient=recipient["_id"], message=message, related_order=order_id))
        except Exception as e:
            logger.error(f"Failed to store notification for user {recipient['_id']}: {e}")

        token = recipient.get("expoPushToken")
        if token and self.push_channel is not None:
            try:
                self.push_channel.send(token, message, {"type": event_type, "orderId": order_id})
            except Exception as e:
                logger.error(f"Failed to push notification to user {recipient['_id']}: {e}")

    def list_for(self, recipient_id: str) -> list[Notification]:
        """List a user's notifications, newest first."""
        return self.repository.list_for(recipient_id)
