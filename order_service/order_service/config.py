"""Service configuration read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Runtime settings for the order service.

    Attributes:
        storage_backend: ``mongo`` for MongoDB, ``memory`` for the in-process store
        mongo_uri: MongoDB connection string
        mongo_db_name: MongoDB database name
        kafka_bootstrap_servers: Kafka brokers; order events are disabled when empty
        order_events_topic: Topic receiving order lifecycle events
        zenopay_api_url: Payment initiation endpoint
        zenopay_status_url: Payment status endpoint
        zenopay_account_id: Merchant account id
        zenopay_api_key: Merchant API key
        zenopay_secret_key: Merchant secret key
        zenopay_webhook_url: Callback URL handed to the gateway
        zenopay_webhook_secret: Shared secret used to verify webhook signatures
        payment_gateway_timeout: Seconds to wait for the gateway
        expo_push_url: Expo push API endpoint
        notify_buyer_on_order: Send the buyer an order confirmation
        audit_log_file: Optional JSON-lines file for webhook audit records
    """

    storage_backend: str = "mongo"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "marketplace"
    kafka_bootstrap_servers: Optional[str] = None
    order_events_topic: str = "orders.events"
    zenopay_api_url: str = "https://api.zeno.africa"
    zenopay_status_url: str = "https://api.zeno.africa/order-status"
    zenopay_account_id: str = ""
    zenopay_api_key: str = ""
    zenopay_secret_key: str = ""
    zenopay_webhook_url: str = ""
    zenopay_webhook_secret: Optional[str] = None
    payment_gateway_timeout: float = 30.0
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    notify_buyer_on_order: bool = True
    audit_log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (and a ``.env`` file if present).

        Returns:
            Settings: The resolved settings
        """
        load_dotenv()
        return cls(
            storage_backend=os.getenv("STORAGE_BACKEND", "mongo").lower(),
            mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            mongo_db_name=os.getenv("MONGO_DB_NAME", "marketplace"),
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS") or None,
            order_events_topic=os.getenv("ORDER_EVENTS_TOPIC", "orders.events"),
            zenopay_api_url=os.getenv("ZENOPAY_API_URL", "https://api.zeno.africa"),
            zenopay_status_url=os.getenv("ZENOPAY_STATUS_URL", "https://api.zeno.africa/order-status"),
            zenopay_account_id=os.getenv("ZENOPAY_ACCOUNT_ID", ""),
            zenopay_api_key=os.getenv("ZENOPAY_API_KEY", ""),
            zenopay_secret_key=os.getenv("ZENOPAY_SECRET_KEY", ""),
            zenopay_webhook_url=os.getenv("ZENOPAY_WEBHOOK_URL", ""),
            zenopay_webhook_secret=os.getenv("ZENOPAY_WEBHOOK_SECRET") or None,
            payment_gateway_timeout=float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "30")),
            expo_push_url=os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"),
            notify_buyer_on_order=_env_bool("NOTIFY_BUYER_ON_ORDER", "true"),
            audit_log_file=os.getenv("AUDIT_LOG_FILE") or None,
        )
