"""Wiring of the service's collaborators."""

from dataclasses import dataclass
from typing import Optional

from logging_utils import add_audit_sink

from .config import Settings
from .engine import OrderLifecycleEngine
from .gateway import ZenoPayClient
from .logger import logger
from .memory import create_memory_repositories
from .notifications import ExpoPushChannel, NotificationDispatcher, PushChannel
from .producer import OrderEventProducer
from .repositories import MongoRepositories, Repositories
from .webhook import WebhookAuditLog, WebhookReconciler


@dataclass
class ServiceContainer:
    """Everything the HTTP layer needs, built once per application."""

    settings: Settings
    repositories: Repositories
    engine: OrderLifecycleEngine
    reconciler: WebhookReconciler
    events: OrderEventProducer

    @classmethod
    def build(
        cls,
        settings: Settings,
        repositories: Optional[Repositories] = None,
        gateway: Optional[ZenoPayClient] = None,
        push_channel: Optional[PushChannel] = None,
        events: Optional[OrderEventProducer] = None,
    ) -> "ServiceContainer":
        """Build the container, creating any collaborator not passed in.

        Args:
            settings: Service settings
            repositories: Stores to use instead of the configured backend
            gateway: Payment gateway client
            push_channel: Push delivery channel
            events: Order event publisher

        Returns:
            ServiceContainer: The wired container
        """
        if repositories is None:
            repositories = cls._create_repositories(settings)
        if gateway is None:
            gateway = ZenoPayClient.from_settings(settings)
        if push_channel is None:
            push_channel = ExpoPushChannel(settings.expo_push_url)
        if events is None:
            events = OrderEventProducer(settings.kafka_bootstrap_servers, settings.order_events_topic)
        if settings.audit_log_file:
            add_audit_sink(settings.audit_log_file)

        dispatcher = NotificationDispatcher(repositories.notifications, push_channel)
        engine = OrderLifecycleEngine(
            repositories,
            gateway,
            dispatcher,
            events,
            notify_buyer_on_order=settings.notify_buyer_on_order,
        )
        reconciler = WebhookReconciler(
            engine,
            WebhookAuditLog(repositories.webhook_audit),
            settings.zenopay_webhook_secret,
        )
        return cls(settings=settings, repositories=repositories, engine=engine, reconciler=reconciler, events=events)

    @staticmethod
    def _create_repositories(settings: Settings) -> Repositories:
        if settings.storage_backend == "memory":
            logger.warning("Using in-memory storage, data will not survive a restart")
            return create_memory_repositories()
        if settings.storage_backend != "mongo":
            raise ValueError(f"Unknown STORAGE_BACKEND: {settings.storage_backend}")
        return MongoRepositories.connect(settings.mongo_uri, settings.mongo_db_name)
