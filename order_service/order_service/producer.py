"""Kafka producer for publishing order lifecycle events."""

from typing import Optional

from confluent_kafka import KafkaException, Producer

from .logger import logger
from .schemas import Order, OrderEvent


class OrderEventProducer:
    """Publishes order lifecycle events to a Kafka topic.

    Events are keyed by order id so every event of one order lands on the
    same partition and is consumed in order. Publication is best-effort:
    a broker problem is logged and never fails the order operation.

    Attributes:
        topic: Topic receiving the events
        _producer: The underlying Kafka producer instance, None when disabled
    """

    def __init__(self, bootstrap_servers: Optional[str], topic: str = "orders.events"):
        """Initialize the Kafka producer.

        Args:
            bootstrap_servers (str): Comma-separated list of Kafka broker addresses.
                Publication is disabled when empty.
            topic (str): Destination topic.
        """
        self.topic = topic
        self._producer = None
        if bootstrap_servers:
            self._producer = Producer(
                {
                    "bootstrap.servers": bootstrap_servers,
                    "message.timeout.ms": 5000,
                    "partitioner": "consistent_random",  # Same key → same partition
                }
            )
        else:
            logger.info("KAFKA_BOOTSTRAP_SERVERS not set, order events disabled")

    @property
    def enabled(self) -> bool:
        return self._producer is not None

    def _delivery_callback(self, err, msg):
        """Callback function for message delivery reports.

        Args:
            err: Error that occurred during message delivery, if any.
            msg: Message that was delivered or failed.
        """
        if err:
            logger.bind(topic=msg.topic(), key=msg.key()).error(f"Order event failed delivery: {err}")
        else:
            logger.bind(offset=msg.offset()).debug(f"Order event delivered to {msg.topic()} [p:{msg.partition()}]")

    def publish(self, event_type: str, order: Order) -> None:
        """Publish an event describing the order's current state.

        Args:
            event_type (str): Event name, e.g. ``order.created``.
            order (Order): The order the event is about.
        """
        if self._producer is None:
            return

        event = OrderEvent.for_order(event_type, order)
        try:
            self._producer.produce(
                topic=self.topic,
                key=order.id.encode("utf-8"),
                value=event.model_dump_json(),
                on_delivery=self._delivery_callback,
            )
            self._producer.poll(0)  # Trigger delivery callbacks
        except BufferError:
            logger.warning("Producer buffer full, flushing...")
            self._producer.flush()
        except KafkaException as e:
            logger.error(f"Failed to publish {event_type} for order {order.id}: {e}")

    def flush(self, timeout: float = 5.0) -> None:
        """Wait for outstanding events to be delivered."""
        if self._producer is not None:
            self._producer.flush(timeout)
