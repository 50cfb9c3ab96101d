"""Unit tests for the OrderEventProducer class."""

import json
from unittest.mock import MagicMock, patch

from confluent_kafka import KafkaException

from order_service.producer import OrderEventProducer


def test_producer_initialization():
    """Test that OrderEventProducer initializes with correct configuration.

    Verifies that the Kafka producer is created with the expected settings,
    including bootstrap servers, timeout, and partitioner configuration.
    """
    mock_producer_instance = MagicMock()
    mock_producer_class = MagicMock(return_value=mock_producer_instance)

    with patch("order_service.producer.Producer", new=mock_producer_class):
        producer = OrderEventProducer("dump:9092")

        mock_producer_class.assert_called_once_with(
            {"bootstrap.servers": "dump:9092", "message.timeout.ms": 5000, "partitioner": "consistent_random"}
        )
        assert producer.enabled
        assert producer.topic == "orders.events"


def test_producer_disabled_without_brokers():
    """Test that no Kafka client is created when no brokers are configured."""
    with patch("order_service.producer.Producer") as mock_producer_class:
        producer = OrderEventProducer(None)
        producer.publish("order.created", MagicMock())
        producer.flush()

        mock_producer_class.assert_not_called()
        assert not producer.enabled


def test_publish_event(card_order):
    """Test successful event publication to Kafka.

    Verifies that:
        - The event is published to the configured topic
        - The message key is the order id
        - The message value is the serialized event
        - Producer poll is called
    """
    with patch("order_service.producer.Producer") as mock_producer_class:
        producer = OrderEventProducer("localhost:9092", topic="orders.test")
        producer.publish("order.created", card_order)

        mock_producer = mock_producer_class.return_value
        mock_producer.produce.assert_called_once()
        kwargs = mock_producer.produce.call_args.kwargs
        assert kwargs["topic"] == "orders.test"
        assert kwargs["key"] == card_order.id.encode("utf-8")
        assert kwargs["on_delivery"] == producer._delivery_callback
        event = json.loads(kwargs["value"])
        assert event["event_type"] == "order.created"
        assert event["order_id"] == card_order.id
        assert event["order_number"] == card_order.order_number
        assert event["status"] == "pending"
        assert event["payment_status"] == "pending"
        mock_producer.poll.assert_called_once_with(0)


def test_publish_swallows_kafka_errors(card_order):
    with patch("order_service.producer.Producer") as mock_producer_class:
        mock_producer_class.return_value.produce.side_effect = KafkaException("broker down")
        producer = OrderEventProducer("localhost:9092")

        producer.publish("order.created", card_order)


def test_publish_flushes_full_buffer(card_order):
    with patch("order_service.producer.Producer") as mock_producer_class:
        mock_producer_class.return_value.produce.side_effect = BufferError()
        producer = OrderEventProducer("localhost:9092")

        producer.publish("order.created", card_order)

        mock_producer_class.return_value.flush.assert_called_once()
