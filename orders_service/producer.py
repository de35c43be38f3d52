"""Kafka producer for publishing order lifecycle events."""

from confluent_kafka import Producer

from .logger import logger
from .schemas import Order

ORDER_CONFIRMED_TOPIC = "orders.confirmed"
ORDER_RECONCILIATION_FAILED_TOPIC = "orders.reconciliation_failed"


class OrderEventProducer:
    """Kafka producer for publishing order events.

    Orders are keyed by their id, so every event of one order lands on the
    same partition and is delivered in order.

    Attributes:
        _producer: The underlying Kafka producer instance.
    """

    def __init__(self, bootstrap_servers: str):
        """Initialize the Kafka producer with the given bootstrap servers.

        Args:
            bootstrap_servers (str): Comma-separated list of Kafka broker addresses.
        """
        self._producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "message.timeout.ms": 5000,
                "partitioner": "consistent_random",
            }
        )

    @property
    def producer(self):
        return self._producer

    def _delivery_callback(self, err, msg):
        """Log the delivery report of a message."""
        if err:
            logger.error(f"Order event failed delivery | topic={msg.topic()} | key={msg.key()} | error={err}")
        else:
            logger.debug(f"Order event delivered | topic={msg.topic()} | partition={msg.partition()} | offset={msg.offset()}")

    def publish_order(self, topic: str, order: Order) -> None:
        """Publish the current state of an order.

        Args:
            topic (str): Destination topic.
            order (Order): The order to publish.

        Raises:
            BufferError: If the producer's internal buffer is full.
        """
        try:
            self._producer.produce(
                topic=topic,
                key=order.id.encode("utf-8"),
                value=order.model_dump_json(by_alias=True, exclude_none=True),
                on_delivery=self._delivery_callback,
            )
            self._producer.poll(0)
        except BufferError:
            logger.warning("Producer buffer full, flushing...")
            self._producer.flush()
            raise

    def close(self, timeout: float = 10.0) -> None:
        """Wait for pending deliveries before shutdown."""
        remaining = self._producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} order events still pending delivery")
