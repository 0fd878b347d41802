"""
Kafka producer for payment events.

Publication is fire-and-forget: produce() only enqueues the message and
poll(0) serves delivery callbacks, so the caller never waits on the broker.
"""
import json
from typing import Any, Optional

import structlog
from confluent_kafka import KafkaError, Message, Producer

from payment_service.config import get_settings
from payment_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PAYMENT_CREATED_ORDER_STATUS = "CANCELED"


class PaymentEventProducer:
    """Publishes payment-created events for downstream services."""

    def __init__(
        self,
        bootstrap_servers: Optional[str] = None,
        topic: Optional[str] = None,
        producer: Optional[Any] = None,
    ):
        """
        Initialize the producer.

        Args:
            bootstrap_servers: Kafka brokers (defaults to settings)
            topic: Destination topic (defaults to settings)
            producer: Optional preconfigured confluent-kafka Producer
        """
        settings = get_settings()
        self.bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self.topic = topic or settings.payment_events_topic
        self._producer = producer

    @property
    def producer(self) -> Producer:
        if self._producer is None:
            self._producer = Producer({
                'bootstrap.servers': self.bootstrap_servers,
                'acks': 'all',
                'enable.idempotence': True,
                'linger.ms': 5,
            })
        return self._producer

    def publish_payment_created(self, payment_id: str, order_id: str) -> None:
        """
        Enqueue a payment-created event.

        The message key is the payment id; the value is
        {"orderId": ..., "status": "CANCELED"}.

        Args:
            payment_id: Id of the created payment
            order_id: Order the payment belongs to
        """
        value = json.dumps(
            {"orderId": order_id, "status": PAYMENT_CREATED_ORDER_STATUS}
        ).encode('utf-8')

        self.producer.produce(
            topic=self.topic,
            key=payment_id.encode('utf-8'),
            value=value,
            on_delivery=self._delivery_callback,
        )
        self.producer.poll(0)

        logger.debug("payment_event_enqueued", payment_id=payment_id, order_id=order_id)

    def _delivery_callback(self, err: Optional[KafkaError], msg: Message) -> None:
        key = msg.key().decode('utf-8') if msg.key() else None
        if err:
            metrics.record_event_published("failed")
            logger.error("payment_event_delivery_failed", payment_id=key, error=str(err))
        else:
            metrics.record_event_published("delivered")
            logger.info(
                "payment_event_delivered",
                payment_id=key,
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset(),
            )

    def flush(self, timeout: float = 10.0) -> int:
        """Wait for queued messages; returns how many are still undelivered."""
        if self._producer is None:
            return 0
        remaining = self._producer.flush(timeout)
        if remaining > 0:
            logger.warning("payment_events_undelivered", remaining=remaining)
        return remaining

    def close(self) -> None:
        """Flush remaining messages and drop the producer."""
        self.flush()
        self._producer = None
        logger.info("payment_event_producer_closed")
