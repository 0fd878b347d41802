"""
Order event consumer background worker.

Reads order-created events from Kafka and runs the payment create workflow
for every event that carries a payable amount. Offsets are committed by hand
once a message has been handled or deliberately skipped; a message whose
processing fails is left uncommitted and the partition is rewound to it,
so it is redelivered instead of being overtaken by a later commit.
"""
import asyncio
import json
import signal
from decimal import Decimal
from typing import Any, Optional

import structlog
from confluent_kafka import Consumer, KafkaError, Message, TopicPartition
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from payment_service.api.schemas import CreatePaymentRequest
from payment_service.config import get_settings
from payment_service.core.exceptions import PaymentError
from payment_service.core.payment_processor import PaymentProcessor
from payment_service.monitoring.logging import setup_logging
from payment_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class OrderEvent(BaseModel):
    """Order-created event as published by the order service."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    order_id: str
    user_id: str
    payment_amount: Optional[Decimal] = None

    @field_validator("order_id", "user_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class OrderEventConsumer:
    """Drives payment creation from the order events topic."""

    def __init__(
        self,
        processor: Optional[PaymentProcessor] = None,
        bootstrap_servers: Optional[str] = None,
        topic: Optional[str] = None,
        group_id: Optional[str] = None,
        consumer: Optional[Any] = None,
        poll_timeout: float = 1.0,
    ):
        """
        Initialize the consumer.

        Args:
            processor: Payment processor that runs the create workflow
            bootstrap_servers: Kafka brokers (defaults to settings)
            topic: Order events topic (defaults to settings)
            group_id: Consumer group (defaults to settings)
            consumer: Optional preconfigured confluent-kafka Consumer
            poll_timeout: Seconds to wait in each poll
        """
        settings = get_settings()
        self.processor = processor or PaymentProcessor()
        self.topic = topic or settings.order_events_topic
        self.poll_timeout = poll_timeout
        self.running = False

        self.consumer = consumer or Consumer({
            'bootstrap.servers': bootstrap_servers or settings.kafka_bootstrap_servers,
            'group.id': group_id or settings.kafka_consumer_group_id,
            'enable.auto.commit': False,
            'auto.offset.reset': 'earliest',
        })

    async def handle_message(self, msg: Message) -> str:
        """
        Process one order event.

        Returns:
            str: "processed" or "skipped"

        Raises:
            PaymentError: If the create workflow fails
        """
        try:
            event = OrderEvent.model_validate(json.loads(msg.value()))
        except (ValueError, TypeError) as e:
            logger.warning(
                "order_event_malformed",
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset(),
                error=str(e),
            )
            return "skipped"

        if event.payment_amount is None or event.payment_amount <= 0:
            logger.warning(
                "order_event_without_amount",
                order_id=event.order_id,
                payment_amount=event.payment_amount,
            )
            return "skipped"

        try:
            request = CreatePaymentRequest(
                order_id=event.order_id,
                user_id=event.user_id,
                payment_amount=event.payment_amount,
            )
        except ValidationError as e:
            logger.warning("order_event_invalid", order_id=event.order_id, error=str(e))
            return "skipped"

        payment = await self.processor.create_payment(request)
        logger.info(
            "order_event_processed",
            order_id=event.order_id,
            payment_id=payment["id"],
            status=payment["status"],
        )
        return "processed"

    async def run(self, max_messages: Optional[int] = None) -> None:
        """
        Consume until stopped.

        Args:
            max_messages: Stop after this many messages (None = run forever)
        """
        self.consumer.subscribe([self.topic])
        self.running = True
        handled = 0

        logger.info("order_event_consumer_started", topic=self.topic)

        try:
            while self.running:
                if max_messages is not None and handled >= max_messages:
                    break

                msg = await asyncio.to_thread(self.consumer.poll, self.poll_timeout)
                if msg is None:
                    continue

                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error("order_event_consumer_error", error=str(msg.error()))
                    continue

                handled += 1
                try:
                    result = await self.handle_message(msg)
                except PaymentError as e:
                    metrics.record_order_event("failed")
                    logger.error(
                        "order_event_processing_failed",
                        partition=msg.partition(),
                        offset=msg.offset(),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    # Rewind so the next poll redelivers this message
                    self.consumer.seek(
                        TopicPartition(msg.topic(), msg.partition(), msg.offset())
                    )
                    continue

                metrics.record_order_event(result)
                self.consumer.commit(message=msg, asynchronous=False)
        finally:
            self.consumer.close()
            logger.info("order_event_consumer_stopped", handled=handled)

    def stop(self) -> None:
        self.running = False


async def start_order_event_consumer() -> None:
    """Run the order event consumer until SIGINT/SIGTERM."""
    setup_logging()

    logger.info("order_event_consumer_worker_starting")

    worker = OrderEventConsumer()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        worker.processor.event_producer.close()


def main() -> None:
    asyncio.run(start_order_event_consumer())


if __name__ == "__main__":
    main()
