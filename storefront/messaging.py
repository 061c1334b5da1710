import json
from uuid import uuid4

import aio_pika
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

ORDER_EXCHANGE = "order_exchange"


class EventPublisher:
    """Publishes order lifecycle events to a RabbitMQ topic exchange.

    Publishing is best effort: without a broker URL, or after a failed
    connection, events are logged and dropped. Order state in the database
    stays the source of truth.
    """

    def __init__(self, rabbitmq_url: str | None, exchange_name: str = ORDER_EXCHANGE):
        self.rabbitmq_url = rabbitmq_url
        self.exchange_name = exchange_name
        self._connection = None
        self._exchange = None

    @property
    def enabled(self) -> bool:
        return self._exchange is not None

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    async def _connect(self):
        connection = await aio_pika.connect_robust(self.rabbitmq_url)
        channel = await connection.channel()
        exchange = await channel.declare_exchange(self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True)
        return connection, exchange

    async def connect(self) -> None:
        if not self.rabbitmq_url:
            logger.info("event_publishing_disabled", reason="RABBITMQ_URL not set")
            return
        try:
            self._connection, self._exchange = await self._connect()
            logger.info("rabbitmq_connected", exchange=self.exchange_name)
        except Exception as e:
            logger.error("rabbitmq_unavailable", error=str(e))

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        self._connection = None
        self._exchange = None

    async def publish(self, routing_key: str, message_data: dict) -> None:
        if self._exchange is None:
            logger.debug("event_not_published", routing_key=routing_key, event_type=message_data.get("event_type"))
            return

        message = aio_pika.Message(
            json.dumps(message_data, default=str).encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        try:
            await self._exchange.publish(message, routing_key=routing_key)
            logger.info("event_published", routing_key=routing_key, event_type=message_data.get("event_type"))
        except Exception as e:
            logger.error("event_publish_failed", routing_key=routing_key, error=str(e))


def order_event(event_type: str, order) -> dict:
    """Build the wire form of an order lifecycle event."""
    return {
        "event_id": str(uuid4()),
        "event_type": event_type,
        "timestamp": order.updated_at.isoformat() if order.updated_at else None,
        "order_id": order.id,
        "status": order.status.value,
        "amount": order.amount,
        "payment_reference": order.payment_reference,
    }
