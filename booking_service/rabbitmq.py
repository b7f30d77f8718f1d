import json

import aio_pika

from .config import RABBIT_URL, SERVICE_NAME

EXCHANGE_NAME = "domain_events"


def encode_event(event: dict) -> aio_pika.Message:
    """Persistent JSON message carrying the event id and type as AMQP properties."""
    body = json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)
    return aio_pika.Message(
        body=body.encode("utf-8"),
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        message_id=event["event_id"],
        type=event["event_type"],
        app_id=SERVICE_NAME,
    )


class BookingEventPublisher:
    """
    Publishes booking lifecycle events to the shared topic exchange.

    Events go out after the transition has committed, so publishing is best
    effort: without RABBIT_URL it is a no-op, and a broker failure is printed
    and dropped rather than failing the request.
    """

    def __init__(self):
        self.enabled = bool(RABBIT_URL)
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None

    @property
    def connected(self) -> bool:
        return self._exchange is not None and self._connection is not None and not self._connection.is_closed

    async def connect(self):
        if not self.enabled or self.connected:
            return

        try:
            self._connection = await aio_pika.connect_robust(RABBIT_URL)
            channel = await self._connection.channel()
            self._exchange = await channel.declare_exchange(EXCHANGE_NAME, aio_pika.ExchangeType.TOPIC, durable=True)
        except Exception as e:
            print(f"[{SERVICE_NAME}] broker unavailable, events will be dropped: {e}")
            self._reset()
            raise

    async def publish(self, event: dict):
        # routing key is the event type, e.g. booking.cleaner_assigned
        if not self.enabled:
            return

        routing_key = event["event_type"]
        try:
            await self.connect()
            await self._exchange.publish(encode_event(event), routing_key=routing_key)
        except Exception as e:
            print(f"[{SERVICE_NAME}] dropped {routing_key} event {event['event_id']}: {e}")

    async def close(self):
        try:
            if self._connection and not self._connection.is_closed:
                await self._connection.close()
        finally:
            self._reset()

    def _reset(self):
        self._connection = None
        self._exchange = None


publisher = BookingEventPublisher()
