"""
AMQPStorm implementation of the broker transport.

Declarations and publishes share one channel, recreated from the connection
when it closes. Every consumer gets its own channel and a daemon thread
running ``start_consuming`` that feeds a bounded ``DeliveryStream``.
"""

import logging
import threading
from typing import Any, Mapping, Optional

from amqpstorm import Channel, Connection, Message
from amqpstorm.exception import AMQPError

from libs.python.rmq_dispatch.config import DEFAULT_PREFETCH_COUNT, ExchangeKind, broker_exchange_type
from libs.python.rmq_dispatch.delivery import Delivery, DeliveryStream
from libs.python.rmq_dispatch.interface import Transport

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
PERSISTENT_DELIVERY_MODE = 2


def _as_text(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _normalize_headers(headers: Optional[Mapping]) -> dict[str, Any]:
    """AMQP tables may carry byte strings; handlers and dispatch expect str."""
    return {_as_text(k): _as_text(v) for k, v in (headers or {}).items()}


def delivery_from_message(message: Message) -> Delivery:
    """Wrap an AMQPStorm message as a ``Delivery``."""
    body = message.body
    if isinstance(body, str):
        body = body.encode("utf-8")
    properties = message.properties or {}
    method = message.method or {}
    return Delivery(
        body=body,
        headers=_normalize_headers(properties.get("headers")),
        ack=message.ack,
        routing_key=_as_text(method.get("routing_key", "")),
        exchange=_as_text(method.get("exchange", "")),
        delivery_tag=method.get("delivery_tag"),
    )


class AmqpStormTransport(Transport):
    """Broker transport over an AMQPStorm connection."""

    def __init__(self, connection: Connection) -> None:
        """
        Args:
            connection: Active RabbitMQ connection
        """
        self._connection = connection
        self._channel: Optional[Channel] = None
        self._channel_lock = threading.Lock()
        self._consumer_channels: list[Channel] = []
        self._consumer_channels_lock = threading.Lock()

    def _ensure_channel(self) -> Channel:
        """Return the shared channel, recreating it if necessary."""
        if self._channel is None or not self._channel.is_open:
            if self._channel is not None:
                logger.warning("Channel is closed, recreating from connection")
            self._channel = self._connection.channel()
        return self._channel

    def declare_exchange(
        self,
        name: str,
        kind: ExchangeKind,
        durable: bool = True,
        auto_delete: bool = False,
        arguments: Optional[dict] = None,
    ) -> None:
        exchange_type, default_arguments = broker_exchange_type(kind)
        merged = {**default_arguments, **(arguments or {})}
        with self._channel_lock:
            self._ensure_channel().exchange.declare(
                exchange=name,
                exchange_type=exchange_type,
                durable=durable,
                auto_delete=auto_delete,
                arguments=merged or None,
            )

    def declare_queue(
        self,
        name: str,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
        arguments: Optional[dict] = None,
    ) -> str:
        with self._channel_lock:
            result = self._ensure_channel().queue.declare(
                queue=name,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
                arguments=arguments,
            )
        return _as_text(result.get("queue", name)) if result else name

    def bind(
        self,
        queue: str,
        routing_key: str,
        exchange: str,
        arguments: Optional[dict] = None,
    ) -> None:
        with self._channel_lock:
            self._ensure_channel().queue.bind(
                queue=queue,
                exchange=exchange,
                routing_key=routing_key,
                arguments=arguments,
            )

    def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        properties = {
            "content_type": JSON_CONTENT_TYPE,
            "delivery_mode": PERSISTENT_DELIVERY_MODE,
            "headers": dict(headers or {}),
        }
        with self._channel_lock:
            self._ensure_channel().basic.publish(
                body=body,
                routing_key=routing_key,
                exchange=exchange,
                properties=properties,
            )

    def consume(
        self,
        queue: str,
        consumer_tag: str = "",
        prefetch_count: int = DEFAULT_PREFETCH_COUNT,
    ) -> DeliveryStream:
        channel = self._connection.channel()
        channel.basic.qos(prefetch_count=prefetch_count)

        def _cancel():
            try:
                if channel.is_open:
                    channel.stop_consuming()
                    logger.info("Stopped consuming queue %s", queue)
            except AMQPError as e:
                logger.warning("Error stopping consumer for queue %s: %s", queue, e)
            with self._consumer_channels_lock:
                if channel in self._consumer_channels:
                    self._consumer_channels.remove(channel)
            self._close_channel(channel)

        stream = DeliveryStream(maxsize=prefetch_count, on_cancel=_cancel)

        def _on_message(message: Message) -> None:
            stream.put(delivery_from_message(message))

        try:
            tag = channel.basic.consume(
                callback=_on_message,
                queue=queue,
                consumer_tag=consumer_tag,
                no_ack=False,
            )
        except AMQPError:
            self._close_channel(channel)
            raise

        def _pump():
            try:
                channel.start_consuming(auto_decode=False)
            except AMQPError as e:
                if not stream.closed:
                    logger.error("Consumer for queue %s stopped: %s", queue, e)
            finally:
                stream.close()

        with self._consumer_channels_lock:
            self._consumer_channels.append(channel)
        threading.Thread(target=_pump, name=f"rmq-transport-{queue}", daemon=True).start()
        logger.info("Consuming queue %s with consumer tag %s", queue, tag)
        return stream

    @staticmethod
    def _close_channel(channel: Channel) -> None:
        try:
            if channel.is_open:
                channel.close()
        except AMQPError as e:
            logger.warning("Error closing channel: %s", e)

    def close(self) -> None:
        logger.info("Closing AmqpStormTransport channels...")
        with self._consumer_channels_lock:
            channels = list(self._consumer_channels)
            self._consumer_channels.clear()
        for channel in channels:
            self._close_channel(channel)
        with self._channel_lock:
            if self._channel is not None:
                self._close_channel(self._channel)
                self._channel = None
