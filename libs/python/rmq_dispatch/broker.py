"""
The dispatch engine.

``MessageBroker`` owns the handler registry, starts one consumer loop per
subscribed queue and publishes typed messages.
"""

import logging
import threading
from typing import Any, Mapping, Optional

from libs.python.retry import RetryConfig, call_with_retry, is_transient_rmq_error
from libs.python.rmq_dispatch.codec import encode_payload, type_identifier
from libs.python.rmq_dispatch.config import (
    DEFAULT_PREFETCH_COUNT,
    DELAY_HEADER,
    RETRY_COUNT_HEADER,
    TYPE_HEADER,
    SubscriptionParams,
    delayed_exchange_name,
)
from libs.python.rmq_dispatch.consumer import ConsumerLoop
from libs.python.rmq_dispatch.controller import AckController
from libs.python.rmq_dispatch.delivery import Delivery, retry_count
from libs.python.rmq_dispatch.dispatcher import Dispatcher
from libs.python.rmq_dispatch.errors import PublishError, SubscriptionError
from libs.python.rmq_dispatch.interface import Transport
from libs.python.rmq_dispatch.registry import Decoder, Handler, HandlerRegistry, RegistryEntry

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_RETRY = RetryConfig(
    max_attempts=3,
    initial_delay=0.5,
    max_delay=5.0,
    exception_filter=is_transient_rmq_error,
)


class MessageBroker:
    """
    Registers handlers, consumes queues and publishes messages.

    Normally obtained from ``TopologyBuilder.build()``.
    """

    def __init__(
        self,
        transport: Transport,
        registry: Optional[HandlerRegistry] = None,
        publish_retry: Optional[RetryConfig] = DEFAULT_PUBLISH_RETRY,
        declared_exchanges: Optional[set[str]] = None,
    ) -> None:
        """
        Args:
            transport: Broker transport
            registry: Handler registry (a new one by default)
            publish_retry: Retry applied to publishes; None disables retry
            declared_exchanges: Exchanges declared by the topology builder
        """
        self._transport = transport
        self._registry = registry or HandlerRegistry()
        self._dispatcher = Dispatcher(self._registry)
        self._controller = AckController(self._republish_for_retry)
        self._publish_retry = publish_retry
        self._declared_exchanges = set(declared_exchanges or ())
        self._consumers: dict[str, ConsumerLoop] = {}
        self._starting: set[str] = set()
        self._consumers_lock = threading.Lock()

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def consumers(self) -> dict[str, ConsumerLoop]:
        with self._consumers_lock:
            return dict(self._consumers)

    def add_dispatcher(
        self,
        queue: str,
        handler: Handler,
        template: Any,
        *,
        type_name: Optional[str] = None,
        decoder: Optional[Decoder] = None,
    ) -> RegistryEntry:
        """
        Register ``handler`` for messages of ``template``'s type on ``queue``.

        Each time a message arrives on the queue, the handlers registered for
        it are checked in order and the first one whose type matches the
        message's ``type`` header and whose decoder accepts the body runs.

        Raises:
            InvalidArgumentError: Empty queue, missing template or handler
        """
        return self._registry.register(queue, handler, template, type_name=type_name, decoder=decoder)

    def subscribe(
        self,
        params: SubscriptionParams,
        *,
        prefetch_count: int = DEFAULT_PREFETCH_COUNT,
    ) -> ConsumerLoop:
        """
        Start consuming ``params.queue_name`` on a background thread.

        Returns:
            Handle of the started consumer loop

        Raises:
            SubscriptionError: Queue already consumed by this broker, or the
                transport could not start consuming
        """
        queue = params.queue_name
        with self._consumers_lock:
            existing = self._consumers.get(queue)
            if queue in self._starting or (existing is not None and existing.is_running):
                raise SubscriptionError(f"queue {queue} is already consumed by this broker")
            self._starting.add(queue)

        try:
            if not self._registry.entries(queue):
                logger.warning("Subscribing to queue %s before any handler was registered", queue)
            if params.retryable and self._declared_exchanges and (
                delayed_exchange_name(params) not in self._declared_exchanges
            ):
                logger.warning(
                    "Queue %s is retryable but delayed exchange %s was not declared",
                    queue,
                    delayed_exchange_name(params),
                )

            try:
                stream = self._transport.consume(
                    queue,
                    consumer_tag=params.routing_key,
                    prefetch_count=prefetch_count,
                )
            except Exception as e:
                logger.error("Failed to consume queue %s: %s", queue, e)
                raise SubscriptionError(f"failure to consume queue {queue}: {e}") from e

            loop = ConsumerLoop(params, stream, self._dispatcher, self._controller)
            with self._consumers_lock:
                self._consumers[queue] = loop
            loop.start()
            return loop
        finally:
            with self._consumers_lock:
                self._starting.discard(queue)

    def publish(
        self,
        params: SubscriptionParams,
        payload: Any,
        *,
        routing_key: Optional[str] = None,
        type_name: Optional[str] = None,
        headers: Optional[Mapping[str, Any]] = None,
        delay_ms: Optional[int] = None,
    ) -> None:
        """
        Publish a payload to ``params.exchange_name``.

        The body is the JSON encoding of ``payload`` and the ``type`` header
        is its declared-type identifier. With ``delay_ms`` the message goes
        through the delayed exchange instead, which routes by queue name: the
        routing key defaults to ``params.queue_name`` there.

        Raises:
            PublishError: The transport failed after retries
        """
        message_headers = dict(headers or {})
        message_headers[TYPE_HEADER] = type_name or type_identifier(payload)
        exchange = params.exchange_name
        default_key = params.routing_key
        if delay_ms is not None:
            message_headers[DELAY_HEADER] = delay_ms
            exchange = delayed_exchange_name(params)
            default_key = params.queue_name

        body = encode_payload(payload)
        key = default_key if routing_key is None else routing_key
        self._publish(exchange, key, body, message_headers)

    def _publish(self, exchange: str, routing_key: str, body: bytes, headers: dict) -> None:
        try:
            call_with_retry(self._publish_retry, self._transport.publish, exchange, routing_key, body, headers)
        except Exception as e:
            logger.error("Failed to publish to exchange %s with routing key %s: %s", exchange, routing_key, e)
            raise PublishError(f"failure to publish to exchange {exchange}: {e}") from e
        logger.debug("Message published to exchange %s with routing key %s", exchange, routing_key)

    def _republish_for_retry(self, delivery: Delivery, params: SubscriptionParams) -> None:
        headers = dict(delivery.headers)
        headers[RETRY_COUNT_HEADER] = retry_count(delivery.headers) + 1
        headers[DELAY_HEADER] = params.retry_delay_ms
        self._publish(delayed_exchange_name(params), params.queue_name, delivery.body, headers)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop every consumer loop and release the transport."""
        logger.info("Shutting down MessageBroker...")
        with self._consumers_lock:
            consumers = list(self._consumers.values())
            self._consumers.clear()
        for loop in consumers:
            try:
                loop.stop(timeout)
            except Exception as e:
                logger.exception("Error stopping consumer for queue %s: %s", loop.queue_name, e)
        try:
            self._transport.close()
        except Exception as e:
            logger.exception("Error closing transport: %s", e)

    def __enter__(self) -> "MessageBroker":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
