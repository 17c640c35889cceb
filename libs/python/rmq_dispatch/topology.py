"""
Fluent declaration of exchanges, queues and bindings.

Each step performs one idempotent broker call. The first failure is kept
and every later step becomes a no-op until ``build`` raises it.
"""

import logging
from typing import Callable, Optional

from libs.python.retry import RetryConfig
from libs.python.rmq_dispatch.broker import DEFAULT_PUBLISH_RETRY, MessageBroker
from libs.python.rmq_dispatch.config import ExchangeKind, SubscriptionParams, delayed_exchange_name
from libs.python.rmq_dispatch.errors import TopologyError
from libs.python.rmq_dispatch.interface import Transport

logger = logging.getLogger(__name__)


class TopologyBuilder:
    """
    Builder for broker topology and the ``MessageBroker`` using it.

    Example:
        broker = (
            TopologyBuilder(transport)
            .declare_exchange(params)
            .declare_queue(params)
            .bind(params)
            .declare_delayed_exchange(params)
            .build()
        )
    """

    def __init__(self, transport: Optional[Transport], error: Optional[TopologyError] = None) -> None:
        self._transport = transport
        self._error = error
        self._declared_exchanges: set[str] = set()

    @classmethod
    def connect(cls, transport_factory: Callable[[], Transport]) -> "TopologyBuilder":
        """
        Create a builder from a transport factory.

        A connection failure does not raise here; it becomes the builder's
        stored error and is raised by ``build``.
        """
        try:
            transport = transport_factory()
        except Exception as e:
            logger.error("Failure to connect to the broker: %s", e)
            error = TopologyError("connect to the broker", e)
            error.__cause__ = e
            return cls(None, error)
        return cls(transport)

    @property
    def error(self) -> Optional[TopologyError]:
        return self._error

    def _step(self, operation: str, call: Callable[[], object]) -> "TopologyBuilder":
        if self._error is not None:
            logger.debug("Skipping %s after earlier failure", operation)
            return self
        try:
            call()
        except Exception as e:
            logger.error("Failure to %s: %s", operation, e)
            self._error = TopologyError(operation, e)
            self._error.__cause__ = e
        return self

    def declare_exchange(self, params: SubscriptionParams) -> "TopologyBuilder":
        """Declare a durable exchange named ``params.exchange_name``."""
        def _declare():
            self._transport.declare_exchange(
                params.exchange_name,
                params.exchange_kind,
                durable=True,
                auto_delete=False,
            )
            self._declared_exchanges.add(params.exchange_name)
            logger.info("Exchange declared: %s (%s)", params.exchange_name, params.exchange_kind)

        return self._step(f"declare exchange {params.exchange_name}", _declare)

    def declare_queue(self, params: SubscriptionParams) -> "TopologyBuilder":
        """Declare a durable, non-exclusive queue named ``params.queue_name``."""
        def _declare():
            name = self._transport.declare_queue(
                params.queue_name,
                durable=True,
                exclusive=False,
                auto_delete=False,
            )
            logger.info("Queue declared: %s", name)

        return self._step(f"declare queue {params.queue_name}", _declare)

    def bind(self, params: SubscriptionParams) -> "TopologyBuilder":
        """Bind the queue to the exchange with ``params.routing_key``."""
        def _bind():
            self._transport.bind(params.queue_name, params.routing_key, params.exchange_name)
            logger.info(
                "Queue %s bound to exchange %s with routing key '%s'",
                params.queue_name,
                params.exchange_name,
                params.routing_key,
            )

        return self._step(f"bind queue {params.queue_name}", _bind)

    def declare_delayed_exchange(self, params: SubscriptionParams) -> "TopologyBuilder":
        """
        Declare the delayed exchange used for retries and bind the queue to it.

        Failed deliveries of a retryable subscription are republished here
        and routed back to the queue once their ``x-delay`` has elapsed.
        The exchange routes directly and each queue is bound under its own
        name, so a retry never reaches the other queues of the exchange.
        """
        name = delayed_exchange_name(params)

        def _declare():
            self._transport.declare_exchange(
                name,
                ExchangeKind.DELAY,
                durable=True,
                auto_delete=False,
                arguments={"x-delayed-type": str(ExchangeKind.DIRECT)},
            )
            self._transport.bind(params.queue_name, params.queue_name, name)
            self._declared_exchanges.add(name)
            logger.info("Delayed exchange %s declared for queue %s", name, params.queue_name)

        return self._step(f"declare delayed exchange {name}", _declare)

    def build(self, publish_retry: Optional[RetryConfig] = DEFAULT_PUBLISH_RETRY) -> MessageBroker:
        """
        Raises:
            TopologyError: The first failure of the chain
        """
        if self._error is not None:
            raise self._error
        return MessageBroker(
            self._transport,
            publish_retry=publish_retry,
            declared_exchanges=self._declared_exchanges,
        )
