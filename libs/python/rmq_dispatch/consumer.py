"""
Per-queue consumer loop.

Each subscribed queue gets one thread that processes its deliveries strictly
in arrival order: dispatch, run the handler, then acknowledge or retry.
"""

import contextlib
import logging
import threading
from typing import Optional

from opentelemetry import trace

from libs.python.rmq_dispatch.config import TYPE_HEADER, SubscriptionParams
from libs.python.rmq_dispatch.controller import AckController
from libs.python.rmq_dispatch.delivery import Delivery, DeliveryMetadata, DeliveryStream
from libs.python.rmq_dispatch.dispatcher import DeliveryOutcome, Dispatcher, NoMatch

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ConsumerLoop:
    """
    Background consumer for one queue.

    The loop ends when the stream is closed by the transport or when
    ``stop`` is called.
    """

    def __init__(
        self,
        params: SubscriptionParams,
        stream: DeliveryStream,
        dispatcher: Dispatcher,
        controller: AckController,
    ) -> None:
        self.params = params
        self._stream = stream
        self._dispatcher = dispatcher
        self._controller = controller
        self._thread = threading.Thread(
            target=self._run,
            name=f"rmq-consumer-{params.queue_name}",
            daemon=True,
        )

    @property
    def queue_name(self) -> str:
        return self.params.queue_name

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()
        logger.info("Consumer loop started for queue %s", self.queue_name)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel consumption and wait for the in-flight delivery to finish."""
        logger.info("Stopping consumer loop for queue %s", self.queue_name)
        self._stream.cancel()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self) -> None:
        for delivery in self._stream:
            try:
                self.process_delivery(delivery)
            except Exception:
                logger.exception("Unexpected error processing %r on queue %s", delivery, self.queue_name)
                delivery.ack()
        logger.info("Consumer loop for queue %s finished", self.queue_name)

    def process_delivery(self, delivery: Delivery) -> DeliveryOutcome:
        """Run one delivery through dispatch, handler and ack/retry."""
        with self._span(delivery) as span:
            outcome = self._handle(delivery)
            action = self._controller.resolve(outcome, self.params)
            if span is not None:
                span.set_attribute("rmq_dispatch.outcome", str(outcome))
                span.set_attribute("rmq_dispatch.ack_action", str(action))
            self._controller.apply(action, delivery, self.params)
        return outcome

    def _handle(self, delivery: Delivery) -> DeliveryOutcome:
        result = self._dispatcher.dispatch(self.queue_name, delivery.headers, delivery.body)
        if isinstance(result, NoMatch):
            return result.reason

        entry = result.entry
        logger.info("Message received on queue %s: %s", self.queue_name, entry.type_name)
        try:
            entry.handler(result.payload, DeliveryMetadata.from_delivery(self.queue_name, delivery))
        except Exception as e:
            logger.error(
                "Handler for %s on queue %s failed with %s: %s",
                entry.type_name,
                self.queue_name,
                type(e).__name__,
                e,
            )
            return DeliveryOutcome.HANDLER_FAILED
        return DeliveryOutcome.HANDLER_SUCCEEDED

    def _span(self, delivery: Delivery):
        if not self.params.enabled_telemetry:
            return contextlib.nullcontext()
        return tracer.start_as_current_span(
            f"{self.queue_name} process",
            kind=trace.SpanKind.CONSUMER,
            attributes={
                "messaging.system": "rabbitmq",
                "messaging.destination.name": self.queue_name,
                "messaging.rabbitmq.destination.routing_key": delivery.routing_key,
                "rmq_dispatch.message_type": str(delivery.headers.get(TYPE_HEADER, "")),
            },
        )
