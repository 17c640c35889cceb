"""
Inbound deliveries and the bounded stream that carries them.

The transport's consuming thread feeds a ``DeliveryStream``; a consumer
loop iterates it on its own thread.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional

from libs.python.rmq_dispatch.config import DEFAULT_PREFETCH_COUNT, RETRY_COUNT_HEADER

logger = logging.getLogger(__name__)

# Seconds between checks of the closed/cancelled flags while waiting
POLL_INTERVAL = 0.2


class Delivery:
    """
    One message received from the broker.

    ``ack`` may be called any number of times; only the first call is
    forwarded to the transport.
    """

    def __init__(
        self,
        body: bytes,
        headers: Optional[Mapping[str, Any]] = None,
        ack: Optional[Callable[[], None]] = None,
        routing_key: str = "",
        exchange: str = "",
        delivery_tag: Optional[int] = None,
    ) -> None:
        self.body = body
        self.headers: dict[str, Any] = dict(headers or {})
        self.routing_key = routing_key
        self.exchange = exchange
        self.delivery_tag = delivery_tag
        self._ack = ack
        self._ack_lock = threading.Lock()
        self._acknowledged = False

    @property
    def acknowledged(self) -> bool:
        return self._acknowledged

    def ack(self) -> None:
        with self._ack_lock:
            if self._acknowledged:
                logger.debug("Delivery %s already acknowledged", self.delivery_tag)
                return
            self._acknowledged = True
        if self._ack is not None:
            self._ack()

    def __repr__(self) -> str:
        return (
            f"Delivery(delivery_tag={self.delivery_tag!r}, exchange={self.exchange!r}, "
            f"routing_key={self.routing_key!r}, type={self.headers.get('type')!r})"
        )


@dataclass(frozen=True)
class DeliveryMetadata:
    """Delivery details handed to handlers alongside the decoded payload."""
    queue: str
    exchange: str
    routing_key: str
    delivery_tag: Optional[int]
    headers: dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0

    @classmethod
    def from_delivery(cls, queue_name: str, delivery: Delivery) -> "DeliveryMetadata":
        return cls(
            queue=queue_name,
            exchange=delivery.exchange,
            routing_key=delivery.routing_key,
            delivery_tag=delivery.delivery_tag,
            headers=dict(delivery.headers),
            retry_count=retry_count(delivery.headers),
        )


def retry_count(headers: Mapping[str, Any]) -> int:
    """Number of times a message has already been republished for retry."""
    try:
        return int(headers.get(RETRY_COUNT_HEADER, 0))
    except (TypeError, ValueError):
        return 0


class DeliveryStream:
    """
    Bounded, closable stream of deliveries.

    ``close`` ends the stream once buffered deliveries are drained;
    ``cancel`` ends it immediately and tells the transport to stop
    consuming. Deliveries left in the buffer after a cancel are never
    acknowledged, so the broker redelivers them.
    """

    def __init__(
        self,
        maxsize: int = DEFAULT_PREFETCH_COUNT,
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> None:
        self._buffer: queue.Queue[Delivery] = queue.Queue(maxsize=max(1, maxsize))
        self._closed = threading.Event()
        self._cancelled = threading.Event()
        self._on_cancel = on_cancel

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, delivery: Delivery) -> bool:
        """
        Add a delivery, blocking while the buffer is full.

        Returns:
            False if the stream was closed before the delivery fit
        """
        while not self._closed.is_set():
            try:
                self._buffer.put(delivery, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        logger.warning("Dropping %r: stream is closed", delivery)
        return False

    def close(self) -> None:
        self._closed.set()

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._closed.set()
        if self._on_cancel is not None:
            self._on_cancel()

    def __iter__(self) -> Iterator[Delivery]:
        while not self._cancelled.is_set():
            try:
                yield self._buffer.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if self._closed.is_set():
                    return
