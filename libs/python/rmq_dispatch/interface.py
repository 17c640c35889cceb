"""Abstract broker transport used by the topology builder and the engine."""

import abc
from typing import Any, Mapping, Optional

from libs.python.rmq_dispatch.config import DEFAULT_PREFETCH_COUNT, ExchangeKind
from libs.python.rmq_dispatch.delivery import DeliveryStream


class Transport(abc.ABC):
    """Abstract interface for the broker operations the engine relies on."""

    @abc.abstractmethod
    def declare_exchange(
        self,
        name: str,
        kind: ExchangeKind,
        durable: bool = True,
        auto_delete: bool = False,
        arguments: Optional[dict] = None,
    ) -> None:
        """Idempotently declare an exchange."""
        pass

    @abc.abstractmethod
    def declare_queue(
        self,
        name: str,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
        arguments: Optional[dict] = None,
    ) -> str:
        """
        Idempotently declare a queue.

        Returns:
            The queue name reported by the broker
        """
        pass

    @abc.abstractmethod
    def bind(
        self,
        queue: str,
        routing_key: str,
        exchange: str,
        arguments: Optional[dict] = None,
    ) -> None:
        """Bind a queue to an exchange."""
        pass

    @abc.abstractmethod
    def consume(
        self,
        queue: str,
        consumer_tag: str = "",
        prefetch_count: int = DEFAULT_PREFETCH_COUNT,
    ) -> DeliveryStream:
        """
        Start consuming a queue with explicit acknowledgements.

        Returns:
            Stream of deliveries, closed when the broker stops delivering
        """
        pass

    @abc.abstractmethod
    def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Publish a message."""
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """Release channels owned by the transport."""
        pass
