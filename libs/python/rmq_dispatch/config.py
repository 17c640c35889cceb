"""
RabbitMQ dispatch configuration.

This module provides exchange kinds, subscription parameters and the
header names shared by the publisher and the consumer side.
"""

from dataclasses import dataclass
from enum import StrEnum

TYPE_HEADER = "type"
DELAY_HEADER = "x-delay"
RETRY_COUNT_HEADER = "x-retry-count"

DELAYED_EXCHANGE_SUFFIX = ".delayed"
DELAYED_MESSAGE_EXCHANGE_TYPE = "x-delayed-message"

DEFAULT_RETRY_DELAY_MS = 5000
DEFAULT_PREFETCH_COUNT = 1


class ExchangeKind(StrEnum):
    """Exchange types understood by the topology builder."""
    DIRECT = "direct"
    FANOUT = "fanout"
    TOPIC = "topic"
    HEADERS = "headers"
    # Requires the rabbitmq_delayed_message_exchange plugin
    DELAY = "delay"


@dataclass(frozen=True)
class SubscriptionParams:
    """
    Identifies one consumption context.

    Attributes:
        exchange_name: Exchange the queue is bound to
        exchange_kind: Type of that exchange
        queue_name: Queue to consume from
        routing_key: Binding key, also used as the consumer tag
        retryable: Republish failed deliveries through the delayed exchange
        enabled_telemetry: Wrap each delivery in an OpenTelemetry span
        retry_delay_ms: Delay requested from the delayed exchange on retry
    """
    exchange_name: str
    exchange_kind: ExchangeKind = ExchangeKind.DIRECT
    queue_name: str = ""
    routing_key: str = ""
    retryable: bool = False
    enabled_telemetry: bool = False
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS


def delayed_exchange_name(params: SubscriptionParams) -> str:
    """
    Name of the delayed exchange paired with a subscription's exchange.

    Examples:
        >>> delayed_exchange_name(SubscriptionParams(exchange_name="orders"))
        'orders.delayed'
    """
    return f"{params.exchange_name}{DELAYED_EXCHANGE_SUFFIX}"


def broker_exchange_type(kind: ExchangeKind) -> tuple[str, dict]:
    """
    Map an exchange kind to the broker-side type and declare arguments.

    A plain ``delay`` exchange routes like a direct exchange once the
    delay has elapsed.
    """
    if kind == ExchangeKind.DELAY:
        return DELAYED_MESSAGE_EXCHANGE_TYPE, {"x-delayed-type": str(ExchangeKind.DIRECT)}
    return str(kind), {}
