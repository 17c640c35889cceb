"""
RabbitMQ topology builder and typed message dispatch.

This package provides:
- A fluent topology builder for exchanges, queues, bindings and the delayed
  retry exchange
- A handler registry routing deliveries by their ``type`` header
- Per-queue consumer loops with acknowledge / retry handling
- An AMQPStorm transport and per-process connection management
"""

from libs.python.rmq_dispatch.broker import MessageBroker
from libs.python.rmq_dispatch.codec import decode_payload, encode_payload, type_identifier
from libs.python.rmq_dispatch.config import (
    DELAY_HEADER,
    RETRY_COUNT_HEADER,
    TYPE_HEADER,
    ExchangeKind,
    SubscriptionParams,
    delayed_exchange_name,
)
from libs.python.rmq_dispatch.connection import (
    ConnectionSettings,
    cleanup_rabbitmq_connections,
    get_rabbitmq_connection,
    get_rabbitmq_ssl_options,
    get_transport,
    init_rabbitmq,
    init_rabbitmq_from_config,
)
from libs.python.rmq_dispatch.consumer import ConsumerLoop
from libs.python.rmq_dispatch.controller import AckAction, AckController
from libs.python.rmq_dispatch.delivery import Delivery, DeliveryMetadata, DeliveryStream
from libs.python.rmq_dispatch.dispatcher import DeliveryOutcome, Dispatcher, Match, NoMatch
from libs.python.rmq_dispatch.errors import (
    InvalidArgumentError,
    PublishError,
    RmqDispatchError,
    SubscriptionError,
    TopologyError,
)
from libs.python.rmq_dispatch.interface import Transport
from libs.python.rmq_dispatch.registry import HandlerRegistry, RegistryEntry
from libs.python.rmq_dispatch.topology import TopologyBuilder
from libs.python.rmq_dispatch.transport import AmqpStormTransport

__all__ = [
    # Config
    "DELAY_HEADER",
    "RETRY_COUNT_HEADER",
    "TYPE_HEADER",
    "ExchangeKind",
    "SubscriptionParams",
    "delayed_exchange_name",
    # Connection
    "ConnectionSettings",
    "cleanup_rabbitmq_connections",
    "get_rabbitmq_connection",
    "get_rabbitmq_ssl_options",
    "get_transport",
    "init_rabbitmq",
    "init_rabbitmq_from_config",
    # Engine
    "MessageBroker",
    "TopologyBuilder",
    "ConsumerLoop",
    "AckAction",
    "AckController",
    "Dispatcher",
    "DeliveryOutcome",
    "Match",
    "NoMatch",
    "HandlerRegistry",
    "RegistryEntry",
    # Messages
    "Delivery",
    "DeliveryMetadata",
    "DeliveryStream",
    "decode_payload",
    "encode_payload",
    "type_identifier",
    # Transport
    "Transport",
    "AmqpStormTransport",
    # Errors
    "RmqDispatchError",
    "InvalidArgumentError",
    "TopologyError",
    "SubscriptionError",
    "PublishError",
]
