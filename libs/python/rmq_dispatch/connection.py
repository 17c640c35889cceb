"""
RabbitMQ connection management.

Connection settings are stored once per process; each process (including
forked workers) lazily opens its own connection with a fresh SSL context.
"""

import logging
import os
import ssl
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import amqpstorm
from amqpstorm.exception import AMQPConnectionError, AMQPError

from libs.python.rmq_dispatch.transport import AmqpStormTransport

logger = logging.getLogger(__name__)

DEFAULT_VHOST = "/"
DEFAULT_PORT = 5672

_GLOBALS: dict[str, Any] = {}
_connection_lock = threading.Lock()


@dataclass(frozen=True)
class ConnectionSettings:
    """
    Where and how to reach the broker.

    ``ssl_hostname`` enables TLS; the SSL context itself is created per
    connection since it must not be shared across forked processes.
    """
    host: str
    port: int = DEFAULT_PORT
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = DEFAULT_VHOST
    ssl_hostname: Optional[str] = None

    @property
    def ssl_enabled(self) -> bool:
        return self.ssl_hostname is not None

    def connect(self) -> amqpstorm.Connection:
        ssl_options = get_rabbitmq_ssl_options(self.ssl_hostname) if self.ssl_enabled else None
        return amqpstorm.Connection(
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            virtual_host=self.virtual_host,
            ssl=self.ssl_enabled,
            ssl_options=ssl_options,
        )


def _connection_key() -> str:
    return f"rmq_connection_{os.getpid()}"


def init_rabbitmq(settings: ConnectionSettings) -> None:
    """Store connection settings for later use by ``get_rabbitmq_connection``."""
    _GLOBALS["rmq_settings"] = settings
    logger.info(
        "RabbitMQ settings stored for %s:%s%s (ssl=%s)",
        settings.host,
        settings.port,
        settings.virtual_host,
        settings.ssl_enabled,
    )


def resolve_vhost(vhost: Optional[str], vhost_suffix: Optional[str]) -> str:
    """
    Apply an environment suffix to a virtual host.

    Examples:
        >>> resolve_vhost("/", "dev")
        'dev'
        >>> resolve_vhost("orders", "dev")
        'orders-dev'
        >>> resolve_vhost(None, None)
        '/'
    """
    vhost = vhost or DEFAULT_VHOST
    if not vhost_suffix:
        return vhost
    if vhost == DEFAULT_VHOST:
        return vhost_suffix
    return f"{vhost}-{vhost_suffix}"


def init_rabbitmq_from_config(config: Mapping[str, Any], vhost_suffix: Optional[str] = None) -> None:
    """
    Store connection settings from a config mapping.

    Recognized keys: host, port, username, password, vhost, ssl_enabled,
    ssl_hostname. With SSL enabled the hostname defaults to the host.

    Args:
        config: Connection settings
        vhost_suffix: Optional environment suffix, see ``resolve_vhost``
    """
    ssl_hostname = None
    if config.get("ssl_enabled"):
        ssl_hostname = config.get("ssl_hostname") or config["host"]

    init_rabbitmq(
        ConnectionSettings(
            host=config["host"],
            port=int(config.get("port") or DEFAULT_PORT),
            username=config.get("username") or "guest",
            password=config.get("password") or "guest",
            virtual_host=resolve_vhost(config.get("vhost"), vhost_suffix),
            ssl_hostname=ssl_hostname,
        )
    )


def get_rabbitmq_ssl_options(hostname: Optional[str]) -> dict:
    """
    Create SSL options for a RabbitMQ connection.

    Raises:
        RuntimeError: If hostname is empty or None
    """
    if not hostname:
        raise RuntimeError(
            "SSL is enabled but no hostname provided. "
            "Please set RABBITMQ_SSL_HOSTNAME"
        )
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.load_default_certs(purpose=ssl.Purpose.SERVER_AUTH)
    return {
        "context": context,
        "server_hostname": hostname,
    }


def get_rabbitmq_connection() -> amqpstorm.Connection:
    """
    Connection of the current process, reopened if the broker dropped it.

    Raises:
        RuntimeError: If init_rabbitmq() has not been called
    """
    with _connection_lock:
        connection = _GLOBALS.get(_connection_key())
        if connection is not None and connection.is_open:
            return connection
        if connection is not None:
            logger.warning("RabbitMQ connection is closed, reconnecting")

        settings: Optional[ConnectionSettings] = _GLOBALS.get("rmq_settings")
        if settings is None:
            raise RuntimeError("RabbitMQ settings not defined - init_rabbitmq() must be called first")

        try:
            connection = settings.connect()
        except AMQPConnectionError as e:
            logger.error("Failed to connect to RabbitMQ at %s:%s: %s", settings.host, settings.port, e)
            raise

        _GLOBALS[_connection_key()] = connection
        logger.info("RabbitMQ connection established for process %d", os.getpid())
        return connection


def get_transport() -> AmqpStormTransport:
    """Transport over the current process's connection."""
    return AmqpStormTransport(get_rabbitmq_connection())


def cleanup_rabbitmq_connections() -> None:
    """Close the current process's connection, if any."""
    with _connection_lock:
        connection = _GLOBALS.pop(_connection_key(), None)
        if connection is None:
            return
        try:
            if connection.is_open:
                connection.close()
                logger.info("RabbitMQ connection closed for process %d", os.getpid())
        except AMQPError as e:
            logger.warning("Error closing RabbitMQ connection: %s", e)
