"""Tests for RabbitMQ connection initialization."""

import os
import ssl
from unittest.mock import Mock, patch

import pytest

from libs.python.rmq_dispatch import connection
from libs.python.rmq_dispatch.connection import (
    _GLOBALS,
    ConnectionSettings,
    cleanup_rabbitmq_connections,
    get_rabbitmq_connection,
    get_rabbitmq_ssl_options,
    get_transport,
    init_rabbitmq_from_config,
    resolve_vhost,
)
from libs.python.rmq_dispatch.transport import AmqpStormTransport

BASE_CONFIG = {
    "host": "localhost",
    "port": 5672,
    "username": "guest",
    "password": "guest",
}


@pytest.fixture(autouse=True)
def clean_globals():
    _GLOBALS.clear()
    yield
    _GLOBALS.clear()


@pytest.mark.parametrize(
    "vhost, suffix, expected",
    [
        ("/", "dev", "dev"),
        ("my-custom-vhost", "dev", "my-custom-vhost-dev"),
        ("my-custom-vhost", None, "my-custom-vhost"),
        ("/", None, "/"),
        (None, "dev", "dev"),
    ],
)
def test_init_rabbitmq_from_config_vhost(vhost, suffix, expected):
    """The suffix replaces the default vhost and is appended to custom ones."""
    config = dict(BASE_CONFIG)
    if vhost is not None:
        config["vhost"] = vhost

    init_rabbitmq_from_config(config, vhost_suffix=suffix)

    assert _GLOBALS["rmq_settings"].virtual_host == expected


def test_resolve_vhost_empty_suffix():
    assert resolve_vhost("orders", "") == "orders"


def test_missing_credentials_default_to_guest():
    init_rabbitmq_from_config({"host": "rabbit"})

    assert _GLOBALS["rmq_settings"] == ConnectionSettings(host="rabbit")
    assert _GLOBALS["rmq_settings"].ssl_enabled is False


def test_ssl_requires_hostname():
    with pytest.raises(RuntimeError):
        get_rabbitmq_ssl_options("")


def test_ssl_hostname_defaults_to_host():
    init_rabbitmq_from_config({**BASE_CONFIG, "ssl_enabled": True})

    assert _GLOBALS["rmq_settings"].ssl_hostname == "localhost"


def test_ssl_connection_gets_fresh_context():
    init_rabbitmq_from_config({**BASE_CONFIG, "ssl_enabled": True, "ssl_hostname": "rabbit.example.com"})
    mock_connection = Mock()
    mock_connection.is_open = True

    with patch.object(connection.amqpstorm, "Connection", return_value=mock_connection) as factory:
        get_rabbitmq_connection()

    kwargs = factory.call_args.kwargs
    assert kwargs["ssl"] is True
    assert kwargs["ssl_options"]["server_hostname"] == "rabbit.example.com"
    assert isinstance(kwargs["ssl_options"]["context"], ssl.SSLContext)


def test_connection_requires_init():
    with pytest.raises(RuntimeError):
        get_rabbitmq_connection()


def test_connection_is_reused_per_process():
    init_rabbitmq_from_config(BASE_CONFIG)
    mock_connection = Mock()
    mock_connection.is_open = True

    with patch.object(connection.amqpstorm, "Connection", return_value=mock_connection) as factory:
        first = get_rabbitmq_connection()
        second = get_rabbitmq_connection()

    assert first is second is mock_connection
    factory.assert_called_once_with(
        hostname="localhost",
        port=5672,
        username="guest",
        password="guest",
        virtual_host="/",
        ssl=False,
        ssl_options=None,
    )


def test_closed_connection_is_replaced():
    init_rabbitmq_from_config(BASE_CONFIG)
    stale, fresh = Mock(), Mock()
    stale.is_open = False
    fresh.is_open = True
    _GLOBALS[f"rmq_connection_{os.getpid()}"] = stale

    with patch.object(connection.amqpstorm, "Connection", return_value=fresh):
        assert get_rabbitmq_connection() is fresh


def test_get_transport_and_cleanup():
    init_rabbitmq_from_config(BASE_CONFIG)
    mock_connection = Mock()
    mock_connection.is_open = True

    with patch.object(connection.amqpstorm, "Connection", return_value=mock_connection):
        transport = get_transport()

    assert isinstance(transport, AmqpStormTransport)

    cleanup_rabbitmq_connections()

    mock_connection.close.assert_called_once()
    assert f"rmq_connection_{os.getpid()}" not in _GLOBALS
