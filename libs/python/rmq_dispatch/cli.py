"""
Command line tool for declaring topology and publishing typed messages.

Example:
    ```
    export RABBITMQ_HOST=localhost
    rmq-dispatch declare orders orders.created --routing-key created --delayed
    rmq-dispatch publish orders created --type app.events.OrderCreated --body '{"id": 1}'
    ```
"""

import json
import logging
from dataclasses import dataclass
from typing import Annotated, Optional

import typer

from libs.python.log_setup import setup_logging
from libs.python.rmq_dispatch.config import ExchangeKind, SubscriptionParams
from libs.python.rmq_dispatch.connection import (
    cleanup_rabbitmq_connections,
    get_transport,
    init_rabbitmq_from_config,
)
from libs.python.rmq_dispatch.errors import PublishError, TopologyError
from libs.python.rmq_dispatch.topology import TopologyBuilder

logger = logging.getLogger(__name__)

app = typer.Typer(help="Declare RabbitMQ topology and publish typed messages.")

# Type aliases for CLI parameters
RabbitMQHost = Annotated[str, typer.Option(envvar="RABBITMQ_HOST")]
RabbitMQPort = Annotated[int, typer.Option(envvar="RABBITMQ_PORT")]
RabbitMQUser = Annotated[Optional[str], typer.Option(envvar="RABBITMQ_USER")]
RabbitMQPassword = Annotated[Optional[str], typer.Option(envvar="RABBITMQ_PASSWORD")]
RabbitMQVHost = Annotated[str, typer.Option(envvar="RABBITMQ_VHOST")]
RabbitMQEnableSSL = Annotated[bool, typer.Option(envvar="RABBITMQ_ENABLE_SSL")]
RabbitMQSSLHostname = Annotated[Optional[str], typer.Option(envvar="RABBITMQ_SSL_HOSTNAME")]
LogLevel = Annotated[str, typer.Option(help="Logging level (DEBUG, INFO, WARNING, ERROR)")]
EnableOTLP = Annotated[bool, typer.Option("--log-otlp", help="Export logs and traces over OTLP")]


@dataclass
class RabbitMQContext:
    """Connection settings collected from the command line."""

    host: str
    port: int
    user: Optional[str] = None
    password: Optional[str] = None
    vhost: str = "/"
    enable_ssl: bool = False
    ssl_hostname: Optional[str] = None

    def to_config(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "username": self.user,
            "password": self.password,
            "vhost": self.vhost,
            "ssl_enabled": self.enable_ssl,
            "ssl_hostname": self.ssl_hostname,
        }


@app.callback()
def main(
    ctx: typer.Context,
    rabbitmq_host: RabbitMQHost = "localhost",
    rabbitmq_port: RabbitMQPort = 5672,
    rabbitmq_user: RabbitMQUser = "guest",
    rabbitmq_password: RabbitMQPassword = "guest",
    rabbitmq_vhost: RabbitMQVHost = "/",
    rabbitmq_enable_ssl: RabbitMQEnableSSL = False,
    rabbitmq_ssl_hostname: RabbitMQSSLHostname = None,
    log_level: LogLevel = "INFO",
    log_otlp: EnableOTLP = False,
) -> None:
    setup_logging(
        level=getattr(logging, log_level.upper(), logging.INFO),
        app_name="rmq-dispatch",
        app_type="job",
        enable_otel=log_otlp,
    )
    rabbitmq = RabbitMQContext(
        host=rabbitmq_host,
        port=rabbitmq_port,
        user=rabbitmq_user,
        password=rabbitmq_password,
        vhost=rabbitmq_vhost,
        enable_ssl=rabbitmq_enable_ssl,
        ssl_hostname=rabbitmq_ssl_hostname,
    )
    init_rabbitmq_from_config(rabbitmq.to_config())
    ctx.obj = {"rabbitmq": rabbitmq}


@app.command()
def declare(
    exchange: Annotated[str, typer.Argument(help="Exchange name")],
    queue: Annotated[str, typer.Argument(help="Queue name")],
    routing_key: Annotated[str, typer.Option(help="Binding routing key")] = "",
    kind: Annotated[ExchangeKind, typer.Option(help="Exchange type")] = ExchangeKind.DIRECT,
    delayed: Annotated[bool, typer.Option(help="Also declare the delayed retry exchange")] = False,
) -> None:
    """Declare an exchange and a queue, and bind them."""
    params = SubscriptionParams(
        exchange_name=exchange,
        exchange_kind=kind,
        queue_name=queue,
        routing_key=routing_key,
    )
    logger.debug("Declaring topology for %s", params)
    builder = TopologyBuilder.connect(get_transport)
    builder.declare_exchange(params).declare_queue(params).bind(params)
    if delayed:
        builder.declare_delayed_exchange(params)

    try:
        builder.build(publish_retry=None)
    except TopologyError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        cleanup_rabbitmq_connections()

    typer.echo(f"Declared exchange {exchange} and queue {queue}")


@app.command()
def publish(
    exchange: Annotated[str, typer.Argument(help="Exchange name")],
    routing_key: Annotated[str, typer.Argument(help="Routing key")],
    message_type: Annotated[str, typer.Option("--type", help="Declared-type identifier of the payload")],
    body: Annotated[str, typer.Option(help="JSON payload")] = "{}",
    delay_ms: Annotated[
        Optional[int],
        typer.Option(help="Publish through the delayed exchange; the routing key then names the target queue"),
    ] = None,
) -> None:
    """Publish a JSON message with a type header."""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: body is not valid JSON: {e}", err=True)
        raise typer.Exit(code=1)

    params = SubscriptionParams(exchange_name=exchange, routing_key=routing_key)
    try:
        broker = TopologyBuilder.connect(get_transport).build()
        broker.publish(params, payload, routing_key=routing_key, type_name=message_type, delay_ms=delay_ms)
    except (TopologyError, PublishError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    finally:
        cleanup_rabbitmq_connections()

    typer.echo(f"Published {message_type} to {exchange}")


if __name__ == "__main__":
    app()
