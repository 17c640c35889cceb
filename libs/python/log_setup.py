"""
Logging configuration for services built on rmq_dispatch.

Sets up console logging with app metadata in the format and, optionally,
OpenTelemetry export of logs and of the spans emitted by consumer loops.
"""

import logging
import os
import sys
from typing import Optional

from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import set_tracer_provider

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("amqpstorm",)


def setup_logging(
    level: int = logging.INFO,
    app_name: Optional[str] = None,
    app_type: Optional[str] = None,
    domain: Optional[str] = None,
    app_env: Optional[str] = None,
    force_setup: bool = False,
    enable_otel: bool = False,
    enable_console: bool = True,
    otel_endpoint: Optional[str] = None,
) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Logging level (default: INFO)
        app_name: Application name
        app_type: Application type (e.g. 'worker', 'job')
        domain: Domain/category for the app
        app_env: Environment (e.g. 'dev', 'prod'); read from APP_ENV if omitted
        force_setup: Replace handlers even if logging is already configured
        enable_otel: Export logs and traces over OTLP
        enable_console: Log to stdout
        otel_endpoint: OTLP collector endpoint (defaults to OTEL_* env vars)
    """
    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        root_logger.setLevel(level)
        return

    if force_setup:
        root_logger.handlers.clear()

    if app_env is None:
        app_env = os.getenv("APP_ENV")

    if enable_otel:
        resource = _otel_resource(app_name, app_type, domain, app_env)
        _setup_otel_logging(resource, otel_endpoint)
        _setup_otel_tracing(resource, otel_endpoint)

    if enable_console:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(create_formatter(app_name, app_type, domain, app_env))
        root_logger.addHandler(handler)

    root_logger.setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_formatter(
    app_name: Optional[str] = None,
    app_type: Optional[str] = None,
    domain: Optional[str] = None,
    app_env: Optional[str] = None,
) -> logging.Formatter:
    """
    Formatter prefixing records with the available app metadata.

    Examples:
        >>> create_formatter("orders", None, "shop", "dev")._fmt
        '%(asctime)s - [shop/orders/dev] %(name)s - %(levelname)s - %(message)s'
    """
    context_parts = [part for part in (domain, app_name, app_type, app_env) if part]
    context_prefix = f"[{'/'.join(context_parts)}] " if context_parts else ""
    return logging.Formatter(
        f"%(asctime)s - {context_prefix}%(name)s - %(levelname)s - %(message)s"
    )


def _otel_resource(
    app_name: Optional[str],
    app_type: Optional[str],
    domain: Optional[str],
    app_env: Optional[str],
) -> Resource:
    attributes = {"service.instance.id": os.uname().nodename}

    if domain and app_name:
        attributes["service.name"] = f"{domain}-{app_name}"
    elif app_name or domain:
        attributes["service.name"] = app_name or domain

    if app_type:
        attributes["service.type"] = app_type
    if domain:
        attributes["service.domain"] = domain
    if app_env:
        attributes["deployment.environment"] = app_env

    return Resource.create(attributes)


def _setup_otel_logging(resource: Resource, otel_endpoint: Optional[str]) -> None:
    logger_provider = LoggerProvider(resource=resource)
    set_logger_provider(logger_provider)

    exporter = OTLPLogExporter(
        endpoint=otel_endpoint or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT"),
        insecure=True,
    )
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))

    handler = LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
    logging.getLogger().addHandler(handler)


def _setup_otel_tracing(resource: Resource, otel_endpoint: Optional[str]) -> None:
    tracer_provider = TracerProvider(resource=resource)
    set_tracer_provider(tracer_provider)

    endpoint = (
        otel_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
