"""
Retry with exponential backoff.

Used to ride out transient broker failures (dropped connections, closed
channels) when publishing.
"""

import logging
import random
import socket
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Optional, Tuple, Type, TypeVar

from amqpstorm.exception import AMQPChannelError, AMQPConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    """Maximum number of attempts, including the first one"""

    initial_delay: float = 1.0
    """Delay in seconds before the first retry"""

    max_delay: float = 60.0
    """Upper bound for any single delay"""

    exponential_base: float = 2.0

    jitter: bool = True
    """Randomize each delay by +/- jitter_factor"""

    jitter_factor: float = 0.1

    exceptions: Tuple[Type[Exception], ...] = (Exception,)
    """Exception types eligible for retry"""

    exception_filter: Optional[Callable[[Exception], bool]] = None
    """Further narrows which exceptions are retried"""


def backoff_delay(config: RetryConfig, attempt: int) -> float:
    """
    Delay before retrying after the given (0-indexed) failed attempt.

    Examples:
        >>> backoff_delay(RetryConfig(initial_delay=1.0, jitter=False), 2)
        4.0
    """
    delay = min(config.initial_delay * (config.exponential_base ** attempt), config.max_delay)
    if config.jitter:
        spread = delay * config.jitter_factor
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


def is_retryable(config: RetryConfig, exception: Exception) -> bool:
    if not isinstance(exception, config.exceptions):
        return False
    if config.exception_filter is not None:
        return config.exception_filter(exception)
    return True


def retry(config: Optional[RetryConfig] = None) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator retrying a function with exponential backoff.

    The last exception is re-raised once attempts are exhausted or when it
    does not qualify for retry.

    Example:
        @retry(RetryConfig(max_attempts=5, exception_filter=is_transient_rmq_error))
        def send():
            channel.basic.publish(body=b"{}", routing_key="orders")
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = getattr(func, "__name__", repr(func))

        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable(config, e):
                        logger.debug("%s is not retryable, giving up", type(e).__name__)
                        raise
                    if attempt + 1 >= config.max_attempts:
                        logger.warning(
                            "Max retry attempts (%d) reached for %s",
                            config.max_attempts,
                            name,
                        )
                        raise
                    delay = backoff_delay(config, attempt)
                    logger.warning(
                        "Attempt %d/%d failed for %s with %s: %s. Retrying in %.2fs...",
                        attempt + 1,
                        config.max_attempts,
                        name,
                        type(e).__name__,
                        e,
                        delay,
                    )
                    time.sleep(delay)
                    attempt += 1

        return wrapper
    return decorator


def call_with_retry(config: Optional[RetryConfig], func: Callable[..., T], *args, **kwargs) -> T:
    """Call ``func`` once, or under ``retry(config)`` when a config is given."""
    if config is None:
        return func(*args, **kwargs)
    return retry(config)(func)(*args, **kwargs)


def is_transient_rmq_error(exception: Exception) -> bool:
    """
    Whether a RabbitMQ failure is worth retrying.

    Connection and channel errors from amqpstorm, dropped connections and
    socket timeouts are treated as transient. Other OS errors are not.
    """
    return isinstance(exception, (AMQPConnectionError, AMQPChannelError, ConnectionError, socket.timeout))
