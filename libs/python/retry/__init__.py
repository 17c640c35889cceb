"""
Retry utilities for handling transient failures.

Decorators and helpers for retrying broker operations that may fail because
of dropped connections or closed channels.
"""

from libs.python.retry.retry import (
    RetryConfig,
    backoff_delay,
    call_with_retry,
    is_transient_rmq_error,
    retry,
)

__all__ = [
    "RetryConfig",
    "backoff_delay",
    "call_with_retry",
    "is_transient_rmq_error",
    "retry",
]
