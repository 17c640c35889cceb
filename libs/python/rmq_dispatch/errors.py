"""Exceptions raised by the dispatch engine."""

from typing import Optional


class RmqDispatchError(Exception):
    """Base class for all rmq_dispatch errors."""


class InvalidArgumentError(RmqDispatchError, ValueError):
    """Raised when a handler registration is malformed."""


class TopologyError(RmqDispatchError):
    """
    Raised by ``TopologyBuilder.build`` when a declare or bind call failed.

    Attributes:
        operation: The builder step that failed (e.g. "declare exchange")
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        message = f"failure to {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SubscriptionError(RmqDispatchError):
    """Raised when consumption of a queue cannot start."""


class PublishError(RmqDispatchError):
    """Raised when a message could not be published."""
