"""Selects the registry entry and decoded payload for an inbound delivery."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Mapping, Union

from libs.python.rmq_dispatch.codec import try_resolve
from libs.python.rmq_dispatch.config import TYPE_HEADER
from libs.python.rmq_dispatch.registry import HandlerRegistry, RegistryEntry


class DeliveryOutcome(StrEnum):
    """Terminal outcome of processing one delivery."""
    MISSING_TYPE_HEADER = "missing_type_header"
    NO_HANDLER_FOR_QUEUE = "no_handler_for_queue"
    TYPE_COERCION_FAILED = "type_coercion_failed"
    HANDLER_SUCCEEDED = "handler_succeeded"
    HANDLER_FAILED = "handler_failed"


@dataclass(frozen=True)
class Match:
    entry: RegistryEntry
    payload: Any


@dataclass(frozen=True)
class NoMatch:
    reason: DeliveryOutcome
    type_name: Any = None


DispatchResult = Union[Match, NoMatch]


class Dispatcher:
    """Resolves deliveries against a ``HandlerRegistry``."""

    def __init__(self, registry: HandlerRegistry) -> None:
        self._registry = registry

    def dispatch(
        self,
        queue: str,
        headers: Mapping[str, Any],
        body: bytes,
    ) -> DispatchResult:
        """
        Find the first entry whose type matches the ``type`` header and
        whose decoder accepts the body.

        Entries with a matching type that fail to decode are skipped. Entries
        registered under other types are never tried.
        """
        type_name = headers.get(TYPE_HEADER)
        if not isinstance(type_name, str):
            return NoMatch(DeliveryOutcome.MISSING_TYPE_HEADER, type_name)

        entries = self._registry.entries(queue)
        if not entries:
            return NoMatch(DeliveryOutcome.NO_HANDLER_FOR_QUEUE, type_name)

        for entry in entries:
            if entry.type_name != type_name:
                continue
            payload, ok = try_resolve(entry, body)
            if ok:
                return Match(entry, payload)

        return NoMatch(DeliveryOutcome.TYPE_COERCION_FAILED, type_name)
