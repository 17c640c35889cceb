"""
Handler registry keyed by queue name.

Each queue maps to an ordered list of entries; an entry pairs a declared
payload type with the handler that processes it.
"""

import functools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from libs.python.rmq_dispatch.codec import decode_payload, type_identifier
from libs.python.rmq_dispatch.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

# handler(payload, metadata); raising signals failure
Handler = Callable[[Any, Any], Any]
Decoder = Callable[[bytes], Any]


@dataclass(frozen=True)
class RegistryEntry:
    """One (declared type, decoder, handler) tuple bound to a queue."""
    queue: str
    type_name: str
    payload_type: type
    decoder: Decoder
    handler: Handler


class HandlerRegistry:
    """
    Append-only, thread-safe registry of handlers.

    Entry lists are replaced rather than mutated, so ``entries`` hands out
    snapshots that stay consistent while registrations continue.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[RegistryEntry, ...]] = {}

    def register(
        self,
        queue: str,
        handler: Handler,
        template: Any,
        *,
        type_name: Optional[str] = None,
        decoder: Optional[Decoder] = None,
    ) -> RegistryEntry:
        """
        Register a handler for a payload type on a queue.

        Args:
            queue: Queue the handler consumes from
            handler: Callable invoked as handler(payload, metadata)
            template: Payload class, or an instance of it
            type_name: Override for the declared-type identifier
            decoder: Override for the default JSON decoder

        Returns:
            The created entry

        Raises:
            InvalidArgumentError: Empty queue, missing template or handler
        """
        if not queue:
            raise InvalidArgumentError("queue name must not be empty")
        if template is None:
            raise InvalidArgumentError(f"a payload template is required for queue {queue}")
        if not callable(handler):
            raise InvalidArgumentError(f"handler for queue {queue} is not callable")

        payload_type = template if isinstance(template, type) else type(template)
        entry = RegistryEntry(
            queue=queue,
            type_name=type_name or type_identifier(payload_type),
            payload_type=payload_type,
            decoder=decoder or functools.partial(decode_payload, payload_type),
            handler=handler,
        )

        with self._lock:
            self._entries[queue] = self._entries.get(queue, ()) + (entry,)

        logger.info("Registered handler for %s on queue %s", entry.type_name, queue)
        return entry

    def entries(self, queue: str) -> tuple[RegistryEntry, ...]:
        """Entries for a queue in registration order (empty if none)."""
        with self._lock:
            return self._entries.get(queue, ())

    def queues(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._entries.values())
