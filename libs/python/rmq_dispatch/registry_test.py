"""Tests for the handler registry."""

import threading
from dataclasses import dataclass
from unittest.mock import Mock

import pytest

from libs.python.rmq_dispatch.codec import type_identifier
from libs.python.rmq_dispatch.errors import InvalidArgumentError
from libs.python.rmq_dispatch.registry import HandlerRegistry


@dataclass
class OrderCreated:
    id: int


class TestRegister:
    """Test HandlerRegistry.register."""

    def test_register_with_class_template(self):
        registry = HandlerRegistry()
        handler = Mock()

        entry = registry.register("orders", handler, OrderCreated)

        assert entry.queue == "orders"
        assert entry.type_name == type_identifier(OrderCreated)
        assert entry.payload_type is OrderCreated
        assert entry.handler is handler
        assert registry.entries("orders") == (entry,)

    def test_register_with_instance_template(self):
        registry = HandlerRegistry()

        entry = registry.register("orders", Mock(), OrderCreated(id=0))

        assert entry.payload_type is OrderCreated
        assert entry.type_name.endswith("OrderCreated")

    def test_default_decoder_builds_fresh_instances(self):
        registry = HandlerRegistry()
        entry = registry.register("orders", Mock(), OrderCreated)

        first = entry.decoder(b'{"id": 1}')
        second = entry.decoder(b'{"id": 1}')

        assert first == OrderCreated(id=1)
        assert first is not second

    def test_custom_decoder_and_type_name(self):
        registry = HandlerRegistry()
        decoder = Mock(return_value="decoded")

        entry = registry.register("orders", Mock(), OrderCreated, type_name="created", decoder=decoder)

        assert entry.type_name == "created"
        assert entry.decoder(b"raw") == "decoded"
        decoder.assert_called_once_with(b"raw")

    def test_entries_keep_registration_order(self):
        registry = HandlerRegistry()
        first = registry.register("orders", Mock(), OrderCreated)
        second = registry.register("orders", Mock(), dict)
        other = registry.register("payments", Mock(), dict)

        assert registry.entries("orders") == (first, second)
        assert registry.entries("payments") == (other,)
        assert sorted(registry.queues()) == ["orders", "payments"]
        assert len(registry) == 3

    def test_duplicates_are_kept(self):
        registry = HandlerRegistry()
        handler = Mock()

        registry.register("orders", handler, OrderCreated)
        registry.register("orders", handler, OrderCreated)

        assert len(registry.entries("orders")) == 2

    def test_unknown_queue_has_no_entries(self):
        assert HandlerRegistry().entries("missing") == ()

    def test_snapshot_is_not_affected_by_later_registrations(self):
        registry = HandlerRegistry()
        registry.register("orders", Mock(), OrderCreated)
        snapshot = registry.entries("orders")

        registry.register("orders", Mock(), dict)

        assert len(snapshot) == 1
        assert len(registry.entries("orders")) == 2

    @pytest.mark.parametrize(
        "queue, template, handler",
        [
            ("", OrderCreated, Mock()),
            ("orders", None, Mock()),
            ("orders", OrderCreated, "not callable"),
        ],
    )
    def test_invalid_arguments(self, queue, template, handler):
        registry = HandlerRegistry()

        with pytest.raises(InvalidArgumentError):
            registry.register(queue, handler, template)

        assert len(registry) == 0

    def test_invalid_argument_is_a_value_error(self):
        with pytest.raises(ValueError):
            HandlerRegistry().register("", Mock(), OrderCreated)

    def test_concurrent_registration(self):
        registry = HandlerRegistry()

        def _register_many():
            for _ in range(100):
                registry.register("orders", Mock(), OrderCreated)

        threads = [threading.Thread(target=_register_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry.entries("orders")) == 400
