"""Tests for deliveries and the bounded delivery stream."""

import threading
from unittest.mock import Mock

from libs.python.rmq_dispatch.delivery import Delivery, DeliveryMetadata, DeliveryStream, retry_count


class TestDelivery:

    def test_ack_is_forwarded_once(self):
        ack = Mock()
        delivery = Delivery(b"{}", {"type": "t"}, ack=ack, delivery_tag=1)

        delivery.ack()
        delivery.ack()

        ack.assert_called_once()
        assert delivery.acknowledged

    def test_headers_are_copied(self):
        headers = {"type": "t"}
        delivery = Delivery(b"{}", headers)
        headers["type"] = "changed"

        assert delivery.headers == {"type": "t"}

    def test_metadata(self):
        delivery = Delivery(
            b"{}",
            {"type": "t", "x-retry-count": 2},
            routing_key="created",
            exchange="orders",
            delivery_tag=5,
        )

        metadata = DeliveryMetadata.from_delivery("orders.created", delivery)

        assert metadata.queue == "orders.created"
        assert metadata.exchange == "orders"
        assert metadata.routing_key == "created"
        assert metadata.delivery_tag == 5
        assert metadata.retry_count == 2

    def test_retry_count_defaults(self):
        assert retry_count({}) == 0
        assert retry_count({"x-retry-count": "3"}) == 3
        assert retry_count({"x-retry-count": "junk"}) == 0


class TestDeliveryStream:

    def test_close_drains_buffered_deliveries(self):
        stream = DeliveryStream(maxsize=5)
        deliveries = [Delivery(str(i).encode()) for i in range(3)]
        for delivery in deliveries:
            assert stream.put(delivery)

        stream.close()

        assert list(stream) == deliveries

    def test_put_after_close_is_rejected(self):
        stream = DeliveryStream()
        stream.close()

        assert stream.put(Delivery(b"{}")) is False

    def test_cancel_stops_iteration_and_notifies_transport(self):
        on_cancel = Mock()
        stream = DeliveryStream(maxsize=5, on_cancel=on_cancel)
        stream.put(Delivery(b"{}"))

        stream.cancel()
        stream.cancel()

        assert list(stream) == []
        on_cancel.assert_called_once()
        assert stream.closed

    def test_put_blocks_while_full(self):
        stream = DeliveryStream(maxsize=1)
        stream.put(Delivery(b"1"))
        second = Delivery(b"2")
        result = {}

        producer = threading.Thread(target=lambda: result.setdefault("put", stream.put(second)))
        producer.start()
        producer.join(timeout=0.5)
        assert producer.is_alive()

        iterator = iter(stream)
        assert next(iterator).body == b"1"
        producer.join(timeout=2)

        assert result["put"] is True
        assert next(iterator) is second
