"""Tests for payload type identifiers and JSON decoding."""

import json
from dataclasses import dataclass, field
from unittest.mock import Mock

import pytest

from libs.python.rmq_dispatch.codec import decode_payload, encode_payload, try_resolve, type_identifier
from libs.python.rmq_dispatch.registry import RegistryEntry


@dataclass
class OrderCreated:
    id: int
    items: list = field(default_factory=list)


class Customer:
    def __init__(self, name):
        self.name = name


class ValidatedModel:
    """Stands in for a pydantic model."""

    def __init__(self, raw):
        self.raw = raw

    @classmethod
    def model_validate_json(cls, body):
        if body == b"bad":
            raise ValueError("validation error")
        return cls(body)

    def model_dump_json(self):
        return '{"model": true}'


class TestTypeIdentifier:

    def test_class_and_instance_agree(self):
        assert type_identifier(OrderCreated) == type_identifier(OrderCreated(id=1))

    def test_fully_qualified(self):
        assert type_identifier(OrderCreated) == f"{OrderCreated.__module__}.OrderCreated"
        assert type_identifier({}) == "builtins.dict"


class TestDecodePayload:

    def test_dataclass(self):
        assert decode_payload(OrderCreated, b'{"id": 1, "items": ["a"]}') == OrderCreated(id=1, items=["a"])

    def test_dataclass_ignores_unknown_keys(self):
        assert decode_payload(OrderCreated, b'{"id": 2, "extra": true}') == OrderCreated(id=2)

    def test_dataclass_missing_required_field(self):
        with pytest.raises(TypeError):
            decode_payload(OrderCreated, b'{"items": []}')

    def test_dataclass_requires_object(self):
        with pytest.raises(TypeError):
            decode_payload(OrderCreated, b"[1, 2]")

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            decode_payload(OrderCreated, b"{not json")

    def test_builtin_types(self):
        assert decode_payload(dict, b'{"a": 1}') == {"a": 1}
        assert decode_payload(list, b"[1]") == [1]
        assert decode_payload(float, b"3") == 3.0

    def test_builtin_type_mismatch(self):
        with pytest.raises(TypeError):
            decode_payload(dict, b"[1]")
        with pytest.raises(TypeError):
            decode_payload(int, b"true")

    def test_plain_class_gets_keyword_arguments(self):
        customer = decode_payload(Customer, b'{"name": "ada"}')

        assert isinstance(customer, Customer)
        assert customer.name == "ada"

    def test_model_validate_json_is_preferred(self):
        model = decode_payload(ValidatedModel, b'{"x": 1}')

        assert isinstance(model, ValidatedModel)
        assert model.raw == b'{"x": 1}'


class TestEncodePayload:

    def test_dataclass(self):
        assert json.loads(encode_payload(OrderCreated(id=1))) == {"id": 1, "items": []}

    def test_bytes_pass_through(self):
        assert encode_payload(b"raw") == b"raw"

    def test_json_values(self):
        assert json.loads(encode_payload({"id": 1})) == {"id": 1}
        assert json.loads(encode_payload("text")) == "text"

    def test_model_dump_json(self):
        assert encode_payload(ValidatedModel(None)) == b'{"model": true}'


class TestTryResolve:

    def _entry(self, decoder):
        return RegistryEntry(
            queue="orders",
            type_name="orders.OrderCreated",
            payload_type=OrderCreated,
            decoder=decoder,
            handler=Mock(),
        )

    def test_success(self):
        payload, ok = try_resolve(self._entry(lambda body: decode_payload(OrderCreated, body)), b'{"id": 1}')

        assert ok is True
        assert payload == OrderCreated(id=1)

    def test_failure_is_swallowed(self):
        payload, ok = try_resolve(self._entry(lambda body: decode_payload(OrderCreated, body)), b"garbage")

        assert ok is False
        assert payload is None

    def test_model_validation_failure(self):
        payload, ok = try_resolve(self._entry(ValidatedModel.model_validate_json), b"bad")

        assert ok is False
