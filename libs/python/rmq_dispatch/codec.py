"""
Payload type identifiers and JSON (de)serialization.

A payload's declared-type identifier is the fully-qualified name of its
class. Publishers attach it as the ``type`` header and consumers use it to
pick a decode target.
"""

import dataclasses
import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from libs.python.rmq_dispatch.registry import RegistryEntry

_JSON_BUILTINS = (dict, list, str, int, float, bool)


def type_identifier(obj_or_type: Any) -> str:
    """
    Fully-qualified type name of a class or of an instance's class.

    Examples:
        >>> type_identifier(dict)
        'builtins.dict'
        >>> type_identifier({"a": 1})
        'builtins.dict'
    """
    cls = obj_or_type if isinstance(obj_or_type, type) else type(obj_or_type)
    return f"{cls.__module__}.{cls.__qualname__}"


def decode_payload(payload_type: type, body: bytes) -> Any:
    """
    Decode a JSON body into a fresh instance of ``payload_type``.

    Raises:
        ValueError: Body is not valid JSON or fails model validation
        TypeError: Decoded JSON does not fit the target type
    """
    if hasattr(payload_type, "model_validate_json"):
        return payload_type.model_validate_json(body)

    data = json.loads(body)

    if payload_type in _JSON_BUILTINS:
        # bool is an int subclass, JSON true must not decode as a number
        if isinstance(data, bool) and payload_type is not bool:
            raise TypeError(f"expected {payload_type.__name__}, got bool")
        if payload_type is float and isinstance(data, int):
            return float(data)
        if not isinstance(data, payload_type):
            raise TypeError(f"expected {payload_type.__name__}, got {type(data).__name__}")
        return data

    if not isinstance(data, dict):
        raise TypeError(f"expected a JSON object for {payload_type.__name__}")

    if dataclasses.is_dataclass(payload_type):
        # Unknown keys are ignored, missing required fields raise TypeError
        names = {f.name for f in dataclasses.fields(payload_type) if f.init}
        return payload_type(**{k: v for k, v in data.items() if k in names})

    return payload_type(**data)


def encode_payload(payload: Any) -> bytes:
    """Serialize a payload to a JSON body. Bytes are sent as-is."""
    if isinstance(payload, bytes):
        return payload
    if hasattr(payload, "model_dump_json"):
        return payload.model_dump_json().encode("utf-8")
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        payload = dataclasses.asdict(payload)
    return json.dumps(payload).encode("utf-8")


def try_resolve(entry: "RegistryEntry", body: bytes) -> tuple[Any, bool]:
    """
    Attempt to decode ``body`` with a registry entry's decoder.

    Decode errors are part of normal type matching and are not reported.

    Returns:
        (instance, True) on success, (None, False) otherwise
    """
    try:
        return entry.decoder(body), True
    except Exception:
        return None, False
