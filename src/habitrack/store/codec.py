"""Firestore REST typed-value codec.

The Firestore REST API wraps every field value in a single-key object naming
its type (``{"integerValue": "21"}``, ``{"mapValue": {"fields": {...}}}``).
These helpers convert between that representation and plain JSON-compatible
Python values.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from habitrack.exceptions import HabitStoreError


def encode_value(value: Any) -> dict[str, Any]:  # noqa: PLR0911
    """Encode a plain Python value as a Firestore ``Value`` object.

    Raises:
        TypeError: If the value has no Firestore representation.
    """
    if value is None:
        return {"nullValue": None}
    # bool is a subclass of int, so it must be tested first
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, list | tuple):
        if not value:
            return {"arrayValue": {}}
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    msg = f"Cannot encode value of type {type(value).__name__}"
    raise TypeError(msg)


def encode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Encode a mapping of plain values as Firestore ``fields``."""
    return {key: encode_value(item) for key, item in fields.items()}


def decode_value(value: Mapping[str, Any]) -> Any:  # noqa: PLR0911
    """Decode a Firestore ``Value`` object into a plain Python value.

    Timestamps are returned as their RFC 3339 strings; references and geo
    points are returned unchanged.

    Raises:
        ValueError: If the object does not name exactly one value type.
    """
    if len(value) != 1:
        msg = f"Expected a single typed value, got keys: {sorted(value)}"
        raise ValueError(msg)
    kind, payload = next(iter(value.items()))
    if kind == "nullValue":
        return None
    if kind == "booleanValue":
        return bool(payload)
    if kind == "integerValue":
        return int(payload)
    if kind == "doubleValue":
        return float(payload)
    if kind in {"stringValue", "timestampValue", "referenceValue", "bytesValue"}:
        return payload
    if kind == "mapValue":
        return decode_fields(payload.get("fields", {}))
    if kind == "arrayValue":
        return [decode_value(item) for item in payload.get("values", [])]
    if kind == "geoPointValue":
        return dict(payload)
    msg = f"Unknown Firestore value type: {kind}"
    raise ValueError(msg)


def decode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Decode Firestore ``fields`` into a plain dictionary."""
    return {key: decode_value(item) for key, item in fields.items()}


def document_id(name: str) -> str:
    """Extract the document ID from a full resource name."""
    return name.rsplit("/", 1)[-1]


def decode_document(document: Mapping[str, Any]) -> dict[str, Any]:
    """Decode a Firestore ``Document`` resource into ``{"id": ..., **fields}``.

    Raises:
        HabitStoreError: If the resource has no name or malformed fields.
    """
    name = document.get("name")
    if not isinstance(name, str) or not name:
        raise HabitStoreError.create_parse_error("document", reason="missing_name")
    try:
        fields = decode_fields(document.get("fields", {}))
    except (ValueError, TypeError, AttributeError) as error:
        raise HabitStoreError.create_parse_error(name, reason="malformed_fields") from error
    return {**fields, "id": document_id(name)}
