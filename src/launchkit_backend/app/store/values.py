# Firestore REST typed values <-> plain Python values.
from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any, Dict


def encode_value(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        ts = value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return {"timestampValue": ts}
    if isinstance(value, bytes):
        return {"bytesValue": base64.b64encode(value).decode("ascii")}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"cannot store value of type {type(value).__name__}")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {str(k): encode_value(v) for k, v in data.items()}


def decode_value(raw: Dict[str, Any]) -> Any:
    if "nullValue" in raw:
        return None
    if "booleanValue" in raw:
        return bool(raw["booleanValue"])
    if "integerValue" in raw:
        return int(raw["integerValue"])
    if "doubleValue" in raw:
        return float(raw["doubleValue"])
    if "stringValue" in raw:
        return raw["stringValue"]
    if "timestampValue" in raw:
        return datetime.fromisoformat(raw["timestampValue"].replace("Z", "+00:00"))
    if "bytesValue" in raw:
        return base64.b64decode(raw["bytesValue"])
    if "referenceValue" in raw:
        return raw["referenceValue"]
    if "geoPointValue" in raw:
        return dict(raw["geoPointValue"])
    if "mapValue" in raw:
        return decode_fields(raw["mapValue"].get("fields") or {})
    if "arrayValue" in raw:
        return [decode_value(v) for v in raw["arrayValue"].get("values") or []]
    raise ValueError(f"unknown firestore value: {sorted(raw)}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(v) for k, v in fields.items()}
