"""siteindex.serialization — DynamoDB serialization/deserialization.

TypeSerializer/TypeDeserializer wrappers plus timestamp helpers.
"""

from __future__ import annotations

import datetime as dt
import time
from decimal import Decimal
from typing import Any, Dict

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

__all__ = [
    "_deserialize",
    "_now_iso",
    "_now_z",
    "_parse_timestamp",
    "_serialize",
    "_serialize_item",
    "_unix_now",
]

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    if isinstance(value, set):
        return sorted(_from_dynamo(v) for v in value)
    return value


def _serialize(value: Any) -> Dict[str, Any]:
    """Serialize a Python value for DynamoDB."""
    return _SER.serialize(_to_dynamo(value))


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a whole item, dropping None attributes."""
    return {k: _serialize(v) for k, v in item.items() if v is not None}


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain Python dict."""
    return {k: _from_dynamo(_DESER.deserialize(v)) for k, v in item.items()}


def _now_z() -> str:
    """Current UTC timestamp in ISO 8601 format with Z suffix."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _now_iso() -> str:
    """Current UTC timestamp with millisecond precision, sortable as a key."""
    now = dt.datetime.now(dt.timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _unix_now() -> int:
    """Current Unix epoch as integer."""
    return int(time.time())


def _parse_timestamp(value: Any) -> float:
    """Epoch seconds for an ISO 8601 string or number; 0.0 when unparseable."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.timestamp()
