"""
Response formatter: turns BSON results into JSON-safe payloads.

``ObjectId`` values go back to the client as their 24-hex text and dates as
ISO-8601 strings; everything else that JSON cannot carry is stringified.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from bson import Decimal128, ObjectId


def serialize_value(obj: Any) -> Any:
    """Recursively convert non-JSON-safe types to safe representations."""
    if isinstance(obj, dict):
        return {k: serialize_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [serialize_value(item) for item in obj]
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        # BSON dates are UTC; a naive value still means UTC
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.isoformat()
    if isinstance(obj, bytes):
        # Binary fields (e.g. vector embeddings): try UTF-8, else a placeholder
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return f"[binary {len(obj)} bytes]"
    if isinstance(obj, Decimal128):
        return str(obj)
    if isinstance(obj, (int, float, str, bool, type(None))):
        return obj
    return str(obj)


def serialize_documents(documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_value(doc) for doc in documents]


def error_response(base: Dict[str, Any], message: str) -> Dict[str, Any]:
    """Return ``base`` with the ``error`` key every response shape may carry."""
    response = dict(base)
    response["error"] = message
    return response
