"""
Normalizer: rewrites untyped JSON trees into MongoDB-native values.

Two independent transforms, both pure (the input is never mutated):

  - ``convert_date_markers``      → ``{"$date": "<ISO-8601>"}`` becomes ``datetime``
  - ``convert_identifier_fields`` → 24-hex strings in ID-like fields and
    ``{"$oid": "<hex>"}`` wrappers become ``ObjectId``

ID-like field detection is a heuristic over schema-less data: ``_id``,
``id`` and any key ending in ``Id``.  A legitimate non-identifier string that
happens to be 24 hex characters in such a field will be coerced too.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict

from bson import ObjectId

from errors import InvalidIdentifier, InvalidUpdateDocument

# Pattern for a 24-character hex string (MongoDB ObjectId)
_OBJECTID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

DATE_MARKER = "$date"
OID_MARKER = "$oid"
OPERATOR_PREFIX = "$"

# Operators whose operands are compared against the field value itself
_ID_VALUE_OPERATORS = frozenset({"$eq", "$ne", "$in", "$nin"})


# ---------------------- PREDICATES ----------------------

def is_object_id_string(value: Any) -> bool:
    return isinstance(value, str) and bool(_OBJECTID_RE.match(value))


def is_id_field(key: str) -> bool:
    """``_id``, ``id`` or a camelCase ``...Id`` key."""
    return key == "_id" or key == "id" or key.endswith("Id")


def is_operator_document(doc: Any) -> bool:
    """True if ``doc`` is a non-empty dict whose keys all start with ``$``."""
    if not isinstance(doc, dict) or not doc:
        return False
    return all(str(key).startswith(OPERATOR_PREFIX) for key in doc)


def to_object_id(value: Any) -> ObjectId:
    """Return ``value`` as an ``ObjectId``.

    Accepts an ``ObjectId`` (returned as is) or its 24-hex-character text.
    """
    if isinstance(value, ObjectId):
        return value
    if is_object_id_string(value):
        return ObjectId(value)
    raise InvalidIdentifier(f"Invalid ObjectId string: {value}")


# ---------------------- DATES ----------------------

def _parse_iso_datetime(text: str):
    """Parse an ISO-8601 string, or return ``None`` if it is not one."""
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_date_marker(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and len(value) == 1
        and isinstance(value.get(DATE_MARKER), str)
    )


def convert_date_markers(value: Any) -> Any:
    """Replace every ``{"$date": "<ISO string>"}`` in ``value`` with a datetime.

    Markers whose string does not parse are left untouched.
    """
    if _is_date_marker(value):
        parsed = _parse_iso_datetime(value[DATE_MARKER])
        if parsed is not None:
            return parsed
        return dict(value)
    if isinstance(value, dict):
        return {key: convert_date_markers(item) for key, item in value.items()}
    if isinstance(value, list):
        return [convert_date_markers(item) for item in value]
    return value


# ---------------------- IDENTIFIERS ----------------------

def _oid_marker_value(value: Any):
    """Return the ObjectId for a ``{"$oid": "<hex>"}`` wrapper, else ``None``."""
    if (
        isinstance(value, dict)
        and len(value) == 1
        and is_object_id_string(value.get(OID_MARKER))
    ):
        return ObjectId(value[OID_MARKER])
    return None


def _convert_id_operand(value: Any) -> Any:
    """Coerce the operand of an ID-like field.

    Beyond plain hex strings this reaches into lists (``[hex, hex]``) and
    comparison operators (``{"$in": [hex, ...]}``) so that filters on ``_id``
    built by hand still match.
    """
    if is_object_id_string(value):
        return ObjectId(value)
    oid = _oid_marker_value(value)
    if oid is not None:
        return oid
    if isinstance(value, list):
        return [_convert_id_operand(item) for item in value]
    if isinstance(value, dict):
        converted: Dict[str, Any] = {}
        for key, item in value.items():
            if key in _ID_VALUE_OPERATORS:
                converted[key] = _convert_id_operand(item)
            else:
                converted[key] = convert_identifier_fields(item)
        return converted
    return value


def convert_identifier_fields(value: Any) -> Any:
    """Replace identifier text with ``ObjectId`` throughout ``value``.

    Strings that are not 24 hex characters are never touched, whatever the
    field name.
    """
    oid = _oid_marker_value(value)
    if oid is not None:
        return oid
    if isinstance(value, list):
        return [convert_identifier_fields(item) for item in value]
    if not isinstance(value, dict):
        return value

    converted: Dict[str, Any] = {}
    for key, item in value.items():
        if is_id_field(key):
            converted[key] = _convert_id_operand(item)
        else:
            converted[key] = convert_identifier_fields(item)
    return converted


def normalize(value: Any) -> Any:
    """Date markers first, then identifiers."""
    return convert_identifier_fields(convert_date_markers(value))


# ---------------------- UPDATES ----------------------

def to_update_document(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Turn ``spec`` into a MongoDB update document.

    Operator documents (``{"$set": ...}``, ``{"$inc": ...}``) pass through;
    a plain partial document is wrapped exactly once in ``$set``.
    """
    if is_operator_document(spec):
        return spec
    if any(str(key).startswith(OPERATOR_PREFIX) for key in spec):
        raise InvalidUpdateDocument(
            "Update document mixes update operators ($set, $inc, ...) with plain fields"
        )
    return {"$set": spec}
