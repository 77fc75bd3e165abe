from datetime import datetime, timedelta, timezone

from bson import Decimal128, ObjectId

from response_formatter import error_response, serialize_documents, serialize_value


def test_naive_datetime_is_rendered_as_utc():
    assert serialize_value(datetime(2023, 5, 2)) == "2023-05-02T00:00:00+00:00"


def test_aware_datetime_keeps_its_offset():
    value = datetime(2023, 5, 2, 8, 30, tzinfo=timezone(timedelta(hours=2)))
    assert serialize_value(value) == "2023-05-02T08:30:00+02:00"


def test_nested_bson_values_become_json_safe():
    oid = ObjectId("507f1f77bcf86cd799439011")
    doc = {
        "_id": oid,
        "tags": [oid, "plain"],
        "price": Decimal128("9.99"),
        "blob": b"\xff\xfe",
        "meta": {"created": datetime(2024, 1, 1, tzinfo=timezone.utc)},
    }
    assert serialize_documents([doc]) == [{
        "_id": "507f1f77bcf86cd799439011",
        "tags": ["507f1f77bcf86cd799439011", "plain"],
        "price": "9.99",
        "blob": "[binary 2 bytes]",
        "meta": {"created": "2024-01-01T00:00:00+00:00"},
    }]


def test_error_response_keeps_base_shape():
    base = {"results": []}
    assert error_response(base, "boom") == {"results": [], "error": "boom"}
    assert base == {"results": []}
