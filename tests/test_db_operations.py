import asyncio
from datetime import datetime, timezone

import pytest
from bson import ObjectId

import db_operations
from errors import InvalidIdentifier, OperationNotAcknowledged

MISSING_ID = "507f1f77bcf86cd799439011"


async def _seed(context, n, collection="users", **extra):
    for i in range(n):
        await db_operations.insert(context, collection, {"n": i, **extra})


async def test_insert_then_find_by_id(context):
    inserted_id = await db_operations.insert(context, "users", {"name": "Bob", "age": 30})
    assert isinstance(inserted_id, str) and len(inserted_id) == 24

    doc = await db_operations.find_by_id(context, "users", inserted_id)
    assert doc == {"_id": ObjectId(inserted_id), "name": "Bob", "age": 30}


async def test_insert_strips_client_id(context, users):
    inserted_id = await db_operations.insert(context, "users", {"_id": MISSING_ID, "name": "A"})
    assert inserted_id != MISSING_ID
    assert users.docs[0]["_id"] == ObjectId(inserted_id)


async def test_insert_normalizes_markers(context, users):
    await db_operations.insert(
        context, "users",
        {"createdAt": {"$date": "2023-05-02T00:00:00Z"}, "ownerId": MISSING_ID},
    )
    stored = users.docs[0]
    assert stored["createdAt"] == datetime(2023, 5, 2, tzinfo=timezone.utc)
    assert stored["ownerId"] == ObjectId(MISSING_ID)


async def test_insert_without_acknowledgment_fails(context, users):
    users.acknowledged = False
    with pytest.raises(OperationNotAcknowledged):
        await db_operations.insert(context, "users", {"name": "A"})


async def test_find_by_id_missing_and_invalid(context):
    assert await db_operations.find_by_id(context, "users", MISSING_ID) is None
    with pytest.raises(InvalidIdentifier):
        await db_operations.find_by_id(context, "users", "nope")


async def test_pagination_and_count(context):
    await _seed(context, 25)
    page = await db_operations.find_many(context, "users", {}, limit=10, skip=20)
    assert [d["n"] for d in page] == [20, 21, 22, 23, 24]
    assert await db_operations.count(context, "users", {}) == 25


async def test_find_many_without_bounds_returns_everything(context):
    await _seed(context, 7)
    assert len(await db_operations.find_many(context, "users")) == 7


async def test_find_one_with_filter(context):
    await _seed(context, 3)
    doc = await db_operations.find_one(context, "users", {"n": {"$gte": 2}})
    assert doc["n"] == 2


async def test_explicit_database_is_isolated(context, fake_client):
    await db_operations.insert(context, "users", {"name": "A"}, database_name="other")
    assert await db_operations.count(context, "users", {}) == 0
    assert await db_operations.count(context, "users", {}, database_name="other") == 1
    assert len(fake_client["other"]["users"].docs) == 1
    assert context.current_database_name == ""


async def test_concurrent_calls_on_explicit_databases_stay_apart(context, fake_client):
    await context.use_database("ambient")

    async def work(database_name):
        await db_operations.insert(
            context, "users", {"db": database_name}, database_name=database_name,
        )
        return await db_operations.find_many(
            context, "users", {}, database_name=database_name,
        )

    found_a, found_b, _, _ = await asyncio.gather(
        work("db_a"),
        work("db_b"),
        db_operations.insert(context, "users", {"db": "db_a"}, database_name="db_a"),
        db_operations.insert(context, "users", {"db": "ambient"}),
    )

    assert {doc["db"] for doc in found_a} == {"db_a"}
    assert [doc["db"] for doc in found_b] == ["db_b"]
    assert [d["db"] for d in fake_client["db_a"]["users"].docs] == ["db_a", "db_a"]
    assert [d["db"] for d in fake_client["ambient"]["users"].docs] == ["ambient"]
    assert context.current_database_name == "ambient"


async def test_update_wraps_plain_document(context, users):
    inserted_id = await db_operations.insert(context, "users", {"name": "Bob"})
    ok = await db_operations.update(context, "users", inserted_id, {"name": "Alice"})
    assert ok
    assert users.last_update == {"$set": {"name": "Alice"}}
    assert (await db_operations.find_by_id(context, "users", inserted_id))["name"] == "Alice"


async def test_update_passes_operator_document_unchanged(context, users):
    inserted_id = await db_operations.insert(context, "users", {"age": 1})
    await db_operations.update(context, "users", ObjectId(inserted_id), {"$set": {"name": "Alice"}})
    assert users.last_update == {"$set": {"name": "Alice"}}

    await db_operations.update(context, "users", {"age": 1}, {"$inc": {"age": 2}})
    assert users.last_update == {"$inc": {"age": 2}}
    assert users.docs[0]["age"] == 3


async def test_update_on_missing_document(context):
    # acknowledged, so True unless a match is required
    assert await db_operations.update(context, "users", MISSING_ID, {"a": 1}) is True
    assert await db_operations.update(
        context, "users", MISSING_ID, {"a": 1}, require_match=True,
    ) is False


async def test_update_unacknowledged_returns_false(context, users):
    users.acknowledged = False
    assert await db_operations.update(context, "users", MISSING_ID, {"a": 1}) is False


async def test_delete_one(context):
    inserted_id = await db_operations.insert(context, "users", {"name": "A"})
    assert await db_operations.delete_one(context, "users", inserted_id) is True
    assert await db_operations.delete_one(context, "users", inserted_id) is False


async def test_delete_one_nonexistent_id_is_false(context):
    assert await db_operations.delete_one(context, "users", MISSING_ID) is False


async def test_delete_all(context):
    await _seed(context, 4)
    assert await db_operations.delete_all(context, "users", {}) == {"deletedCount": 4}
    assert await db_operations.count(context, "users", {}) == 0


async def test_delete_all_with_filter(context):
    await _seed(context, 4)
    result = await db_operations.delete_all(context, "users", {"n": {"$lt": 1}})
    assert result == {"deletedCount": 1}
    assert await db_operations.count(context, "users") == 3


async def test_delete_all_without_acknowledgment_fails(context, users):
    await _seed(context, 2)
    users.acknowledged = False
    with pytest.raises(OperationNotAcknowledged):
        await db_operations.delete_all(context, "users")
    assert len(users.docs) == 2


async def test_stats(context):
    await _seed(context, 2)
    result = await db_operations.stats(context, "users")
    assert result["ns"] == "appdb.users"
    assert result["count"] == 2


async def test_create_and_drop_collection(context, fake_client):
    await db_operations.create_collection(context, "logs", database_name="shop")
    assert "logs" in fake_client["shop"].collections
    await db_operations.drop_collection(context, "logs", database_name="shop")
    assert "logs" not in fake_client["shop"].collections
