"""
In-memory stand-in for the slice of pymongo's async API the service uses.

Filters support plain equality plus ``$eq $ne $gt $gte $lt $lte $in $nin``
on top-level fields; any other ``$`` operator raises ``OperationFailure``
the way a real server rejects it.
"""

import asyncio
import copy
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import (
    CollectionInvalid,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from db_context import DatabaseContext

_COMPARATORS = {
    "$eq": lambda value, arg: value == arg,
    "$ne": lambda value, arg: value != arg,
    "$gt": lambda value, arg: value is not None and value > arg,
    "$gte": lambda value, arg: value is not None and value >= arg,
    "$lt": lambda value, arg: value is not None and value < arg,
    "$lte": lambda value, arg: value is not None and value <= arg,
    "$in": lambda value, arg: value in arg,
    "$nin": lambda value, arg: value not in arg,
}


def _validate_query(query):
    """Reject unknown operators up front, as the server does, even on an empty collection."""
    for key, condition in query.items():
        if key.startswith("$"):
            raise OperationFailure(f"unknown top level operator: {key}")
        if isinstance(condition, dict) and condition and all(
            k.startswith("$") for k in condition
        ):
            for op in condition:
                if op not in _COMPARATORS:
                    raise OperationFailure(f"unknown operator: {op}")


def _matches(doc, query):
    for key, condition in query.items():
        value = doc.get(key)
        if isinstance(condition, dict) and condition and all(
            k.startswith("$") for k in condition
        ):
            for op, arg in condition.items():
                if not _COMPARATORS[op](value, arg):
                    return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        return [copy.deepcopy(d) for d in docs]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.acknowledged = True
        self.last_update = None

    def _select(self, query):
        _validate_query(query)
        return [d for d in self.docs if _matches(d, query)]

    def find(self, query=None):
        return FakeCursor(self._select(query or {}))

    async def find_one(self, query=None):
        found = self._select(query or {})
        return copy.deepcopy(found[0]) if found else None

    async def count_documents(self, query):
        return len(self._select(query))

    async def insert_one(self, doc):
        stored = dict(doc)
        stored.setdefault("_id", ObjectId())
        if self.acknowledged:
            self.docs.append(stored)
        return SimpleNamespace(acknowledged=self.acknowledged, inserted_id=stored["_id"])

    async def update_one(self, query, update):
        self.last_update = update
        for op in update:
            if op not in ("$set", "$inc", "$unset"):
                raise OperationFailure(f"Unknown modifier: {op}")
        found = self._select(query)
        if found:
            target = found[0]
            target.update(update.get("$set", {}))
            for field, amount in update.get("$inc", {}).items():
                target[field] = target.get(field, 0) + amount
            for field in update.get("$unset", {}):
                target.pop(field, None)
        return SimpleNamespace(
            acknowledged=self.acknowledged,
            matched_count=len(found[:1]),
            modified_count=len(found[:1]),
        )

    async def delete_one(self, query):
        found = self._select(query)
        if found:
            self.docs.remove(found[0])
        return SimpleNamespace(acknowledged=True, deleted_count=len(found[:1]))

    async def delete_many(self, query):
        found = self._select(query)
        if not self.acknowledged:
            return SimpleNamespace(acknowledged=False)
        for doc in found:
            self.docs.remove(doc)
        return SimpleNamespace(acknowledged=True, deleted_count=len(found))


class FakeDatabase:
    def __init__(self, client, name):
        self.client = client
        self.name = name
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def command(self, command, value=None):
        if command == "ping":
            self.client.ping_count += 1
            await asyncio.sleep(self.client.ping_delay)
            if self.client.fail_ping:
                raise ServerSelectionTimeoutError("No servers found")
            if self.client.ping_error is not None:
                raise self.client.ping_error
            return {"ok": 1.0}
        if command == "collStats":
            coll = self[value]
            return {"ns": f"{self.name}.{value}", "count": len(coll.docs), "ok": 1.0}
        raise OperationFailure(f"no such command: {command}")

    async def create_collection(self, name):
        if name in self.collections:
            raise CollectionInvalid(f"collection {name} already exists")
        self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def drop_collection(self, name):
        self.collections.pop(name, None)

    async def list_collection_names(self, **kwargs):
        return sorted(self.collections)


class FakeClient:
    def __init__(self, default_database="test"):
        self.databases = {}
        self.default_database = default_database
        self.ping_count = 0
        self.ping_delay = 0
        self.fail_ping = False
        self.ping_error = None
        self.closed = False

    def __getitem__(self, name):
        if name not in self.databases:
            self.databases[name] = FakeDatabase(self, name)
        return self.databases[name]

    @property
    def admin(self):
        return self["admin"]

    def get_default_database(self, default=None):
        return self[self.default_database or default]

    async def list_database_names(self):
        return sorted(self.databases)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def client_factory(fake_client):
    calls = []

    def factory():
        calls.append(1)
        return fake_client

    factory.calls = calls
    return factory


@pytest.fixture
def context(client_factory):
    return DatabaseContext(
        "mongodb://fake:27017", "appdb", client_factory=client_factory,
    )


@pytest.fixture
def users(fake_client):
    """The ``appdb.users`` fake collection."""
    return fake_client["appdb"]["users"]
