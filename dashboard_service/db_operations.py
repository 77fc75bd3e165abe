"""
Document operations: generic CRUD over any collection in any database.

Every coroutine takes the ``DatabaseContext`` first and an optional
``database_name`` last.  An explicit name is resolved to its own handle
(``DatabaseContext.database_for``) rather than switching the ambient target.

Filters and documents are passed through ``normalizer.normalize`` so that
``$date`` / ``$oid`` markers and hex IDs typed by a human reach MongoDB as
native types.  Each mutation is a single driver call: no read-modify-write,
no transactions.
"""

from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pymongo.asynchronous.collection import AsyncCollection

from db_context import DatabaseContext
from errors import OperationNotAcknowledged
from logger import logger
from normalizer import normalize, to_object_id, to_update_document

Document = Dict[str, Any]
DocumentId = Union[str, ObjectId]
FilterOrId = Union[Document, DocumentId]


# ---------------------- HELPERS ----------------------

async def get_collection(
    context: DatabaseContext,
    collection_name: str,
    database_name: Optional[str] = None,
) -> AsyncCollection:
    db = await context.database_for(database_name)
    return db[collection_name]


def _build_filter(filter_or_id: Optional[FilterOrId]) -> Document:
    """An ID (text or native) becomes ``{"_id": ObjectId}``; a dict is normalized."""
    if filter_or_id is None:
        return {}
    if isinstance(filter_or_id, (str, ObjectId)):
        return {"_id": to_object_id(filter_or_id)}
    return normalize(filter_or_id)


# ---------------------- READS ----------------------

async def find_many(
    context: DatabaseContext,
    collection_name: str,
    filter: Optional[Document] = None,
    limit: Optional[int] = None,
    skip: Optional[int] = None,
    database_name: Optional[str] = None,
) -> List[Document]:
    """Matching documents in natural order; ``skip`` is applied before ``limit``."""
    collection = await get_collection(context, collection_name, database_name)
    cursor = collection.find(_build_filter(filter))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return await cursor.to_list(None)


async def find_one(
    context: DatabaseContext,
    collection_name: str,
    filter: Optional[Document] = None,
    database_name: Optional[str] = None,
) -> Optional[Document]:
    collection = await get_collection(context, collection_name, database_name)
    return await collection.find_one(_build_filter(filter))


async def find_by_id(
    context: DatabaseContext,
    collection_name: str,
    document_id: DocumentId,
    database_name: Optional[str] = None,
) -> Optional[Document]:
    """``None`` when nothing has that ID; ``InvalidIdentifier`` on a malformed one."""
    return await find_one(
        context,
        collection_name,
        {"_id": to_object_id(document_id)},
        database_name=database_name,
    )


async def count(
    context: DatabaseContext,
    collection_name: str,
    filter: Optional[Document] = None,
    database_name: Optional[str] = None,
) -> int:
    collection = await get_collection(context, collection_name, database_name)
    return await collection.count_documents(_build_filter(filter))


# ---------------------- WRITES ----------------------

async def insert(
    context: DatabaseContext,
    collection_name: str,
    document: Document,
    database_name: Optional[str] = None,
) -> str:
    """Insert ``document`` with a server-side fresh ``_id``; return the ID as text."""
    collection = await get_collection(context, collection_name, database_name)
    to_insert = normalize({k: v for k, v in document.items() if k != "_id"})

    result = await collection.insert_one(to_insert)
    if not result.acknowledged:
        raise OperationNotAcknowledged("Insert was not acknowledged by the server")

    inserted_id = str(result.inserted_id)
    logger.info("[OPS] Inserted %s into %s", inserted_id, collection_name)
    return inserted_id


async def update(
    context: DatabaseContext,
    collection_name: str,
    filter_or_id: FilterOrId,
    update_spec: Document,
    database_name: Optional[str] = None,
    require_match: bool = False,
) -> bool:
    """Update the first document matching ``filter_or_id``.

    A plain ``update_spec`` is wrapped in ``$set``; operator documents are
    sent unchanged.  Returns ``True`` when the server acknowledged the write,
    which holds even if nothing matched.  Pass ``require_match=True`` to get
    ``False`` for a filter that matched no document.
    """
    collection = await get_collection(context, collection_name, database_name)
    query = _build_filter(filter_or_id)
    update_doc = to_update_document(normalize(update_spec))

    result = await collection.update_one(query, update_doc)
    logger.info(
        "[OPS] Update on %s: matched=%s modified=%s",
        collection_name,
        result.matched_count if result.acknowledged else "?",
        result.modified_count if result.acknowledged else "?",
    )
    if not result.acknowledged:
        return False
    if require_match:
        return result.matched_count > 0
    return True


async def delete_one(
    context: DatabaseContext,
    collection_name: str,
    filter_or_id: FilterOrId,
    database_name: Optional[str] = None,
) -> bool:
    """True only if a document was actually removed."""
    collection = await get_collection(context, collection_name, database_name)
    result = await collection.delete_one(_build_filter(filter_or_id))
    deleted = result.acknowledged and result.deleted_count > 0
    logger.info("[OPS] Delete on %s: deleted=%s", collection_name, deleted)
    return deleted


async def delete_all(
    context: DatabaseContext,
    collection_name: str,
    filter: Optional[Document] = None,
    database_name: Optional[str] = None,
) -> Dict[str, int]:
    """Remove every document matching ``filter`` (all of them by default)."""
    collection = await get_collection(context, collection_name, database_name)
    result = await collection.delete_many(_build_filter(filter))
    if not result.acknowledged:
        raise OperationNotAcknowledged("Delete was not acknowledged by the server")
    deleted_count = result.deleted_count
    logger.info("[OPS] Deleted %d document(s) from %s", deleted_count, collection_name)
    return {"deletedCount": deleted_count}


# ---------------------- ADMIN ----------------------

async def stats(
    context: DatabaseContext,
    collection_name: str,
    database_name: Optional[str] = None,
) -> Document:
    """Raw ``collStats`` output for the collection."""
    db = await context.database_for(database_name)
    return await db.command("collStats", collection_name)


async def create_collection(
    context: DatabaseContext,
    name: str,
    database_name: Optional[str] = None,
) -> None:
    db = await context.database_for(database_name)
    await db.create_collection(name)
    logger.info("[OPS] Created collection %s in %s", name, db.name)


async def drop_collection(
    context: DatabaseContext,
    name: str,
    database_name: Optional[str] = None,
) -> None:
    db = await context.database_for(database_name)
    await db.drop_collection(name)
    logger.info("[OPS] Dropped collection %s from %s", name, db.name)
