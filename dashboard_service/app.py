"""
FastAPI service: backend of the MongoDB admin dashboard.

Endpoints:
- list databases / collections of the cluster
- paginated document listing and single-document lookup
- insert / update / delete / delete-all through one modify endpoint
- raw JSON filter execution and AI-generated filters
- collection stats, create and drop

Every response is HTTP 200 with an optional ``error`` field; callers check
for it instead of the status code.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

import ai_query
import db_operations
from config import API_HOST, API_PORT, DATABASE_NAME, DEFAULT_PAGE_SIZE, MONGO_URI
from db_context import DatabaseContext
from errors import DashboardError
from logger import logger
from query_service import execute_query
from response_formatter import error_response, serialize_documents, serialize_value

# Sentinel keys the UI sets on ``document`` to ask for deletion
DELETE_FLAG = "_delete"
DELETE_ALL_FLAG = "_deleteAll"
_NON_FIELD_KEYS = ("_id", DELETE_FLAG, DELETE_ALL_FLAG)

COLLECTION_REQUIRED = "Collection name is required"

db_context = DatabaseContext(MONGO_URI, DATABASE_NAME)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await db_context.close()


app = FastAPI(title="MongoDB Dashboard Service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_context() -> DatabaseContext:
    return db_context


def _describe(e: Exception) -> str:
    """Log a caught error and return its message for the ``error`` field."""
    if isinstance(e, DashboardError):
        logger.warning("%s: %s", type(e).__name__, e)
    else:
        logger.error("%s: %s", type(e).__name__, e, exc_info=True)
    return str(e)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get the same 200 + ``error`` shape as every other failure."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    logger.warning("[API] Invalid request to %s: %s", request.url.path, problems)
    return JSONResponse(status_code=200, content={"error": f"Invalid request: {problems}"})


# ---------------------- REQUEST MODELS ----------------------


class ApiRequest(BaseModel):
    """Accepts the UI's camelCase keys as well as snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CollectionsRequest(ApiRequest):
    database_name: Optional[str] = None


class CollectionRequest(ApiRequest):
    collection_name: Optional[str] = None
    database_name: Optional[str] = None


class DocumentsRequest(CollectionRequest):
    limit: Optional[int] = None
    skip: Optional[int] = None
    filter: Optional[Dict[str, Any]] = None
    document_id: Optional[str] = None


class ModifyDocumentRequest(CollectionRequest):
    document_id: Optional[str] = None
    document: Optional[Dict[str, Any]] = None


class QueryRequest(CollectionRequest):
    query_text: Optional[str] = None


class AIQueryRequest(CollectionRequest):
    natural_language_text: Optional[str] = None
    model_id: Optional[str] = None


# ---------------------- CLUSTER ----------------------


@app.post("/databases")
async def get_databases(context: DatabaseContext = Depends(get_context)):
    try:
        return {"databases": await context.list_databases()}
    except Exception as e:
        return error_response(
            {"databases": []}, f"Failed to fetch databases: {_describe(e)}",
        )


@app.post("/collections")
async def get_collections(
    request: CollectionsRequest,
    context: DatabaseContext = Depends(get_context),
):
    if not request.database_name:
        return error_response(
            {"collections": []},
            "Database name must be provided to list collections.",
        )
    try:
        return {"collections": await context.list_collections(request.database_name)}
    except Exception as e:
        return error_response(
            {"collections": []}, f"Failed to fetch collections: {_describe(e)}",
        )


# ---------------------- DOCUMENTS ----------------------


@app.post("/documents")
async def get_documents(
    request: DocumentsRequest,
    context: DatabaseContext = Depends(get_context),
):
    """Single document when ``documentId`` is given, otherwise one page."""
    if not request.collection_name:
        return {"error": COLLECTION_REQUIRED}
    if request.document_id:
        try:
            document = await db_operations.find_by_id(
                context,
                request.collection_name,
                request.document_id,
                database_name=request.database_name,
            )
        except Exception as e:
            return {"error": f"Invalid document ID or query error: {_describe(e)}"}
        if document is None:
            return {"error": "Document not found"}
        return {"document": serialize_value(document)}

    limit = DEFAULT_PAGE_SIZE if request.limit is None else request.limit
    skip = request.skip or 0
    query = request.filter or {}
    try:
        documents = await db_operations.find_many(
            context,
            request.collection_name,
            query,
            limit=limit,
            skip=skip,
            database_name=request.database_name,
        )
        total = await db_operations.count(
            context,
            request.collection_name,
            query,
            database_name=request.database_name,
        )
    except Exception as e:
        return {"error": f"Failed to fetch documents: {_describe(e)}"}

    return {
        "documents": serialize_documents(documents),
        "pagination": {"total": total, "limit": limit, "skip": skip},
    }


@app.post("/modify-document")
async def modify_document(
    request: ModifyDocumentRequest,
    context: DatabaseContext = Depends(get_context),
):
    """Delete, delete-all, insert or update, picked from the request shape."""
    if not request.collection_name:
        return {"success": False, "error": COLLECTION_REQUIRED}
    if request.document is None:
        return {"success": False, "error": "Document is required"}
    collection = request.collection_name
    database = request.database_name
    document = request.document
    fields = {k: v for k, v in document.items() if k not in _NON_FIELD_KEYS}

    if document.get(DELETE_FLAG) is True and request.document_id:
        try:
            deleted = await db_operations.delete_one(
                context, collection, request.document_id, database_name=database,
            )
        except Exception as e:
            return {"success": False, "error": f"Failed to delete document: {_describe(e)}"}
        if not deleted:
            return {"success": False, "error": "Document not found or delete failed"}
        return {"success": True}

    if document.get(DELETE_ALL_FLAG) is True:
        try:
            result = await db_operations.delete_all(
                context, collection, {}, database_name=database,
            )
        except Exception as e:
            return {
                "success": False,
                "error": f"Failed to delete all documents: {_describe(e)}",
            }
        return {"success": True, "deletedCount": result["deletedCount"]}

    if not request.document_id:
        try:
            inserted_id = await db_operations.insert(
                context, collection, fields, database_name=database,
            )
        except Exception as e:
            return {"success": False, "error": f"Failed to insert document: {_describe(e)}"}
        return {"success": True, "insertedId": inserted_id}

    try:
        updated = await db_operations.update(
            context,
            collection,
            request.document_id,
            fields,
            database_name=database,
            require_match=True,
        )
    except Exception as e:
        return {"success": False, "error": f"Failed to update document: {_describe(e)}"}
    if not updated:
        return {"success": False, "error": "Document not found or update failed"}
    return {"success": True}


# ---------------------- QUERIES ----------------------


@app.post("/query")
async def run_query(
    request: QueryRequest,
    context: DatabaseContext = Depends(get_context),
):
    if not request.collection_name:
        return error_response({"results": []}, COLLECTION_REQUIRED)
    if not (request.query_text or "").strip():
        return error_response({"results": []}, "Query is required")
    try:
        results = await execute_query(
            context,
            request.collection_name,
            request.query_text,
            database_name=request.database_name,
        )
    except Exception as e:
        return error_response(
            {"results": []}, f"Failed to execute query: {_describe(e)}",
        )
    return {"results": serialize_documents(results)}


@app.post("/ai-query")
async def generate_ai_query(
    request: AIQueryRequest,
    context: DatabaseContext = Depends(get_context),
):
    if not request.collection_name:
        return error_response({"queryText": "{}"}, COLLECTION_REQUIRED)
    if not (request.natural_language_text or "").strip():
        return error_response({"queryText": "{}"}, "Natural language query is required")
    try:
        query_text, cost = await ai_query.generate_query(
            context,
            request.collection_name,
            request.natural_language_text,
            model_id=request.model_id,
            database_name=request.database_name,
        )
    except Exception as e:
        return error_response(
            {"queryText": "{}"}, f"Failed to generate query: {_describe(e)}",
        )

    response: Dict[str, Any] = {"queryText": query_text}
    if cost is not None:
        response["cost"] = cost
    return response


# ---------------------- COLLECTIONS ----------------------


@app.post("/stats")
async def get_stats(
    request: CollectionRequest,
    context: DatabaseContext = Depends(get_context),
):
    if not request.collection_name:
        return error_response(
            {"stats": None}, "Collection name is required for stats",
        )
    try:
        stats = await db_operations.stats(
            context, request.collection_name, database_name=request.database_name,
        )
    except Exception as e:
        return error_response(
            {"stats": None}, f"Failed to fetch collection stats: {_describe(e)}",
        )
    return {"stats": serialize_value(stats)}


@app.post("/create-collection")
async def create_collection(
    request: CollectionRequest,
    context: DatabaseContext = Depends(get_context),
):
    if not request.collection_name:
        return {"success": False, "error": COLLECTION_REQUIRED}
    try:
        await db_operations.create_collection(
            context, request.collection_name, database_name=request.database_name,
        )
    except Exception as e:
        return {"success": False, "error": f"Failed to create collection: {_describe(e)}"}
    return {"success": True}


@app.post("/drop-collection")
async def drop_collection(
    request: CollectionRequest,
    context: DatabaseContext = Depends(get_context),
):
    if not request.collection_name:
        return {"success": False, "error": COLLECTION_REQUIRED}
    try:
        await db_operations.drop_collection(
            context, request.collection_name, database_name=request.database_name,
        )
    except Exception as e:
        return {"success": False, "error": f"Failed to drop collection: {_describe(e)}"}
    return {"success": True}


@app.get("/health")
def health_check():
    return {"status": "ok", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
