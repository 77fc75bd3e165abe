"""
Raw query translation: query text → normalized filter → results.

Stateless.  Two failure kinds are kept apart so the UI can tell them apart:

  - ``InvalidQueryFormat``   → the text is not a JSON object ("fix your query")
  - ``QueryExecutionFailed`` → MongoDB rejected a well-formed filter
"""

import json
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

import db_operations
from db_context import DatabaseContext
from errors import InvalidQueryFormat, QueryExecutionFailed
from logger import logger
from normalizer import normalize


def parse_query_text(query_text: str) -> Dict[str, Any]:
    """Parse ``query_text`` as a JSON object and normalize it into a filter."""
    try:
        raw = json.loads(query_text)
    except (TypeError, ValueError) as e:
        raise InvalidQueryFormat(str(e)) from e

    if not isinstance(raw, dict):
        raise InvalidQueryFormat("Query must be a valid JSON object.")

    query = normalize(raw)
    if not isinstance(query, dict):
        raise InvalidQueryFormat("Query must be a valid JSON object.")
    return query


async def execute_query(
    context: DatabaseContext,
    collection_name: str,
    query_text: str,
    database_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Run ``query_text`` as a find filter over the whole collection."""
    query = parse_query_text(query_text)
    logger.info("[QUERY] %s: filter=%s", collection_name, query)

    try:
        return await db_operations.find_many(
            context, collection_name, query, database_name=database_name,
        )
    except PyMongoError as e:
        logger.error("[QUERY] Execution failed on %s: %s", collection_name, e)
        raise QueryExecutionFailed() from e
