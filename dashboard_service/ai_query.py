"""
AI query generation using Google Gemini.

Architecture:
    NL text + sample documents + current date  →  prompt  →  Gemini  →  query text

The model output is never trusted: it goes through the same
``query_service.parse_query_text`` validation as hand-typed text before it is
handed back.  If the reply is not JSON, exactly one salvage step is tried
(the widest ``{...}`` span in the reply); anything else is reported as
``InvalidQueryFormat``.
"""

import asyncio
import json
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

import db_operations
from config import AI_SAMPLE_SIZE, GEMINI_API_KEY, GEMINI_MODEL
from db_context import DatabaseContext
from errors import InvalidQueryFormat, QueryGenerationFailed
from logger import logger
from query_service import parse_query_text
from response_formatter import serialize_documents

# USD per one million tokens: (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-2.0-flash-lite": (0.075, 0.30),
    "gemini-1.5-flash": (0.075, 0.30),
    "gemini-1.5-pro": (1.25, 5.00),
}

MAX_RETRIES = 2

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_genai_client: Optional[genai.Client] = None


def _get_genai_client() -> genai.Client:
    global _genai_client
    if _genai_client is None:
        api_key = GEMINI_API_KEY.strip()
        if not api_key:
            raise QueryGenerationFailed(
                "AI query generation is not configured. Set GEMINI_API_KEY."
            )
        _genai_client = genai.Client(api_key=api_key)
    return _genai_client


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

def _build_date_block(now: datetime) -> str:
    return "\n".join([
        "Current date information (use this for any relative time references):",
        f"  - Current date: {now.isoformat()}",
        f"  - Today: {now.date().isoformat()}",
        f"  - Current year: {now.year}",
        f"  - Current month: {now.month}",
        f"  - Current day: {now.day}",
        f"  - Current time: {now.strftime('%H:%M:%S')}",
    ])


def build_prompt(
    collection_name: str,
    natural_language_text: str,
    sample_documents: List[Dict[str, Any]],
    now: datetime,
) -> str:
    """Build the full prompt sent to the LLM."""
    if sample_documents:
        examples_block = (
            f"Here are {len(sample_documents)} example documents from the "
            "collection to help you understand its structure:\n"
            + json.dumps(serialize_documents(sample_documents), indent=2)
        )
    else:
        examples_block = "No example documents are available."

    # Use double-braces {{ }} to escape literal JSON braces inside f-string
    return f"""You are a MongoDB query generator. Convert the user's natural
language request into a MongoDB find() filter.

COLLECTION: {collection_name}

{examples_block}

{_build_date_block(now)}

FORMATTING RULES:
 1. Dates MUST use Extended JSON: {{"$date": "YYYY-MM-DDTHH:MM:SS.SSSZ"}}
    e.g. {{"createdAt": {{"$gte": {{"$date": "2023-05-02T00:00:00.000Z"}}}}}}
 2. ObjectIds MUST use Extended JSON: {{"$oid": "507f1f77bcf86cd799439011"}}
    e.g. {{"_id": {{"$oid": "507f1f77bcf86cd799439011"}}}}
 3. A specific day is a range:
    {{"createdAt": {{"$gte": {{"$date": "2023-05-02T00:00:00.000Z"}}, "$lt": {{"$date": "2023-05-03T00:00:00.000Z"}}}}}}
 4. NEVER use plain strings for dates or ObjectIds.
 5. Use only field names that appear in the example documents.

USER REQUEST: "{natural_language_text}"

Respond with ONLY the JSON filter object. No markdown, no explanation."""


# ---------------------------------------------------------------------------
# JSON extraction from LLM text
# ---------------------------------------------------------------------------

def extract_query_text(raw_text: str) -> str:
    """Turn a model reply into validated query text.

    A ``{"query": {...}}`` envelope is unwrapped.  Raises
    ``InvalidQueryFormat`` when no JSON object can be recovered.
    """
    text = raw_text.strip()
    try:
        candidate = json.loads(text)
    except ValueError:
        match = _JSON_OBJECT_RE.search(text)
        if match is None:
            raise InvalidQueryFormat("Failed to extract valid JSON from AI response")
        logger.warning("[AI] Reply was not pure JSON, extracted %d chars", len(match.group(0)))
        try:
            candidate = json.loads(match.group(0))
        except ValueError as e:
            raise InvalidQueryFormat(str(e)) from e

    if isinstance(candidate, dict) and list(candidate) == ["query"]:
        inner = candidate["query"]
        if isinstance(inner, dict):
            candidate = inner
        elif isinstance(inner, str) and inner.strip().startswith("{"):
            try:
                candidate = json.loads(inner)
            except ValueError as e:
                raise InvalidQueryFormat(str(e)) from e

    if not isinstance(candidate, dict):
        raise InvalidQueryFormat("Query must be a valid JSON object.")

    query_text = json.dumps(candidate)
    parse_query_text(query_text)
    return query_text


def estimate_cost(model_name: str, usage: Any) -> Optional[Dict[str, float]]:
    """``{"totalCost": usd}`` from token usage, or ``None`` for unpriced models."""
    pricing = MODEL_PRICING.get(model_name)
    if pricing is None or usage is None:
        return None
    input_tokens = getattr(usage, "prompt_token_count", None) or 0
    output_tokens = getattr(usage, "candidates_token_count", None) or 0
    input_price, output_price = pricing
    total = (input_tokens * input_price + output_tokens * output_price) / 1_000_000
    return {"totalCost": round(total, 8)}


# ---------------------------------------------------------------------------
# Model call
# ---------------------------------------------------------------------------

async def _call_model(prompt: str, model_name: str) -> Tuple[str, Any]:
    """Send ``prompt`` to Gemini; return ``(text, usage_metadata)``.

    Retries up to ``MAX_RETRIES`` times on 429 rate-limit errors.
    """
    client = _get_genai_client()

    for attempt in range(MAX_RETRIES + 1):
        start = time.time()
        try:
            response = await client.aio.models.generate_content(
                model=model_name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=0.0,
                    max_output_tokens=1024,
                ),
            )
        except genai_errors.APIError as e:
            elapsed = time.time() - start
            if e.code == 429 and attempt < MAX_RETRIES:
                wait = 4 * (attempt + 1)  # 4s, 8s backoff
                logger.warning(
                    "[AI] Rate limited (attempt %d/%d), retrying in %ds...",
                    attempt + 1, MAX_RETRIES + 1, wait,
                )
                await asyncio.sleep(wait)
                continue
            logger.error("[AI] Gemini call failed after %.2fs: %s", elapsed, e)
            raise QueryGenerationFailed(f"AI model call failed: {e}") from e

        elapsed = time.time() - start
        text = response.text or ""
        logger.info("[AI] Gemini responded in %.2fs (%d chars)", elapsed, len(text))
        logger.debug("[AI] Raw response: %s", text[:500])
        if not text.strip():
            raise QueryGenerationFailed("AI model returned an empty response")
        return text, response.usage_metadata

    raise QueryGenerationFailed("AI model is rate limited, try again later")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def generate_query(
    context: DatabaseContext,
    collection_name: str,
    natural_language_text: str,
    model_id: Optional[str] = None,
    database_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, Optional[Dict[str, float]]]:
    """Generate filter text for ``natural_language_text``.

    Returns ``(query_text, cost)``.  The query text has already passed the
    same parse + normalize validation as ``/query`` input.
    """
    model_name = model_id or GEMINI_MODEL
    now = now or datetime.now(timezone.utc)

    sample_documents: List[Dict[str, Any]] = []
    try:
        sample_documents = await db_operations.find_many(
            context, collection_name, {}, limit=AI_SAMPLE_SIZE,
            database_name=database_name,
        )
    except Exception as e:
        logger.warning("[AI] Could not fetch example documents: %s", e)

    prompt = build_prompt(collection_name, natural_language_text, sample_documents, now)
    raw_text, usage = await _call_model(prompt, model_name)

    query_text = extract_query_text(raw_text)
    logger.info("[AI] Generated query for %s: %s", collection_name, query_text)
    return query_text, estimate_cost(model_name, usage)
