"""Jina AI embeddings client.

Course material chunks are embedded as passages and queries as
`retrieval.query` so both land in the same 1024-dim space of
jina-embeddings-v3.
"""

import logging
import os
from typing import Union

import httpx

logger = logging.getLogger(__name__)

JINA_API_URL = os.environ.get("JINA_API_URL", "https://api.jina.ai/v1")
JINA_API_KEY = os.environ.get("JINA_API_KEY", "")
EMBEDDING_MODEL = os.environ.get("JINA_EMBEDDING_MODEL", "jina-embeddings-v3")
EMBEDDING_DIMENSION = 1024

# Jina v3 accepts up to 8192 tokens; characters are a conservative proxy
MAX_QUERY_CHARS = 6000
REQUEST_TIMEOUT = 60.0


class EmbeddingError(Exception):
    """Raised when the embedding API cannot produce vectors."""


async def generate_embeddings(
    texts: Union[str, list[str]],
    model: str = EMBEDDING_MODEL,
    task: str = "retrieval.passage",
    encoding_format: str = "float",
) -> list[list[float]]:
    """Embed one text or a batch of texts.

    Returns one vector per input, in input order.
    """
    if not JINA_API_KEY:
        raise EmbeddingError("JINA_API_KEY is not configured")

    payload = {
        "model": model,
        "input": texts,
        "task": task,
        "encoding_format": encoding_format,
    }
    headers = {
        "Authorization": f"Bearer {JINA_API_KEY}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(base_url=JINA_API_URL, timeout=REQUEST_TIMEOUT) as client:
            response = await client.post("/embeddings", json=payload, headers=headers)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Jina embedding request failed: %s", e)
        raise EmbeddingError(f"Failed to generate embeddings: {e}") from e

    data = response.json().get("data", [])
    return [item["embedding"] for item in sorted(data, key=lambda d: d.get("index", 0))]


async def embed_query(text: str) -> list[float]:
    """Embed a single search query."""
    if not text or not text.strip():
        raise EmbeddingError("Text content is empty or invalid")

    if len(text) > MAX_QUERY_CHARS:
        logger.info("Query truncated from %d to %d characters", len(text), MAX_QUERY_CHARS)
        text = text[:MAX_QUERY_CHARS]

    vectors = await generate_embeddings(text, task="retrieval.query")
    if not vectors:
        raise EmbeddingError("No embeddings returned from Jina AI")
    return vectors[0]
