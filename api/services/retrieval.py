"""Retrieval service for PaperSmith.

All course materials share one Qdrant collection; every point carries the
`courseId`, `materialId` and material `type` in its payload so searches are
filtered per course.
"""

import logging
import os
import time
from typing import Any, Callable, Optional, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    VectorParams,
)

from .embeddings import EMBEDDING_DIMENSION, embed_query

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Qdrant configuration
QDRANT_URL = os.environ.get("QDRANT_URL", "http://localhost:6333")
QDRANT_API_KEY = os.environ.get("QDRANT_API_KEY") or None
QDRANT_COLLECTION = os.environ.get("QDRANT_COLLECTION", "course_materials")
QDRANT_TIMEOUT = 60

RETRY_ATTEMPTS = 3
RETRY_DELAY = 2.0  # seconds


class VectorStoreError(Exception):
    """Raised when Qdrant cannot be reached or rejects an operation."""


def is_qdrant_enabled() -> bool:
    """Vector writes only happen when QDRANT_ENABLED=true."""
    return os.environ.get("QDRANT_ENABLED", "false").lower() == "true"


def get_qdrant_client() -> QdrantClient:
    """Get a Qdrant client instance."""
    return QdrantClient(url=QDRANT_URL, api_key=QDRANT_API_KEY, timeout=QDRANT_TIMEOUT)


def with_retry(
    operation: Callable[[], T],
    attempts: int = RETRY_ATTEMPTS,
    delay: float = RETRY_DELAY,
) -> T:
    """Run `operation`, retrying on any exception with a fixed delay."""
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt == attempts:
                raise
            logger.warning(
                "Qdrant operation failed (%s), retrying in %.1fs... (%d attempts left)",
                e, delay, attempts - attempt,
            )
            time.sleep(delay)
    raise VectorStoreError("retry loop exited without a result")


def test_connection() -> bool:
    """Check that Qdrant answers, with retries."""
    client = get_qdrant_client()
    try:
        with_retry(client.get_collections)
    except Exception as e:
        logger.error("Qdrant connection test failed after retries: %s", e)
        return False
    logger.info("Qdrant connection test passed")
    return True


def ensure_collection_exists(collection_name: str = QDRANT_COLLECTION) -> QdrantClient:
    """Ensure the materials collection exists, creating it if needed.

    New collections get keyword payload indexes on courseId, materialId
    and type, plus a bool index on isActive, which searches filter on.
    """
    client = get_qdrant_client()

    collections = client.get_collections().collections
    exists = any(c.name == collection_name for c in collections)

    if not exists:
        client.create_collection(
            collection_name=collection_name,
            vectors_config=VectorParams(
                size=EMBEDDING_DIMENSION,
                distance=Distance.COSINE,
            ),
        )
        for field_name in ("courseId", "materialId", "type"):
            client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=PayloadSchemaType.KEYWORD,
            )
        client.create_payload_index(
            collection_name=collection_name,
            field_name="isActive",
            field_schema=PayloadSchemaType.BOOL,
        )
        logger.info("Created Qdrant collection: %s", collection_name)

    return client


def course_filter(course_id: str, material_type: Optional[str] = None) -> Filter:
    must = [FieldCondition(key="courseId", match=MatchValue(value=course_id))]
    if material_type:
        must.append(FieldCondition(key="type", match=MatchValue(value=material_type)))
    return Filter(must=must)


def search_filter(course_id: str, material_type: Optional[str] = None) -> Filter:
    """Course filter that also drops chunks of deactivated materials."""
    return Filter(
        must=course_filter(course_id, material_type).must,
        must_not=[FieldCondition(key="isActive", match=MatchValue(value=False))],
    )


def material_filter(material_id: str) -> Filter:
    return Filter(must=[FieldCondition(key="materialId", match=MatchValue(value=material_id))])


async def search_course_materials(
    course_id: str,
    query: str,
    top_k: int = 12,
    material_type: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Similarity search over one course's material chunks.

    Returns a list of {"id", "score", "payload"} dicts. Retrieval is
    best-effort context for generation, so failures are logged and an
    empty list is returned.
    """
    try:
        vector = await embed_query(query)
        client = get_qdrant_client()
        response = client.query_points(
            collection_name=QDRANT_COLLECTION,
            query=vector,
            query_filter=search_filter(course_id, material_type),
            limit=top_k,
            with_payload=True,
        )
    except Exception as e:
        logger.error("Error searching Qdrant for course %s: %s", course_id, e)
        return []

    return [
        {"id": str(point.id), "score": point.score, "payload": point.payload or {}}
        for point in response.points
    ]


def delete_material_points(material_id: str) -> None:
    """Remove every chunk of a material from the collection."""
    if not is_qdrant_enabled():
        logger.info("Qdrant is disabled - skipping vector deletion for %s", material_id)
        return

    client = get_qdrant_client()
    try:
        client.delete(
            collection_name=QDRANT_COLLECTION,
            points_selector=material_filter(material_id),
        )
    except Exception as e:
        raise VectorStoreError(f"Failed to delete material {material_id}: {e}") from e
    logger.info("Deleted material from Qdrant: %s", material_id)


def delete_course_points(course_id: str) -> None:
    """Remove every chunk belonging to a course."""
    if not is_qdrant_enabled():
        return

    client = get_qdrant_client()
    try:
        client.delete(
            collection_name=QDRANT_COLLECTION,
            points_selector=course_filter(course_id),
        )
    except Exception as e:
        raise VectorStoreError(f"Failed to delete course {course_id}: {e}") from e
    logger.info("Deleted all materials from Qdrant for course: %s", course_id)


def list_indexed_material_ids(page_size: int = 256) -> set[str]:
    """Collect the distinct materialId values present in the collection."""
    client = get_qdrant_client()
    material_ids: set[str] = set()
    offset = None

    while True:
        points, offset = client.scroll(
            collection_name=QDRANT_COLLECTION,
            limit=page_size,
            offset=offset,
            with_payload=["materialId"],
            with_vectors=False,
        )
        for point in points:
            material_id = (point.payload or {}).get("materialId")
            if material_id:
                material_ids.add(material_id)
        if offset is None:
            break

    return material_ids
