"""Probe the external services PaperSmith depends on.

Checks Qdrant connectivity, the Jina embeddings API, and a full
upsert/delete round trip of one scratch point in the materials collection.

Usage:
    python -m api.scripts.check_connections
"""

import asyncio
import logging
import sys
import time
import uuid

from dotenv import load_dotenv

load_dotenv()

from qdrant_client.models import PointIdsList, PointStruct  # noqa: E402

from ..services.embeddings import EMBEDDING_DIMENSION, EmbeddingError, generate_embeddings  # noqa: E402
from ..services.retrieval import (  # noqa: E402
    QDRANT_COLLECTION,
    ensure_collection_exists,
    get_qdrant_client,
)

logger = logging.getLogger(__name__)


def check_qdrant() -> bool:
    start = time.time()
    try:
        collections = get_qdrant_client().get_collections().collections
    except Exception as e:
        print(f"[FAIL] Qdrant: {e}")
        return False
    print(f"[OK]   Qdrant responded in {(time.time() - start) * 1000:.0f}ms")
    for collection in collections:
        print(f"       - {collection.name}")
    return True


def check_jina() -> list[float]:
    try:
        vectors = asyncio.run(generate_embeddings(["connection check"]))
    except EmbeddingError as e:
        print(f"[FAIL] Jina: {e}")
        return []
    vector = vectors[0] if vectors else []
    if len(vector) != EMBEDDING_DIMENSION:
        print(f"[FAIL] Jina returned {len(vector)} dimensions, expected {EMBEDDING_DIMENSION}")
        return []
    print(f"[OK]   Jina returned a {len(vector)}-dimension embedding")
    return vector


def check_upsert(vector: list[float]) -> bool:
    point_id = str(uuid.uuid4())
    try:
        client = ensure_collection_exists(QDRANT_COLLECTION)
        client.upsert(
            collection_name=QDRANT_COLLECTION,
            points=[PointStruct(id=point_id, vector=vector, payload={"courseId": "connection-check"})],
            wait=True,
        )
        client.delete(
            collection_name=QDRANT_COLLECTION,
            points_selector=PointIdsList(points=[point_id]),
            wait=True,
        )
    except Exception as e:
        print(f"[FAIL] Upsert/delete round trip: {e}")
        return False
    print("[OK]   Upsert/delete round trip")
    return True


def main() -> int:
    ok = check_qdrant()
    vector = check_jina()
    if ok and vector:
        ok = check_upsert(vector)
    else:
        ok = False
    print("All checks passed" if ok else "Some checks failed")
    return 0 if ok else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
