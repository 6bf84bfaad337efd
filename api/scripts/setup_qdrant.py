"""Create the materials collection and index every material not yet in it.

Usage:
    QDRANT_ENABLED=true python -m api.scripts.setup_qdrant
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from ..database import get_db, init_database  # noqa: E402
from ..services.indexing import sync_with_database  # noqa: E402
from ..services.retrieval import (  # noqa: E402
    QDRANT_COLLECTION,
    ensure_collection_exists,
    is_qdrant_enabled,
    test_connection,
)

logger = logging.getLogger(__name__)


def main() -> int:
    if not is_qdrant_enabled():
        print("QDRANT_ENABLED is not 'true' - nothing to do")
        return 1

    print("Setting up Qdrant vector database...")
    if not test_connection():
        print("Could not reach Qdrant, check QDRANT_URL and QDRANT_API_KEY")
        return 1

    ensure_collection_exists(QDRANT_COLLECTION)
    print(f"Collection '{QDRANT_COLLECTION}' is ready")

    init_database()
    with get_db() as db:
        result = asyncio.run(sync_with_database(db))

    print(
        f"Sync complete: {result['added']} indexed, {result['orphaned_deleted']} orphaned removed, "
        f"{result['failed']} failed"
    )
    return 0 if result["failed"] == 0 else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
