"""Material indexing service for PaperSmith.

Handles text resolution, chunking, embedding and upserting course material
chunks into the shared Qdrant collection, plus reconciliation between the
relational store and the collection.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter
from qdrant_client.models import PointStruct
from sqlalchemy.orm import Session

from ..database.models import CourseMaterial
from .embeddings import generate_embeddings
from .extraction import content_type_for, extract_text
from .retrieval import (
    QDRANT_COLLECTION,
    delete_material_points,
    ensure_collection_exists,
    is_qdrant_enabled,
    list_indexed_material_ids,
)
from .storage import path_for_url

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1000
CHUNK_OVERLAP = 100
EMBED_BATCH_SIZE = 64


def split_text_into_chunks(
    text: str,
    chunk_size: int = CHUNK_SIZE,
    chunk_overlap: int = CHUNK_OVERLAP,
) -> list[dict[str, Any]]:
    """Split text into overlapping chunks with their character offsets.

    Paragraph breaks are preferred split points, then line breaks, then
    words. Each chunk is {"text", "start_index", "end_index"}.
    """
    if not text or not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        separators=["\n\n", "\n", " ", ""],
        add_start_index=True,
    )

    chunks = []
    for doc in splitter.create_documents([text]):
        content = doc.page_content.strip()
        if not content:
            continue
        start = doc.metadata.get("start_index", -1)
        chunks.append({
            "text": content,
            "start_index": start,
            "end_index": start + len(doc.page_content) if start >= 0 else -1,
        })
    return chunks


def point_id(material_id: str, chunk_index: int) -> str:
    """Deterministic point id so re-indexing overwrites the same points."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{material_id}_chunk_{chunk_index}"))


async def resolve_material_text(material: CourseMaterial) -> str:
    """Return the material's text, extracting it from the uploaded file if needed."""
    if material.content and material.content.strip():
        return material.content

    path = path_for_url(material.file_url)
    if path is None or not path.exists():
        return ""

    content_type = content_type_for(path.name)
    return extract_text(path.read_bytes(), content_type)


def build_payload(material: CourseMaterial, chunk: dict[str, Any], index: int, total: int) -> dict[str, Any]:
    return {
        "courseId": material.course_id,
        "materialId": material.id,
        "title": material.title,
        "description": material.description,
        "type": material.type,
        "content": chunk["text"],
        "year": material.year,
        "weightings": material.weightings,
        "styleNotes": material.style_notes,
        "isActive": bool(material.is_active),
        "chunkIndex": index,
        "totalChunks": total,
        "chunkLength": len(chunk["text"]),
        "startIndex": chunk["start_index"],
        "endIndex": chunk["end_index"],
        "updatedAt": datetime.utcnow().isoformat(),
    }


async def index_material(material: CourseMaterial, text: str) -> int:
    """Chunk, embed and upsert a material. Returns the number of chunks stored.

    All chunks are embedded before the material's existing points are
    replaced, so a failed embedding leaves the previous vectors in place.
    """
    if not is_qdrant_enabled():
        logger.info("Qdrant is disabled - skipping indexing for %s", material.id)
        return 0

    chunks = split_text_into_chunks(text)
    if not chunks:
        logger.warning("No text content found to index for material %s", material.id)
        delete_material_points(material.id)
        return 0

    vectors: list[list[float]] = []
    for start in range(0, len(chunks), EMBED_BATCH_SIZE):
        batch = [c["text"] for c in chunks[start:start + EMBED_BATCH_SIZE]]
        vectors.extend(await generate_embeddings(batch, task="retrieval.passage"))

    points = [
        PointStruct(
            id=point_id(material.id, i),
            vector=vector,
            payload=build_payload(material, chunk, i, len(chunks)),
        )
        for i, (chunk, vector) in enumerate(zip(chunks, vectors))
    ]

    client = ensure_collection_exists(QDRANT_COLLECTION)
    delete_material_points(material.id)
    client.upsert(collection_name=QDRANT_COLLECTION, points=points, wait=True)
    logger.info("Stored %d chunks in Qdrant for material: %s", len(points), material.title)
    return len(points)


def is_searchable(material: CourseMaterial) -> bool:
    """Only active materials of active courses belong in the collection."""
    return bool(material.is_active) and (material.course is None or bool(material.course.is_active))


async def index_material_background(material_id: str):
    """Background task: resolve text, index it and record the outcome."""
    from ..database.connection import SessionLocal

    db = SessionLocal()
    try:
        material = db.query(CourseMaterial).filter(CourseMaterial.id == material_id).first()
        if not material:
            return

        if not is_qdrant_enabled():
            material.index_status = "skipped"
            db.commit()
            return

        if not is_searchable(material):
            delete_material_points(material.id)
            material.index_status = "skipped"
            material.chunks_count = 0
            db.commit()
            return

        try:
            text = await resolve_material_text(material)
            if text and not material.content:
                material.content = text
            material.chunks_count = await index_material(material, text)
            material.index_status = "indexed" if material.chunks_count else "skipped"
            material.index_error = None
        except Exception as e:
            logger.exception("Indexing failed for material %s", material_id)
            material.index_status = "failed"
            material.index_error = str(e)
        db.commit()
    finally:
        db.close()


async def sync_with_database(db: Session, material_ids_in_store: Optional[set[str]] = None) -> dict[str, int]:
    """Reconcile the collection with the course_materials table.

    Points whose materialId no longer exists, or whose material (or its
    course) is inactive, are deleted; active materials with no points are indexed.
    Materials with no extractable text are marked skipped. Per-material
    failures are logged and counted, not raised.
    """
    if material_ids_in_store is None:
        material_ids_in_store = list_indexed_material_ids()

    db_materials = db.query(CourseMaterial).all()
    db_ids = {m.id for m in db_materials}

    orphaned = material_ids_in_store - db_ids
    for material_id in orphaned:
        delete_material_points(material_id)
    if orphaned:
        logger.info("Deleted %d orphaned materials from Qdrant", len(orphaned))

    inactive_deleted = 0
    added = 0
    skipped = 0
    failed = 0
    for material in db_materials:
        if not is_searchable(material):
            if material.id in material_ids_in_store:
                delete_material_points(material.id)
                inactive_deleted += 1
            continue
        if material.id in material_ids_in_store:
            continue
        try:
            text = await resolve_material_text(material)
            material.chunks_count = await index_material(material, text)
        except Exception as e:
            logger.error("Error syncing material %s: %s", material.id, e)
            material.index_status = "failed"
            material.index_error = str(e)
            failed += 1
            continue
        material.index_error = None
        if material.chunks_count:
            material.index_status = "indexed"
            added += 1
        else:
            material.index_status = "skipped"
            skipped += 1
    db.commit()

    logger.info(
        "Qdrant sync completed. Database: %d, Qdrant: %d, added: %d, skipped: %d, failed: %d",
        len(db_ids), len(material_ids_in_store), added, skipped, failed,
    )
    return {
        "database": len(db_ids),
        "vector_store": len(material_ids_in_store),
        "orphaned_deleted": len(orphaned),
        "inactive_deleted": inactive_deleted,
        "added": added,
        "skipped": skipped,
        "failed": failed,
    }
