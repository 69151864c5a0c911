"""
Embedding maintenance for searchable entities, plus query-vector logging.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from travelbot.core.config import settings
from travelbot.models import Amenity, Destination, Property, PropertyCategory, QueryEmbedding
from travelbot.schemas.search import EntityType
from travelbot.services.embeddings import TASK_DOCUMENT, EmbeddingProvider

logger = logging.getLogger(__name__)

_MODELS = {
    EntityType.destination: Destination,
    EntityType.property: Property,
    EntityType.category: PropertyCategory,
    EntityType.amenity: Amenity,
}


def _as_list(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(v).strip() for v in value if str(v).strip()]


def _sentence(fields: List[Tuple[str, object]]) -> str:
    """Join labelled fields into one document sentence, skipping empty ones."""
    parts = []
    for label, value in fields:
        if isinstance(value, (list, tuple)):
            value = ", ".join(value)
        if not value:
            continue
        parts.append(f"{label}: {value}" if label else str(value))
    return ". ".join(parts) + "."


def destination_source_text(destination) -> str:
    city = getattr(destination, "city", None)
    return _sentence([
        ("Destination", destination.name),
        ("Country", destination.country),
        ("City", city if city != destination.name else None),
        ("Type", _as_list(getattr(destination, "tags", None))),
        ("Climate", _as_list(getattr(destination, "climate", None))),
        ("Activities", _as_list(getattr(destination, "activities", None))),
        ("Description", getattr(destination, "description", None)),
    ])


def property_source_text(prop) -> str:
    category = getattr(prop, "category", None)
    destination = getattr(prop, "destination", None)
    stars = getattr(prop, "star_rating", None)
    return _sentence([
        ("Property", prop.name),
        ("Category", category.name if category is not None else None),
        ("", f"{stars}-star" if stars else None),
        ("Location", f"{destination.name}, {destination.country}" if destination is not None else None),
        ("Amenities", [a.name for a in (getattr(prop, "amenities", None) or [])]),
        ("Description", getattr(prop, "description", None)),
    ])


def category_source_text(category) -> str:
    return _sentence([
        ("Accommodation category", category.name),
        ("", getattr(category, "description", None)),
    ])


def amenity_source_text(amenity) -> str:
    return _sentence([
        ("Amenity", amenity.name),
        ("Type", getattr(amenity, "type", None)),
        ("", getattr(amenity, "description", None)),
    ])


_SOURCE_TEXT = {
    EntityType.destination: destination_source_text,
    EntityType.property: property_source_text,
    EntityType.category: category_source_text,
    EntityType.amenity: amenity_source_text,
}


def _select(entity_type: EntityType):
    model = _MODELS[entity_type]
    stmt = select(model).order_by(model.id)
    if model is Property:
        stmt = stmt.options(
            selectinload(Property.destination),
            selectinload(Property.category),
            selectinload(Property.amenities),
        )
    return stmt


def _apply(row, vector: List[float], provider: EmbeddingProvider) -> None:
    if len(vector) != provider.dim:
        raise ValueError(f"Provider returned {len(vector)} dims, expected {provider.dim}")
    row.embedding = vector
    row.embedding_model = provider.model_name
    row.embedding_updated_at = datetime.now(timezone.utc)


async def embed_entity(
    db: AsyncSession,
    entity_type: EntityType,
    entity_id: int,
    provider: EmbeddingProvider,
) -> Optional[object]:
    """(Re-)embed one entity. Returns None if it does not exist."""
    model = _MODELS[entity_type]
    result = await db.execute(_select(entity_type).where(model.id == entity_id))
    row = result.scalar_one_or_none()
    if row is None:
        return None

    source_text = _SOURCE_TEXT[entity_type](row)
    vector = await provider.embed(source_text, task_type=TASK_DOCUMENT)
    _apply(row, vector, provider)
    await db.commit()
    logger.info("Embedded %s id=%d (%s)", entity_type.value, entity_id, row.name)
    return row


async def embed_all_entities(
    db: AsyncSession,
    provider: EmbeddingProvider,
    entity_type: Optional[EntityType] = None,
    *,
    only_missing: bool = False,
    batch_size: Optional[int] = None,
) -> Dict[str, Dict[str, int]]:
    """Bulk-embed one or all entity types, EMBEDDING_BATCH_SIZE rows per provider call."""
    batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
    types = [entity_type] if entity_type else list(EntityType)
    report: Dict[str, Dict[str, int]] = {}

    for kind in types:
        stmt = _select(kind)
        if only_missing:
            stmt = stmt.where(_MODELS[kind].embedding.is_(None))
        rows = (await db.execute(stmt)).scalars().all()
        total, success, failed = len(rows), 0, 0
        logger.info("embed_all %s starting: %d rows, batch_size=%d", kind.value, total, batch_size)

        for i in range(0, total, batch_size):
            batch = rows[i: i + batch_size]
            source_texts = [_SOURCE_TEXT[kind](row) for row in batch]
            try:
                vectors = await provider.embed_batch(source_texts, task_type=TASK_DOCUMENT)
            except Exception as exc:
                logger.error("%s batch %d failed: %s", kind.value, i // batch_size, exc)
                failed += len(batch)
                continue

            for row, vector in zip(batch, vectors):
                try:
                    _apply(row, vector, provider)
                    await db.commit()
                    success += 1
                except Exception as exc:
                    await db.rollback()
                    logger.error("DB write failed for %s id=%d: %s", kind.value, row.id, exc)
                    failed += 1

        logger.info("embed_all %s complete: %d/%d succeeded, %d failed", kind.value, success, total, failed)
        report[kind.value] = {"total": total, "success": success, "failed": failed}

    return report


async def log_query_embedding(
    db: AsyncSession,
    *,
    user_id: Optional[int],
    query_text: str,
    vector: List[float],
    model_name: str,
) -> None:
    try:
        db.add(QueryEmbedding(
            user_id=user_id,
            query_text=query_text,
            embedding=vector,
            model_name=model_name,
        ))
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.warning("Failed to log query embedding: %s", exc)
