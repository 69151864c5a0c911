from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from travelbot.core.deps import get_similarity_search
from travelbot.db.session import async_session_maker, get_db
from travelbot.schemas.search import EmbeddingStats, EntityType
from travelbot.services.cache import query_vector_cache
from travelbot.services.embeddings import get_embedding_provider
from travelbot.services.entity_embeddings import embed_all_entities, embed_entity
from travelbot.services.vector_search import SimilaritySearch

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ── Cache ─────────────────────────────────────────────────────────────────────

@router.get("/cache/stats")
async def cache_stats():
    return {"caches": [await query_vector_cache.stats()]}


@router.delete("/cache/clear")
async def clear_all_caches():
    removed = await query_vector_cache.clear()
    return {"cleared": True, "removed": removed}


# ── Embeddings ────────────────────────────────────────────────────────────────

@router.get("/embeddings/stats", response_model=Dict[str, EmbeddingStats])
async def embedding_stats(search: SimilaritySearch = Depends(get_similarity_search)):
    return await search.store.embedding_stats()


@router.post("/embeddings/{entity_type}/{entity_id}")
async def embed_one(
    entity_type: EntityType,
    entity_id: int,
    db: AsyncSession = Depends(get_db),
):
    row = await embed_entity(db, entity_type, entity_id, get_embedding_provider())
    if row is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {entity_id} not found")
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "embedding_model": row.embedding_model,
        "embedded_at": row.embedding_updated_at,
    }


async def _embed_all_background(entity_type: Optional[EntityType], only_missing: bool) -> None:
    async with async_session_maker() as session:
        report = await embed_all_entities(
            session, get_embedding_provider(), entity_type, only_missing=only_missing
        )
    logger.info("Background embed-all finished: %s", report)


@router.post("/embeddings/embed-all", status_code=202)
async def embed_all(
    background_tasks: BackgroundTasks,
    entity_type: Optional[EntityType] = None,
    only_missing: bool = False,
):
    background_tasks.add_task(_embed_all_background, entity_type, only_missing)
    return {
        "started": True,
        "entity_type": entity_type.value if entity_type else "all",
        "only_missing": only_missing,
    }
