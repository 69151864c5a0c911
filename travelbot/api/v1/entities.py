from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from travelbot.core.deps import get_similarity_search
from travelbot.schemas.search import CandidateRead, EntityType, SimilarEntitiesResponse
from travelbot.services.vector_search import (
    EntityNotFoundError,
    MissingEmbeddingError,
    SimilaritySearch,
)

router = APIRouter(prefix="/entities", tags=["search"])


@router.get("/{entity_type}/{entity_id}/similar", response_model=SimilarEntitiesResponse)
async def similar_entities(
    entity_type: EntityType,
    entity_id: int,
    target_type: Optional[EntityType] = None,
    limit: int = Query(10, ge=1, le=50),
    threshold: Optional[float] = Query(None, ge=0.0, le=1.0),
    search: SimilaritySearch = Depends(get_similarity_search),
):
    try:
        results = await search.find_similar(
            entity_type,
            entity_id,
            target_type=target_type,
            limit=limit,
            threshold=threshold,
        )
    except EntityNotFoundError:
        raise HTTPException(status_code=404, detail=f"{entity_type.value} {entity_id} not found")
    except MissingEmbeddingError:
        raise HTTPException(
            status_code=409,
            detail=f"{entity_type.value} {entity_id} has not been embedded yet",
        )

    return SimilarEntitiesResponse(
        source_type=entity_type,
        source_id=entity_id,
        target_type=target_type or entity_type,
        count=len(results),
        results=[CandidateRead.model_validate(c) for c in results],
    )
