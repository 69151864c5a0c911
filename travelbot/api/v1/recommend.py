from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from travelbot.core.deps import get_recommender
from travelbot.schemas.recommend import (
    PersonalizedResponse,
    RecommendRequest,
    RecommendResponse,
)
from travelbot.schemas.search import RankedResultsRead, ScoredCandidateRead
from travelbot.services.ranker import RankedResults, RankingWeights
from travelbot.services.recommender import TravelRecommender, explain_recommendation
from travelbot.services.vector_search import EmbeddingDimensionMismatch

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def ranked_to_read(ranked: RankedResults) -> RankedResultsRead:
    return RankedResultsRead(
        destinations=[ScoredCandidateRead.model_validate(s) for s in ranked.destinations],
        properties=[ScoredCandidateRead.model_validate(s) for s in ranked.properties],
        categories=[ScoredCandidateRead.model_validate(s) for s in ranked.categories],
        amenities=[ScoredCandidateRead.model_validate(s) for s in ranked.amenities],
        degraded=ranked.degraded,
        ranking_method=ranked.ranking_method,
        weights=ranked.weights.as_dict(),
    )


@router.post("", response_model=RecommendResponse)
async def recommend(
    payload: RecommendRequest,
    recommender: TravelRecommender = Depends(get_recommender),
):
    weights = None
    if payload.weights:
        try:
            weights = RankingWeights().with_overrides(**payload.weights)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=422, detail=f"Invalid ranking weights: {exc}")

    try:
        result = await recommender.recommend(
            payload.message,
            user_id=payload.user_id,
            history=[turn.model_dump() for turn in payload.history],
            weights=weights,
        )
    except EmbeddingDimensionMismatch:
        logger.exception("Embedding configuration mismatch")
        raise HTTPException(status_code=500, detail="Recommendation service is misconfigured")

    return RecommendResponse(
        analysis=result.analysis,
        search_terms=result.search_terms,
        search_strategy=result.search_strategy,
        results=ranked_to_read(result.ranked),
        context=result.context,
        follow_up_questions=result.follow_up_questions,
        messages=result.messages,
        explanation=explain_recommendation(result),
        degraded=result.degraded,
        failed_entity_types=sorted(result.failed_entity_types, key=lambda t: t.value),
    )


@router.get("/personalized/{user_id}", response_model=PersonalizedResponse)
async def personalized(
    user_id: int,
    limit: int = 5,
    recommender: TravelRecommender = Depends(get_recommender),
):
    try:
        results = await recommender.personalized(user_id, limit=max(1, min(limit, 20)))
    except EmbeddingDimensionMismatch:
        logger.exception("Embedding configuration mismatch")
        raise HTTPException(status_code=500, detail="Recommendation service is misconfigured")

    return PersonalizedResponse(
        user_id=user_id,
        count=len(results),
        results=[ScoredCandidateRead.model_validate(s) for s in results],
    )
