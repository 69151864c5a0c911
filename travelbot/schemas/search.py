from __future__ import annotations

import enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class EntityType(str, enum.Enum):
    destination = "destination"
    property = "property"
    category = "category"
    amenity = "amenity"


class CandidateRead(BaseModel):
    id: int
    entity_type: EntityType
    name: str
    similarity: Optional[float] = None
    description: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    star_rating: Optional[int] = None
    destination_name: Optional[str] = None
    category_name: Optional[str] = None
    amenity_type: Optional[str] = None

    model_config = {"from_attributes": True}


class CriterionScoresRead(BaseModel):
    semantic_similarity: float
    user_preference: float
    popularity: float
    budget_match: float
    temporal_relevance: float
    availability: float

    model_config = {"from_attributes": True}


class ScoredCandidateRead(BaseModel):
    candidate: CandidateRead
    scores: Optional[CriterionScoresRead] = None
    composite_score: float

    model_config = {"from_attributes": True}


class RankedResultsRead(BaseModel):
    destinations: List[ScoredCandidateRead] = Field(default_factory=list)
    properties: List[ScoredCandidateRead] = Field(default_factory=list)
    categories: List[ScoredCandidateRead] = Field(default_factory=list)
    amenities: List[ScoredCandidateRead] = Field(default_factory=list)
    degraded: bool = False
    ranking_method: str
    weights: Dict[str, float]


class SimilarEntitiesResponse(BaseModel):
    source_type: EntityType
    source_id: int
    target_type: EntityType
    count: int
    results: List[CandidateRead]


class EmbeddingStats(BaseModel):
    total: int
    with_embeddings: int
