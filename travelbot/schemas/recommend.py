from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from travelbot.schemas.query import QueryAnalysis, SearchTerms
from travelbot.schemas.search import EntityType, RankedResultsRead, ScoredCandidateRead


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class RecommendRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000,
                         examples=["Beach trip in Thailand this December, around $150 a day"])
    user_id: Optional[int] = Field(None, examples=[42])
    history: List[ChatTurn] = Field(default_factory=list)
    weights: Optional[Dict[str, float]] = Field(
        None,
        description="Override ranking weights; the full set must still sum to 1.0",
        examples=[{"semantic_similarity": 0.5, "user_preference": 0.15}],
    )


class RecommendResponse(BaseModel):
    analysis: QueryAnalysis
    search_terms: SearchTerms
    search_strategy: str
    results: RankedResultsRead
    context: str
    follow_up_questions: List[str]
    messages: List[ChatTurn]
    explanation: Dict[str, Any]
    degraded: bool
    failed_entity_types: List[EntityType]


class PersonalizedResponse(BaseModel):
    user_id: int
    count: int
    results: List[ScoredCandidateRead]
